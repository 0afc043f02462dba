"""Initial bike shop schema

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(64), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(120), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("approved_by_user_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["approved_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index("ix_users_username", ["username"], unique=False)

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_used_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("is_revoked", sa.Boolean(), nullable=False),
        sa.Column("revoked_at", sa.DateTime(), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token_hash", name="uq_session_tokens_hash"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("session_tokens", schema=None) as batch_op:
        batch_op.create_index("ix_session_tokens_user_id", ["user_id"], unique=False)

    op.create_table(
        "bikes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("refNumber", sa.String(16), nullable=False),
        sa.Column("serialNumber", sa.String(64), nullable=True),
        sa.Column("brand", sa.String(80), nullable=False),
        sa.Column("model", sa.String(120), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("size", sa.String(16), nullable=False),
        sa.Column("purchasePrice", sa.Integer(), nullable=False),
        sa.Column("additionalCosts", sa.Integer(), nullable=False),
        sa.Column("sellPrice", sa.Integer(), nullable=False),
        sa.Column("finalSellPrice", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("entryDate", sa.DateTime(), nullable=False),
        sa.Column("soldDate", sa.DateTime(), nullable=True),
        sa.Column("tradeInBikeId", sa.Integer(), nullable=True),
        sa.Column("tradeInForBikeId", sa.Integer(), nullable=True),
        sa.Column("observations", sa.Text(), nullable=False),
        sa.Column("imageUrl", sa.String(512), nullable=True),
        sa.Column("deletedAt", sa.DateTime(), nullable=True),
        sa.Column("versionId", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["tradeInBikeId"], ["bikes.id"]),
        sa.ForeignKeyConstraint(["tradeInForBikeId"], ["bikes.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("refNumber"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("bikes", schema=None) as batch_op:
        batch_op.create_index("ix_bikes_status", ["status"], unique=False)
        batch_op.create_index("ix_bikes_entry_date", ["entryDate"], unique=False)

    op.create_table(
        "settlements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("idempotency_key", sa.String(64), nullable=True),
        sa.Column("bike_id", sa.Integer(), nullable=False),
        sa.Column("sale_type", sa.String(16), nullable=False),
        sa.Column("cash_portion", sa.Integer(), nullable=False),
        sa.Column("trade_in_value", sa.Integer(), nullable=False),
        sa.Column("final_sell_price", sa.Integer(), nullable=False),
        sa.Column("trade_in_bike_id", sa.Integer(), nullable=True),
        sa.Column("settled_by_user_id", sa.Integer(), nullable=True),
        sa.Column("settled_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["bike_id"], ["bikes.id"]),
        sa.ForeignKeyConstraint(["trade_in_bike_id"], ["bikes.id"]),
        sa.ForeignKeyConstraint(["settled_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key", name="uq_settlements_idempotency_key"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("settlements", schema=None) as batch_op:
        batch_op.create_index("ix_settlements_bike_id", ["bike_id"], unique=False)

    op.create_table(
        "loaner_bikes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("refNumber", sa.String(16), nullable=False),
        sa.Column("serialNumber", sa.String(64), nullable=True),
        sa.Column("brand", sa.String(80), nullable=False),
        sa.Column("model", sa.String(120), nullable=False),
        sa.Column("size", sa.String(16), nullable=False),
        sa.Column("observations", sa.Text(), nullable=False),
        sa.Column("imageUrl", sa.String(512), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("entryDate", sa.DateTime(), nullable=False),
        sa.Column("loanDetails", sa.JSON(), nullable=True),
        sa.Column("versionId", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("refNumber"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("loaner_bikes", schema=None) as batch_op:
        batch_op.create_index("ix_loaner_bikes_status", ["status"], unique=False)

    op.create_table(
        "bike_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(32), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("settlement_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["settlement_id"], ["settlements.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("bike_events", schema=None) as batch_op:
        batch_op.create_index("ix_bike_events_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_bike_events_entity", ["entity_type", "entity_id"], unique=False)
        batch_op.create_index("ix_bike_events_occurred", ["occurred_at"], unique=False)

    op.create_table(
        "collection_versions",
        sa.Column("name", sa.String(32), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("name"),
    )

    op.create_table(
        "security_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("resource", sa.String(128), nullable=True),
        sa.Column("action", sa.String(64), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("security_events", schema=None) as batch_op:
        batch_op.create_index("ix_security_events_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_security_events_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_security_events_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_security_events_user_type", ["user_id", "event_type"], unique=False)


def downgrade():
    op.drop_table("security_events")
    op.drop_table("collection_versions")
    op.drop_table("bike_events")
    op.drop_table("loaner_bikes")
    op.drop_table("settlements")
    op.drop_table("bikes")
    op.drop_table("session_tokens")
    op.drop_table("users")
