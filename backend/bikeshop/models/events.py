from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class BikeEvent(db.Model):
    """
    Append-only audit trail for bike and loaner mutations.

    IMMUTABLE: Never update or delete. Rows are written in the same DB
    transaction as the change they describe.
    """
    __tablename__ = "bike_events"
    __table_args__ = (
        db.Index("ix_bike_events_entity", "entity_type", "entity_id"),
        db.Index("ix_bike_events_occurred", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # bike.sold, loaner.returned, ...
    entity_type = db.Column(db.String(32), nullable=False)  # bike | loaner_bike
    entity_id = db.Column(db.Integer, nullable=False)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    settlement_id = db.Column(db.Integer, db.ForeignKey("settlements.id"), nullable=True)

    occurred_at = db.Column(db.DateTime, nullable=False)
    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "settlement_id": self.settlement_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "note": self.note,
            "payload": self.payload,
        }


class CollectionVersion(db.Model):
    """
    Monotonic version per record collection ("bikes", "loaner_bikes").

    Bumped inside every mutating transaction; readers use it as a cache key
    (HTTP ETag) and refetch when it moves.
    """
    __tablename__ = "collection_versions"

    name = db.Column(db.String(32), primary_key=True)
    version = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, nullable=True)


class SecurityEvent(db.Model):
    """
    Security event audit log.

    WHY: Track permission denials and failed logins.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_user_type", "user_id", "event_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # PERMISSION_DENIED, LOGIN_FAILED
    resource = db.Column(db.String(128), nullable=True)
    action = db.Column(db.String(64), nullable=True)

    success = db.Column(db.Boolean, nullable=False)
    reason = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "resource": self.resource,
            "action": self.action,
            "success": self.success,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }
