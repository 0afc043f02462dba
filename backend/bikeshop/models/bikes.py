from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# Valid lifecycle states and classifications (services validate against these)
BIKE_STATUSES = ("Available", "Reserved", "Sold", "Unavailable")
BIKE_TYPES = ("Mountain", "Road", "Ebike", "Gravel", "City", "Kids")
SALE_TYPES = ("Cash", "TradeIn")


class Bike(db.Model):
    """
    A bicycle owned by the shop for sale.

    Column names keep the shop's established camelCase layout; Python
    attributes are snake_case.

    TRADE-IN LINKAGE (two directions, never both on one row at creation):
    - trade_in_bike_id: set on the SOLD bike, points at the bike received as payment
    - trade_in_for_bike_id: set on the RECEIVED bike, points back at the sold bike

    DELETION is a tombstone (deleted_at) so both pointers stay resolvable and
    ref_number is never handed out again.
    """
    __tablename__ = "bikes"
    __table_args__ = (
        db.Index("ix_bikes_status", "status"),
        db.Index("ix_bikes_entry_date", "entryDate"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    ref_number = db.Column("refNumber", db.String(16), nullable=False, unique=True)
    serial_number = db.Column("serialNumber", db.String(64), nullable=True)

    brand = db.Column(db.String(80), nullable=False)
    model = db.Column(db.String(120), nullable=False)
    type = db.Column(db.String(16), nullable=False)
    size = db.Column(db.String(16), nullable=False)

    # Authoritative storage in cents
    purchase_price = db.Column("purchasePrice", db.Integer, nullable=False)
    additional_costs = db.Column("additionalCosts", db.Integer, nullable=False, default=0)
    sell_price = db.Column("sellPrice", db.Integer, nullable=False)
    final_sell_price = db.Column("finalSellPrice", db.Integer, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="Available")
    entry_date = db.Column("entryDate", db.DateTime, nullable=False)
    sold_date = db.Column("soldDate", db.DateTime, nullable=True)

    trade_in_bike_id = db.Column("tradeInBikeId", db.Integer, db.ForeignKey("bikes.id"), nullable=True)
    trade_in_for_bike_id = db.Column("tradeInForBikeId", db.Integer, db.ForeignKey("bikes.id"), nullable=True)

    observations = db.Column(db.Text, nullable=False, default="")
    image_url = db.Column("imageUrl", db.String(512), nullable=True)

    deleted_at = db.Column("deletedAt", db.DateTime, nullable=True)
    version_id = db.Column("versionId", db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self) -> str:
        return f"<Bike id={self.id} ref={self.ref_number!r} status={self.status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ref_number": self.ref_number,
            "serial_number": self.serial_number,
            "brand": self.brand,
            "model": self.model,
            "type": self.type,
            "size": self.size,
            "purchase_price": self.purchase_price,
            "additional_costs": self.additional_costs,
            "sell_price": self.sell_price,
            "final_sell_price": self.final_sell_price,
            "sold_date": to_utc_z(self.sold_date),
            "observations": self.observations,
            "image_url": self.image_url,
            "status": self.status,
            "entry_date": to_utc_z(self.entry_date),
            "trade_in_bike_id": self.trade_in_bike_id,
            "trade_in_for_bike_id": self.trade_in_for_bike_id,
            "deleted_at": to_utc_z(self.deleted_at),
            "version_id": self.version_id,
        }


class Settlement(db.Model):
    """
    One finalized sale.

    Written in the same transaction as the Sold status, so a settlement row
    exists iff the sale happened. idempotency_key lets a client retry a sale
    request without creating a second trade-in bike.
    """
    __tablename__ = "settlements"
    __table_args__ = (
        db.UniqueConstraint("idempotency_key", name="uq_settlements_idempotency_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    idempotency_key = db.Column(db.String(64), nullable=True)

    bike_id = db.Column(db.Integer, db.ForeignKey("bikes.id"), nullable=False, index=True)
    sale_type = db.Column(db.String(16), nullable=False)

    cash_portion = db.Column(db.Integer, nullable=False)
    trade_in_value = db.Column(db.Integer, nullable=False, default=0)
    final_sell_price = db.Column(db.Integer, nullable=False)
    trade_in_bike_id = db.Column(db.Integer, db.ForeignKey("bikes.id"), nullable=True)

    settled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    settled_at = db.Column(db.DateTime, nullable=False)

    bike = db.relationship("Bike", foreign_keys=[bike_id])
    trade_in_bike = db.relationship("Bike", foreign_keys=[trade_in_bike_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "idempotency_key": self.idempotency_key,
            "bike_id": self.bike_id,
            "sale_type": self.sale_type,
            "cash_portion": self.cash_portion,
            "trade_in_value": self.trade_in_value,
            "final_sell_price": self.final_sell_price,
            "trade_in_bike_id": self.trade_in_bike_id,
            "settled_by_user_id": self.settled_by_user_id,
            "settled_at": to_utc_z(self.settled_at),
        }
