# Overview: Service-layer operations for bike sales; encapsulates business logic and database work.

"""
Sale / Trade-In Settlement

WHY: Selling is the one operation that touches two bikes and money at once.
Everything it writes happens in ONE transaction:

    (a) TradeIn only: insert the received bike (Available, fresh ref,
        trade_in_for_bike_id -> sold bike)
    (b) sold bike: status Sold, final_sell_price, sold_date, trade_in_bike_id
    (c) settlement row (money composition, idempotency key)
    (d) bike events
    (e) "bikes" collection version bump

Any failure rolls all of it back, so a reader never sees half a sale.

MONEY:
    Cash:    final_sell_price = cash_portion
    TradeIn: final_sell_price = cash_portion + trade_in.purchase_price
The trade-in valuation is the received bike's purchase price.

RETRIES: Sell is never retried automatically. Clients that retry send the
same idempotency_key; a key already settled returns the stored result.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..errors import ConflictError, InvalidTransitionError, PartialFailureError, ValidationError
from ..extensions import db
from ..models import Bike, Settlement, SALE_TYPES
from ..permissions import EDIT
from ..validation import (
    ModelValidationPolicy,
    coerce_cents,
    enforce_money,
    enforce_rules_bike,
    validate_payload,
)
from . import collection_service
from .concurrency import begin_immediate_if_sqlite, store_transaction
from .inventory_service import SELLABLE_STATUSES, allocate_ref_number, get_live_bike
from .ledger_service import append_bike_event
from .permission_service import AuthContext, authorize
from bikeshop.time_utils import utcnow


IDEMPOTENCY_KEY_MAX_LENGTH = 64

TRADE_IN_POLICY = ModelValidationPolicy(
    writable_fields={
        "serial_number", "brand", "model", "type", "size",
        "purchase_price", "additional_costs", "sell_price",
        "observations", "image_url",
    },
    required_on_create={"brand", "model", "type", "size", "purchase_price", "sell_price"},
)


@dataclass
class SaleResult:
    bike: Bike
    settlement: Settlement
    trade_in_bike: Bike | None = None
    replayed: bool = False

    def to_dict(self) -> dict:
        return {
            "bike": self.bike.to_dict(),
            "trade_in_bike": self.trade_in_bike.to_dict() if self.trade_in_bike else None,
            "settlement": self.settlement.to_dict(),
            "replayed": self.replayed,
        }


def _clean_idempotency_key(key) -> str | None:
    if key is None:
        return None
    key = str(key).strip()
    if not key:
        return None
    if len(key) > IDEMPOTENCY_KEY_MAX_LENGTH:
        raise ValidationError(f"idempotency_key exceeds max length {IDEMPOTENCY_KEY_MAX_LENGTH}")
    return key


def _settlement_by_key(key: str) -> Settlement | None:
    return db.session.query(Settlement).filter(Settlement.idempotency_key == key).first()


def _replay(settlement: Settlement, *, bike_id: int, sale_type: str, cash_portion: int) -> SaleResult:
    """
    Return a stored sale for a repeated idempotency key.

    The key must belong to the same sale request. The trade-in link recorded
    by the settlement is verified before answering; a broken link is surfaced
    with the orphaned bike's id.
    """
    if settlement.bike_id != bike_id:
        raise ConflictError(
            f"idempotency_key already used for bike {settlement.bike_id}"
        )
    if settlement.sale_type != sale_type or settlement.cash_portion != cash_portion:
        raise ConflictError("idempotency_key already used for a different sale")

    bike = db.session.get(Bike, settlement.bike_id)
    trade_in_bike = None

    if settlement.trade_in_bike_id is not None:
        trade_in_bike = db.session.get(Bike, settlement.trade_in_bike_id)
        linked = (
            trade_in_bike is not None
            and bike is not None
            and bike.trade_in_bike_id == trade_in_bike.id
            and trade_in_bike.trade_in_for_bike_id == bike.id
        )
        if not linked:
            current_app.logger.warning(
                "Settlement %s has a broken trade-in link (bike %s, trade-in %s)",
                settlement.id, settlement.bike_id, settlement.trade_in_bike_id,
            )
            raise PartialFailureError(
                f"Trade-in bike {settlement.trade_in_bike_id} is not linked to sold bike {settlement.bike_id}",
                orphan_bike_id=settlement.trade_in_bike_id,
                settlement_id=settlement.id,
            )

    current_app.logger.info("Replayed settlement %s for key %s", settlement.id, settlement.idempotency_key)
    return SaleResult(bike=bike, settlement=settlement, trade_in_bike=trade_in_bike, replayed=True)


def _settle_locked(
    *,
    bike_id: int,
    sale_type: str,
    cash_portion: int,
    final_sell_price: int,
    trade_in_patch: dict | None,
    idempotency_key: str | None,
    actor: AuthContext,
) -> SaleResult:
    bike = get_live_bike(bike_id, lock=True)

    if bike.status == "Sold":
        raise InvalidTransitionError(
            f"Bike {bike.ref_number} is already sold",
            current_status=bike.status,
            requested_status="Sold",
        )
    if bike.status not in SELLABLE_STATUSES:
        raise InvalidTransitionError(
            f"Bike {bike.ref_number} is {bike.status} and cannot be sold",
            current_status=bike.status,
            requested_status="Sold",
        )

    now = utcnow()
    trade_in_bike = None

    if trade_in_patch is not None:
        trade_in_bike = Bike(
            ref_number=allocate_ref_number(),
            status="Available",
            entry_date=now,
            additional_costs=0,
            observations="",
            trade_in_for_bike_id=bike.id,
        )
        for k, v in trade_in_patch.items():
            if v is None and k in ("additional_costs", "observations"):
                continue
            setattr(trade_in_bike, k, v)

        db.session.add(trade_in_bike)
        db.session.flush()  # ensure trade_in_bike.id exists before linking

        append_bike_event(
            event_type="bike.trade_in_received",
            entity_type="bike",
            entity_id=trade_in_bike.id,
            actor_user_id=actor.user_id,
            occurred_at=now,
            payload={"for_bike_id": bike.id, "valuation": trade_in_bike.purchase_price},
        )

    bike.status = "Sold"
    bike.final_sell_price = final_sell_price
    bike.sold_date = now
    bike.trade_in_bike_id = trade_in_bike.id if trade_in_bike else None

    settlement = Settlement(
        idempotency_key=idempotency_key,
        bike_id=bike.id,
        sale_type=sale_type,
        cash_portion=cash_portion,
        trade_in_value=trade_in_bike.purchase_price if trade_in_bike else 0,
        final_sell_price=final_sell_price,
        trade_in_bike_id=trade_in_bike.id if trade_in_bike else None,
        settled_by_user_id=actor.user_id,
        settled_at=now,
    )
    db.session.add(settlement)
    db.session.flush()  # version check on the sold bike happens here

    append_bike_event(
        event_type="bike.sold",
        entity_type="bike",
        entity_id=bike.id,
        actor_user_id=actor.user_id,
        settlement_id=settlement.id,
        occurred_at=now,
        payload={
            "sale_type": sale_type,
            "cash_portion": cash_portion,
            "final_sell_price": final_sell_price,
            "trade_in_bike_id": settlement.trade_in_bike_id,
        },
    )
    collection_service.bump(collection_service.BIKES)

    return SaleResult(bike=bike, settlement=settlement, trade_in_bike=trade_in_bike)


def sell_bike(
    bike_id: int,
    sale_type: str,
    cash_portion,
    trade_in: dict | None = None,
    idempotency_key: str | None = None,
    *,
    actor: AuthContext,
) -> SaleResult:
    """
    Sell a bike for cash, or for cash plus a bike taken in trade.

    Raises:
        ValidationError: bad sale_type, cash_portion or trade-in details
        NotFoundError: unknown or deleted bike
        InvalidTransitionError: bike already sold (or Unavailable)
        ConflictError: concurrent modification, or key reused for another sale
        PartialFailureError: replayed key whose trade-in link is broken
        StoreUnavailableError: store failure; nothing was written
    """
    authorize(actor, EDIT, resource=f"bikes/{bike_id}/sell")

    if sale_type not in SALE_TYPES:
        raise ValidationError(f"sale_type must be one of: {', '.join(SALE_TYPES)}")
    cash = coerce_cents("cash_portion", cash_portion)
    key = _clean_idempotency_key(idempotency_key)

    trade_in_patch = None
    if sale_type == "TradeIn":
        if not isinstance(trade_in, dict):
            raise ValidationError("trade_in details are required for a TradeIn sale")
        trade_in_patch = validate_payload(model=Bike, payload=trade_in, policy=TRADE_IN_POLICY, partial=False)
        enforce_rules_bike(trade_in_patch)
    elif trade_in is not None:
        raise ValidationError("trade_in is only accepted for TradeIn sales")

    valuation = trade_in_patch["purchase_price"] if trade_in_patch else 0
    final_sell_price = cash + valuation
    enforce_money("final_sell_price", final_sell_price)

    existing = None
    result = None
    with store_transaction("Sale"):
        begin_immediate_if_sqlite()
        if key is not None:
            existing = _settlement_by_key(key)
        if existing is None:
            result = _settle_locked(
                bike_id=bike_id,
                sale_type=sale_type,
                cash_portion=cash,
                final_sell_price=final_sell_price,
                trade_in_patch=trade_in_patch,
                idempotency_key=key,
                actor=actor,
            )

    if existing is not None:
        return _replay(existing, bike_id=bike_id, sale_type=sale_type, cash_portion=cash)

    current_app.logger.info(
        "Sold bike %s (%s) final=%s settlement=%s trade_in=%s",
        result.bike.id, sale_type, final_sell_price,
        result.settlement.id, result.trade_in_bike.id if result.trade_in_bike else None,
    )
    return result
