# Overview: Service-layer operations for inventory bikes; encapsulates business logic and database work.

"""
Inventory Lifecycle Engine

STATUS MACHINE:
    Available <-> Reserved
    Available/Reserved <-> Unavailable
    Available/Reserved  -> Sold   (sale_service.sell_bike only)
    Sold has no outgoing transition.

Every public operation takes a keyword-only `actor` (AuthContext) and checks
its permission before touching the session. Every mutation writes a bike
event and bumps the "bikes" collection version in the same transaction.

Tombstoned bikes (deleted_at set) are invisible to every read here except
reference allocation, which must never hand out a ref twice.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_

from ..errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Bike, BIKE_STATUSES, BIKE_TYPES
from ..money import INVENTORY_REF_PREFIX, INVENTORY_REF_WIDTH, next_ref_number
from ..permissions import CREATE, DELETE, EDIT, VIEW
from ..validation import ModelValidationPolicy, enforce_rules_bike, validate_payload
from . import collection_service, image_store
from .concurrency import lock_for_update, store_transaction
from .ledger_service import append_bike_event
from .permission_service import AuthContext, authorize
from bikeshop.time_utils import utcnow


BIKE_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "ref_number", "serial_number", "brand", "model", "type", "size",
        "purchase_price", "additional_costs", "sell_price",
        "observations", "image_url",
    },
    required_on_create={
        "ref_number", "brand", "model", "type", "size", "purchase_price", "sell_price",
    },
)

# Status, ref and trade-in links are owned by change_status / sell_bike.
BIKE_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "serial_number", "brand", "model", "type", "size",
        "purchase_price", "additional_costs", "sell_price",
        "observations", "image_url",
        "final_sell_price", "sold_date",
    },
)

SALE_RECORD_FIELDS = {"final_sell_price", "sold_date"}

# Reachable through change_status
ALLOWED_TRANSITIONS = {
    "Available": {"Reserved", "Unavailable"},
    "Reserved": {"Available", "Unavailable"},
    "Unavailable": {"Available", "Reserved"},
    "Sold": set(),
}

SELLABLE_STATUSES = {"Available", "Reserved"}


def _live_query():
    return db.session.query(Bike).filter(Bike.deleted_at.is_(None))


def get_live_bike(bike_id: int, *, lock: bool = False) -> Bike:
    q = _live_query().filter(Bike.id == bike_id)
    if lock:
        q = lock_for_update(q)
    bike = q.first()
    if bike is None:
        raise NotFoundError("Bike", bike_id)
    return bike


def allocate_ref_number() -> str:
    """Next inventory ref over every bike ever created, tombstones included."""
    refs = [r for (r,) in db.session.query(Bike.ref_number).all()]
    return next_ref_number(refs, prefix=INVENTORY_REF_PREFIX, width=INVENTORY_REF_WIDTH)


def get_next_ref_number(*, actor: AuthContext) -> str:
    authorize(actor, VIEW, resource="bikes/next-ref")
    return allocate_ref_number()


def get_bike(bike_id: int, *, actor: AuthContext) -> Bike:
    authorize(actor, VIEW, resource=f"bikes/{bike_id}")
    return get_live_bike(bike_id)


def list_bikes(
    *,
    actor: AuthContext,
    status: str | None = None,
    bike_type: str | None = None,
    search: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Non-deleted bikes, newest entry first, with optional pagination.

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    authorize(actor, VIEW, resource="bikes")

    if status is not None and status not in BIKE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(BIKE_STATUSES)}")
    if bike_type is not None and bike_type not in BIKE_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(BIKE_TYPES)}")

    base_query = _live_query()
    if status is not None:
        base_query = base_query.filter(Bike.status == status)
    if bike_type is not None:
        base_query = base_query.filter(Bike.type == bike_type)
    if search:
        like = f"%{search.strip()}%"
        base_query = base_query.filter(or_(
            Bike.ref_number.ilike(like),
            Bike.brand.ilike(like),
            Bike.model.ilike(like),
            Bike.serial_number.ilike(like),
        ))
    base_query = base_query.order_by(Bike.entry_date.desc(), Bike.id.desc())

    if page is None:
        bikes = base_query.all()
        return {
            "items": [b.to_dict() for b in bikes],
            "count": len(bikes),
        }

    per_page = min(per_page or 20, 100)  # Default 20, max 100
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    bikes = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [b.to_dict() for b in bikes],
        "count": len(bikes),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def list_live_bikes() -> list[Bike]:
    """Unpaginated, unauthorized read for reports and exports (callers authorize)."""
    return _live_query().order_by(Bike.entry_date.desc(), Bike.id.desc()).all()


def _ensure_ref_free(ref_number: str) -> None:
    existing = db.session.query(Bike.id).filter(Bike.ref_number == ref_number).first()
    if existing:
        raise ConflictError(f"refNumber {ref_number} already exists")


def create_bike(payload: dict, *, actor: AuthContext) -> Bike:
    """
    Register a bike bought by the shop.

    Required: ref_number, brand, model, type, size, purchase_price, sell_price.
    The bike starts Available with entry_date = now.
    """
    authorize(actor, CREATE, resource="bikes")

    patch = validate_payload(model=Bike, payload=payload, policy=BIKE_CREATE_POLICY, partial=False)
    enforce_rules_bike(patch)

    with store_transaction("Bike"):
        _ensure_ref_free(patch["ref_number"])

        bike = Bike(
            status="Available",
            entry_date=utcnow(),
            additional_costs=0,
            observations="",
        )
        for k, v in patch.items():
            if v is None and k in ("additional_costs", "observations"):
                continue
            setattr(bike, k, v)

        db.session.add(bike)
        db.session.flush()

        append_bike_event(
            event_type="bike.created",
            entity_type="bike",
            entity_id=bike.id,
            actor_user_id=actor.user_id,
            note=f"Created bike ref={bike.ref_number} {bike.brand} {bike.model}",
        )
        collection_service.bump(collection_service.BIKES)

    return bike


def update_bike(bike_id: int, payload: dict, *, actor: AuthContext) -> Bike:
    """
    Patch classification, money, observations or image.

    final_sell_price / sold_date are only accepted on a Sold bike (correcting
    a recorded sale) and cannot be cleared there. Replacing image_url removes
    the previous image from the image store once the change is committed.
    """
    authorize(actor, EDIT, resource=f"bikes/{bike_id}")

    patch = validate_payload(model=Bike, payload=payload, policy=BIKE_UPDATE_POLICY, partial=True)
    enforce_rules_bike(patch)

    with store_transaction("Bike"):
        bike = get_live_bike(bike_id, lock=True)

        sale_fields = SALE_RECORD_FIELDS & patch.keys()
        if sale_fields:
            if bike.status != "Sold":
                raise ValidationError(f"{', '.join(sorted(sale_fields))} can only be set on a sold bike")
            for k in sale_fields:
                if patch[k] is None:
                    raise ValidationError(f"{k} cannot be cleared on a sold bike")

        old_image_url = bike.image_url

        for k, v in patch.items():
            if k == "additional_costs" and v is None:
                v = 0
            if k == "observations" and v is None:
                v = ""
            setattr(bike, k, v)

        append_bike_event(
            event_type="bike.updated",
            entity_type="bike",
            entity_id=bike.id,
            actor_user_id=actor.user_id,
            payload={"fields": sorted(patch.keys())},
        )
        collection_service.bump(collection_service.BIKES)

    if "image_url" in patch and old_image_url and old_image_url != bike.image_url:
        image_store.delete_quietly(old_image_url)

    return bike


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, set())


def change_status(bike_id: int, new_status: str, *, actor: AuthContext) -> Bike:
    """
    Move a bike between Available, Reserved and Unavailable.

    Sold is rejected here; it is reached only through a sale. Asking for the
    current status is a no-op.
    """
    authorize(actor, EDIT, resource=f"bikes/{bike_id}/status")

    if new_status not in BIKE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(BIKE_STATUSES)}")

    with store_transaction("Bike"):
        bike = get_live_bike(bike_id, lock=True)

        if new_status == "Sold":
            raise InvalidTransitionError(
                "Sold is only reachable through a sale",
                current_status=bike.status,
                requested_status=new_status,
            )
        if bike.status == "Sold":
            raise InvalidTransitionError(
                "A sold bike cannot change status",
                current_status=bike.status,
                requested_status=new_status,
            )
        if bike.status == new_status:
            return bike
        if not can_transition(bike.status, new_status):
            raise InvalidTransitionError(
                f"Cannot transition from {bike.status} to {new_status}",
                current_status=bike.status,
                requested_status=new_status,
            )

        previous = bike.status
        bike.status = new_status

        append_bike_event(
            event_type="bike.status_changed",
            entity_type="bike",
            entity_id=bike.id,
            actor_user_id=actor.user_id,
            payload={"from": previous, "to": new_status},
        )
        collection_service.bump(collection_service.BIKES)

    return bike


def delete_bike(bike_id: int, *, actor: AuthContext) -> Bike:
    """
    Tombstone a bike.

    Business fields (brand, model, size, serial, prices, observations, image)
    are cleared and deleted_at set. id, ref, type, status, dates and both
    trade-in pointers stay, so other bikes' references keep resolving and the
    ref is never reused. The settlement keeps the sale's money record.
    The image file is removed after commit; a failure there is only logged.
    """
    authorize(actor, DELETE, resource=f"bikes/{bike_id}")

    with store_transaction("Bike"):
        bike = get_live_bike(bike_id, lock=True)
        image_url = bike.image_url

        bike.brand = ""
        bike.model = ""
        bike.size = ""
        bike.serial_number = None
        bike.purchase_price = 0
        bike.additional_costs = 0
        bike.sell_price = 0
        bike.final_sell_price = None
        bike.observations = ""
        bike.image_url = None
        bike.deleted_at = utcnow()

        append_bike_event(
            event_type="bike.deleted",
            entity_type="bike",
            entity_id=bike.id,
            actor_user_id=actor.user_id,
            note=f"Deleted bike ref={bike.ref_number}",
        )
        collection_service.bump(collection_service.BIKES)

    if image_url:
        image_store.delete_quietly(image_url)

    return bike


# =============================================================================
# TRADE-IN LINK AUDIT
# =============================================================================

def find_broken_trade_in_links() -> list[dict]:
    """
    Trade-in bikes whose sold counterpart does not point back at them.

    Returned rows: trade_in_bike_id, ref_number, sold_bike_id, and the sold
    bike's current trade_in_bike_id (None when the back-reference is missing).
    """
    received = (
        db.session.query(Bike)
        .filter(Bike.trade_in_for_bike_id.isnot(None))
        .order_by(Bike.id.asc())
        .all()
    )

    broken = []
    for bike in received:
        sold = db.session.get(Bike, bike.trade_in_for_bike_id)
        if sold is not None and sold.trade_in_bike_id == bike.id:
            continue
        broken.append({
            "trade_in_bike_id": bike.id,
            "ref_number": bike.ref_number,
            "sold_bike_id": bike.trade_in_for_bike_id,
            "sold_bike_exists": sold is not None,
            "sold_bike_trade_in_bike_id": sold.trade_in_bike_id if sold else None,
        })

    if broken:
        current_app.logger.warning("Found %d broken trade-in link(s)", len(broken))
    return broken


def link_trade_in(trade_in_bike_id: int, *, actor: AuthContext) -> Bike:
    """
    Repair a missing back-reference: point the sold bike at its trade-in.

    Only applies when the sold bike exists, is Sold and has no trade-in
    recorded yet. Returns the sold bike.
    """
    authorize(actor, EDIT, resource=f"bikes/{trade_in_bike_id}/link-trade-in")

    with store_transaction("Bike"):
        received = db.session.get(Bike, trade_in_bike_id)
        if received is None or received.trade_in_for_bike_id is None:
            raise NotFoundError("Trade-in bike", trade_in_bike_id)

        sold = lock_for_update(
            db.session.query(Bike).filter(Bike.id == received.trade_in_for_bike_id)
        ).first()
        if sold is None:
            raise NotFoundError("Bike", received.trade_in_for_bike_id)
        if sold.trade_in_bike_id == received.id:
            return sold
        if sold.trade_in_bike_id is not None:
            raise ConflictError(
                f"Bike {sold.id} already records trade-in bike {sold.trade_in_bike_id}"
            )
        if sold.status != "Sold" or sold.final_sell_price is None:
            raise InvalidTransitionError(
                f"Bike {sold.id} is not a completed sale",
                current_status=sold.status,
            )

        sold.trade_in_bike_id = received.id

        append_bike_event(
            event_type="bike.trade_in_linked",
            entity_type="bike",
            entity_id=sold.id,
            actor_user_id=actor.user_id,
            payload={"trade_in_bike_id": received.id},
        )
        collection_service.bump(collection_service.BIKES)

    current_app.logger.info("Linked trade-in bike %s to sold bike %s", received.id, sold.id)
    return sold
