# Overview: Service-layer operations for loaner bikes; encapsulates business logic and database work.

"""
Loaner Lifecycle Engine

STATUS MACHINE:
    Available -> Prestada   (loan_type Loan)
    Available -> Alquilada  (loan_type Rental)
    Prestada / Alquilada -> Available (return)

loan_details travels with the status: set when a bike goes out, cleared when
it comes back. Lending a bike that is already out is rejected; returning a
bike that is already in is a no-op.

Loaner deletes are hard deletes (nothing references a loaner).
"""

from __future__ import annotations

from ..errors import ConflictError, InvalidTransitionError, NotFoundError
from ..extensions import db
from ..models import LoanerBike, LOAN_TYPE_STATUS
from ..money import LOANER_REF_PREFIX, LOANER_REF_WIDTH, next_ref_number
from ..permissions import CREATE, DELETE, EDIT, VIEW
from ..validation import (
    ModelValidationPolicy,
    enforce_image_url,
    enforce_rules_loaner_ref,
    validate_loan_details,
    validate_payload,
)
from . import collection_service, image_store
from .concurrency import lock_for_update, store_transaction
from .ledger_service import append_bike_event
from .permission_service import AuthContext, authorize
from bikeshop.time_utils import to_utc_z, utcnow


LOANER_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"ref_number", "serial_number", "brand", "model", "size", "observations", "image_url"},
    required_on_create={"ref_number", "brand", "model", "size"},
)

LOANER_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"serial_number", "brand", "model", "size", "observations", "image_url"},
)


def _get_loaner(loaner_id: int, *, lock: bool = False) -> LoanerBike:
    q = db.session.query(LoanerBike).filter(LoanerBike.id == loaner_id)
    if lock:
        q = lock_for_update(q)
    loaner = q.first()
    if loaner is None:
        raise NotFoundError("Loaner bike", loaner_id)
    return loaner


def allocate_loaner_ref_number() -> str:
    refs = [r for (r,) in db.session.query(LoanerBike.ref_number).all()]
    return next_ref_number(refs, prefix=LOANER_REF_PREFIX, width=LOANER_REF_WIDTH)


def get_next_loaner_ref_number(*, actor: AuthContext) -> str:
    authorize(actor, VIEW, resource="loaners/next-ref")
    return allocate_loaner_ref_number()


def get_loaner(loaner_id: int, *, actor: AuthContext) -> LoanerBike:
    authorize(actor, VIEW, resource=f"loaners/{loaner_id}")
    return _get_loaner(loaner_id)


def list_loaners(*, actor: AuthContext, page: int | None = None, per_page: int | None = None) -> dict:
    """Loaners, newest entry first, with optional pagination."""
    authorize(actor, VIEW, resource="loaners")

    base_query = db.session.query(LoanerBike).order_by(LoanerBike.entry_date.desc(), LoanerBike.id.desc())

    if page is None:
        loaners = base_query.all()
        return {
            "items": [lb.to_dict() for lb in loaners],
            "count": len(loaners),
        }

    per_page = min(per_page or 20, 100)
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    loaners = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [lb.to_dict() for lb in loaners],
        "count": len(loaners),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def list_all_loaners() -> list[LoanerBike]:
    return db.session.query(LoanerBike).order_by(LoanerBike.entry_date.desc(), LoanerBike.id.desc()).all()


def create_loaner(payload: dict, *, actor: AuthContext) -> LoanerBike:
    authorize(actor, CREATE, resource="loaners")

    patch = validate_payload(model=LoanerBike, payload=payload, policy=LOANER_CREATE_POLICY, partial=False)
    enforce_rules_loaner_ref(patch["ref_number"], LOANER_REF_PREFIX)
    enforce_image_url(patch.get("image_url"))

    with store_transaction("Loaner bike"):
        existing = db.session.query(LoanerBike.id).filter(LoanerBike.ref_number == patch["ref_number"]).first()
        if existing:
            raise ConflictError(f"refNumber {patch['ref_number']} already exists")

        loaner = LoanerBike(
            status="Available",
            entry_date=utcnow(),
            observations="",
            loan_details=None,
        )
        for k, v in patch.items():
            if k == "observations" and v is None:
                continue
            setattr(loaner, k, v)

        db.session.add(loaner)
        db.session.flush()

        append_bike_event(
            event_type="loaner.created",
            entity_type="loaner_bike",
            entity_id=loaner.id,
            actor_user_id=actor.user_id,
            note=f"Created loaner ref={loaner.ref_number}",
        )
        collection_service.bump(collection_service.LOANER_BIKES)

    return loaner


def update_loaner(loaner_id: int, payload: dict, *, actor: AuthContext) -> LoanerBike:
    """Classification, observations and image only; status moves via loan/return."""
    authorize(actor, EDIT, resource=f"loaners/{loaner_id}")

    patch = validate_payload(model=LoanerBike, payload=payload, policy=LOANER_UPDATE_POLICY, partial=True)
    enforce_image_url(patch.get("image_url"))

    with store_transaction("Loaner bike"):
        loaner = _get_loaner(loaner_id, lock=True)
        old_image_url = loaner.image_url

        for k, v in patch.items():
            if k == "observations" and v is None:
                v = ""
            setattr(loaner, k, v)

        append_bike_event(
            event_type="loaner.updated",
            entity_type="loaner_bike",
            entity_id=loaner.id,
            actor_user_id=actor.user_id,
            payload={"fields": sorted(patch.keys())},
        )
        collection_service.bump(collection_service.LOANER_BIKES)

    if "image_url" in patch and old_image_url and old_image_url != loaner.image_url:
        image_store.delete_quietly(old_image_url)

    return loaner


def loan_or_rent(loaner_id: int, details: dict, *, actor: AuthContext) -> LoanerBike:
    """
    Hand a loaner out. Only an Available bike can go out.

    Status becomes Prestada (Loan) or Alquilada (Rental); start_date is now.
    """
    authorize(actor, EDIT, resource=f"loaners/{loaner_id}/loan")

    cleaned = validate_loan_details(details)

    with store_transaction("Loaner bike"):
        loaner = _get_loaner(loaner_id, lock=True)
        new_status = LOAN_TYPE_STATUS[cleaned["loan_type"]]

        if loaner.status != "Available":
            raise InvalidTransitionError(
                f"Loaner {loaner.ref_number} is already out ({loaner.status})",
                current_status=loaner.status,
                requested_status=new_status,
            )

        cleaned["start_date"] = to_utc_z(utcnow())
        loaner.status = new_status
        loaner.loan_details = cleaned

        append_bike_event(
            event_type="loaner.loaned" if cleaned["loan_type"] == "Loan" else "loaner.rented",
            entity_type="loaner_bike",
            entity_id=loaner.id,
            actor_user_id=actor.user_id,
            payload={"loan_type": cleaned["loan_type"], "loanee_name": cleaned.get("loanee_name")},
        )
        collection_service.bump(collection_service.LOANER_BIKES)

    return loaner


def return_loaner(loaner_id: int, *, actor: AuthContext) -> LoanerBike:
    """Bring a loaner back. Already Available: returned unchanged, nothing written."""
    authorize(actor, EDIT, resource=f"loaners/{loaner_id}/return")

    with store_transaction("Loaner bike"):
        loaner = _get_loaner(loaner_id, lock=True)
        if loaner.status == "Available":
            return loaner

        previous = loaner.status
        loaner.status = "Available"
        loaner.loan_details = None

        append_bike_event(
            event_type="loaner.returned",
            entity_type="loaner_bike",
            entity_id=loaner.id,
            actor_user_id=actor.user_id,
            payload={"from": previous},
        )
        collection_service.bump(collection_service.LOANER_BIKES)

    return loaner


def delete_loaner(loaner_id: int, *, actor: AuthContext) -> None:
    """Hard delete, then remove the image (failure logged, not raised)."""
    authorize(actor, DELETE, resource=f"loaners/{loaner_id}")

    with store_transaction("Loaner bike"):
        loaner = _get_loaner(loaner_id, lock=True)
        image_url = loaner.image_url
        ref_number = loaner.ref_number

        db.session.delete(loaner)

        append_bike_event(
            event_type="loaner.deleted",
            entity_type="loaner_bike",
            entity_id=loaner_id,
            actor_user_id=actor.user_id,
            note=f"Deleted loaner ref={ref_number}",
        )
        collection_service.bump(collection_service.LOANER_BIKES)

    if image_url:
        image_store.delete_quietly(image_url)
