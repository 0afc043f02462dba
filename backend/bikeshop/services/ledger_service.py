# Overview: Service-layer operations for ledger; encapsulates business logic and database work.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import BikeEvent
from bikeshop.time_utils import utcnow
"""
Bike Event Ledger Invariants (authoritative)

- Append-only audit log for bike and loaner domain events.
- No domain/business logic in the ledger itself.
- Events are written inside the same DB transaction as the change they record;
  this module only adds to the session and never commits.
- As-of filtering in the read API is inclusive: occurred_at <= as_of.
"""


def append_bike_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    settlement_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> BikeEvent:
    """
    Append-only bike event.

    - No domain logic here.
    - No deletes/updates of existing events.
    """
    ev = BikeEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        settlement_id=settlement_id,
        occurred_at=occurred_at or utcnow(),
        note=note,
        payload=payload,
    )
    db.session.add(ev)
    return ev


def list_bike_events(
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    event_type: str | None = None,
    as_of: Optional[datetime] = None,
    limit: int = 200,
) -> list[BikeEvent]:
    q = db.session.query(BikeEvent)
    if entity_type is not None:
        q = q.filter(BikeEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(BikeEvent.entity_id == entity_id)
    if event_type is not None:
        q = q.filter(BikeEvent.event_type == event_type)
    if as_of is not None:
        q = q.filter(BikeEvent.occurred_at <= as_of)
    return q.order_by(BikeEvent.occurred_at.asc(), BikeEvent.id.asc()).limit(limit).all()
