# Overview: Domain error taxonomy shared by services, routes and CLI.

"""
Domain errors.

Each error maps to one HTTP status in the routes layer:

    ValidationError         400  caller corrects input and retries
    NotFoundError           404  different input required
    ConflictError           409  duplicate ref / concurrent modification
    InvalidTransitionError  409  use the operation that owns the transition
    PartialFailureError     500  operator must reconcile (orphan bike id attached)
    StoreUnavailableError   503  retry with backoff, idempotent operations only
"""

from __future__ import annotations


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate refNumber)."""


class NotFoundError(LookupError):
    """Operation targets a record that does not exist (or is tombstoned)."""

    def __init__(self, entity: str, entity_id: int | str):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionError(ValueError):
    """
    Raised when a status change is not permitted by the state machine.

    This is a domain error, not a technical error. The caller asked for a
    transition that only another operation may perform (e.g. Sold is only
    reachable through a sale).
    """

    def __init__(self, message: str, *, current_status: str | None = None, requested_status: str | None = None):
        super().__init__(message)
        self.current_status = current_status
        self.requested_status = requested_status


class PartialFailureError(RuntimeError):
    """
    A settlement left one half of a trade-in link unresolved.

    Carries the id of the trade-in bike that exists without its back-reference
    so an operator can link or remove it.
    """

    def __init__(self, message: str, *, orphan_bike_id: int, settlement_id: int | None = None):
        super().__init__(message)
        self.orphan_bike_id = orphan_bike_id
        self.settlement_id = settlement_id


class StoreUnavailableError(RuntimeError):
    """The record store failed; retry with backoff for idempotent operations only."""
