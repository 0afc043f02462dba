# Overview: Service-layer operations for concurrency; encapsulates business logic and database work.

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, StoreUnavailableError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def begin_immediate_if_sqlite() -> None:
    """
    Take the SQLite write lock up front so two writers cannot both read the
    same row state before either commits. No-op on other backends.

    The session must hold no uncommitted writes. A read-only transaction
    autobegun by earlier queries is rolled back first; pending writes raise
    RuntimeError instead of being committed on the caller's behalf.
    """
    if db.engine.dialect.name != "sqlite":
        return
    session = db.session()
    if session.in_transaction():
        if session.new or session.dirty or session.deleted:
            raise RuntimeError("begin_immediate_if_sqlite() called with unflushed changes")
        if session.connection().connection.dbapi_connection.in_transaction:
            raise RuntimeError("begin_immediate_if_sqlite() called inside an open write transaction")
        session.rollback()
    session.execute(text("BEGIN IMMEDIATE"))


@contextmanager
def store_transaction(entity: str = "Record"):
    """
    Commit the work done inside the block, or roll all of it back.

    Store-level failures are translated to domain errors:
    - IntegrityError -> ConflictError (unique ref, idempotency key)
    - StaleDataError -> ConflictError (row changed since it was read)
    - OperationalError -> StoreUnavailableError
    Domain errors raised inside the block roll back and propagate unchanged.
    """
    try:
        yield db.session
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(f"{entity} conflicts with an existing record") from exc
    except StaleDataError as exc:
        db.session.rollback()
        raise ConflictError(f"{entity} was modified concurrently; reload and retry") from exc
    except OperationalError as exc:
        db.session.rollback()
        raise StoreUnavailableError(f"Record store unavailable: {exc.orig}") from exc
    except Exception:
        db.session.rollback()
        raise
