# Overview: Service-layer operations for collection versions; encapsulates business logic and database work.

"""
Collection versions

One counter per record collection. Every mutating engine operation bumps the
counter of the collection it touched inside its own transaction, so a reader
that sees version N sees every write up to N.

The counter is incremented with a single UPDATE ... SET version = version + 1
(row-level atomic) and the row is created lazily on first bump.
"""

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import CollectionVersion
from bikeshop.time_utils import utcnow


BIKES = "bikes"
LOANER_BIKES = "loaner_bikes"

COLLECTIONS = (BIKES, LOANER_BIKES)


def bump(name: str) -> None:
    """
    Increment the collection counter in the current transaction (no commit).
    """
    if name not in COLLECTIONS:
        raise ValueError(f"Unknown collection: {name}")

    result = db.session.execute(
        update(CollectionVersion)
        .where(CollectionVersion.name == name)
        .values(version=CollectionVersion.version + 1, updated_at=utcnow())
    )
    if result.rowcount == 0:
        db.session.add(CollectionVersion(name=name, version=1, updated_at=utcnow()))
        db.session.flush()


def current_version(name: str) -> int:
    row = db.session.get(CollectionVersion, name)
    if row is None:
        return 0
    # The bump UPDATE bypasses the identity map
    db.session.refresh(row)
    return row.version


def etag_value(name: str) -> str:
    """Unquoted entity tag for the collection, e.g. bikes-12."""
    return f"{name}-{current_version(name)}"
