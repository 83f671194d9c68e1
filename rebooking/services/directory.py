"""
Batch lookups against the location, service and staff directories.

Each helper issues one query for a whole id set and returns a dict keyed by
id, so callers never query per row.
"""
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from rebooking.models.locations import Location, StaffMember
from rebooking.models.services import Service


def parse_uuids(values: Iterable) -> list[UUID]:
    """UUIDs from a mix of UUID objects and strings; unparseable entries are dropped."""
    parsed = []
    for value in values or []:
        if isinstance(value, UUID):
            parsed.append(value)
            continue
        try:
            parsed.append(UUID(str(value)))
        except ValueError:
            continue
    return parsed


def _by_id(db: Session, model, ids: Iterable[Optional[UUID]]) -> dict:
    wanted = {i for i in ids if i is not None}
    if not wanted:
        return {}
    rows = db.execute(select(model).where(model.id.in_(wanted))).scalars().all()
    return {row.id: row for row in rows}


def locations_by_id(db: Session, ids: Iterable[Optional[UUID]]) -> dict[UUID, Location]:
    return _by_id(db, Location, ids)


def services_by_id(db: Session, ids: Iterable[Optional[UUID]]) -> dict[UUID, Service]:
    return _by_id(db, Service, ids)


def staff_by_id(db: Session, ids: Iterable[Optional[UUID]]) -> dict[UUID, StaffMember]:
    return _by_id(db, StaffMember, ids)
