from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from biotrack.core.exceptions import ClassNotFound, InvalidTimeFormat
from biotrack.crud.attendance import calculate_duration_hours, list_day_records, list_records_between
from biotrack.crud.identity import list_identities
from biotrack.crud.school_class import get_class
from biotrack.models.school_class import SchoolClass
from biotrack.services.ledger import AttendanceStatus, status_of

MAX_REPORT_DAYS = 366


@dataclass
class RosterLine:
    identity_id: str
    display_name: Optional[str]
    status: AttendanceStatus
    time_in: Optional[datetime] = None
    time_out: Optional[datetime] = None
    duration_hours: float = 0.0


async def _load_class(db: AsyncSession, class_id: int) -> SchoolClass:
    school_class = await get_class(db, class_id)
    if school_class is None:
        raise ClassNotFound(f"Class {class_id} not found", class_id=class_id)
    return school_class


async def class_roster(db: AsyncSession, class_id: int, day: date):
    """
    Every member's derived status for one day. Members without a record are
    absent; records of former members are listed after current members.
    """
    school_class = await _load_class(db, class_id)
    records = {r.identity_id: r for r in await list_day_records(db, school_class.class_identifier, day.isoformat())}
    names = {identity.identity_id: identity.display_name for identity in await list_identities(db)}

    identity_ids = school_class.member_ids + sorted(set(records) - set(school_class.member_ids))
    lines = []
    for identity_id in identity_ids:
        record = records.get(identity_id)
        lines.append(RosterLine(
            identity_id=identity_id,
            display_name=names.get(identity_id),
            status=status_of(record),
            time_in=record.time_in if record else None,
            time_out=record.time_out if record else None,
            duration_hours=calculate_duration_hours(record) if record else 0.0
        ))
    return school_class, lines


async def attendance_summary(db: AsyncSession, class_id: int, start: date, end: date):
    """Per-day counts of each derived status across the class members"""
    if end < start:
        raise InvalidTimeFormat("Report end date is before its start date", start=start.isoformat(), end=end.isoformat())
    if (end - start).days + 1 > MAX_REPORT_DAYS:
        raise InvalidTimeFormat(f"Reports cover at most {MAX_REPORT_DAYS} days", start=start.isoformat(), end=end.isoformat())

    school_class = await _load_class(db, class_id)
    records = await list_records_between(db, school_class.class_identifier, start.isoformat(), end.isoformat())
    by_key = {(r.session_date, r.identity_id): r for r in records}

    days: List[Dict] = []
    day = start
    while day <= end:
        counts = Counter({status.value: 0 for status in AttendanceStatus})
        for identity_id in school_class.member_ids:
            counts[status_of(by_key.get((day.isoformat(), identity_id))).value] += 1
        days.append({"session_date": day, "counts": dict(counts)})
        day += timedelta(days=1)
    return school_class, days
