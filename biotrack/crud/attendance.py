from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, delete, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from biotrack.models.attendance import AttendanceKey, AttendanceRecord, OpenSession


def _key_clause(key: AttendanceKey):
    return and_(
        AttendanceRecord.class_identifier == key.class_identifier,
        AttendanceRecord.session_date == key.session_date,
        AttendanceRecord.identity_id == key.identity_id
    )


async def get_record(db: AsyncSession, key: AttendanceKey) -> Optional[AttendanceRecord]:
    # Conditional updates bypass the identity map, so always re-read the row
    result = await db.execute(
        select(AttendanceRecord)
        .where(_key_clause(key))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_open_records(
        db: AsyncSession,
        identity_id: str,
        session_date: str
) -> List[AttendanceRecord]:
    """Records for the identity on that day with time-in set and no time-out"""
    query = select(AttendanceRecord).where(
        and_(
            AttendanceRecord.identity_id == identity_id,
            AttendanceRecord.session_date == session_date,
            AttendanceRecord.time_in.isnot(None),
            AttendanceRecord.time_out.is_(None)
        )
    ).order_by(AttendanceRecord.attendance_id)
    result = await db.execute(query)
    return result.scalars().all()


async def create_time_in(
        db: AsyncSession,
        key: AttendanceKey,
        now: datetime,
        verification_method: Optional[str]
) -> None:
    """
    Create the record together with its open-session index row in one
    commit. Raises IntegrityError if either key is already taken.
    """
    db.add(AttendanceRecord(
        class_identifier=key.class_identifier,
        session_date=key.session_date,
        identity_id=key.identity_id,
        time_in=now,
        verification_method=verification_method,
        created_at=now
    ))
    db.add(OpenSession(
        identity_id=key.identity_id,
        session_date=key.session_date,
        class_identifier=key.class_identifier,
        opened_at=now
    ))
    await db.commit()


async def set_time_in_if_absent(
        db: AsyncSession,
        key: AttendanceKey,
        now: datetime,
        verification_method: Optional[str]
) -> bool:
    """Time in an existing record that has no time-in yet (e.g. one holding an excuse)"""
    result = await db.execute(
        update(AttendanceRecord)
        .where(_key_clause(key), AttendanceRecord.time_in.is_(None))
        .values(time_in=now, verification_method=verification_method)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        return False

    db.add(OpenSession(
        identity_id=key.identity_id,
        session_date=key.session_date,
        class_identifier=key.class_identifier,
        opened_at=now
    ))
    await db.commit()
    return True


async def set_time_out_if_open(
        db: AsyncSession,
        key: AttendanceKey,
        now: datetime,
        verification_method: Optional[str]
) -> bool:
    """Close the session only while it is still open; False if it was not"""
    values = {"time_out": now}
    if verification_method:
        values["verification_method"] = verification_method

    result = await db.execute(
        update(AttendanceRecord)
        .where(
            _key_clause(key),
            AttendanceRecord.time_in.isnot(None),
            AttendanceRecord.time_out.is_(None)
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        return False

    await db.execute(
        delete(OpenSession).where(
            OpenSession.identity_id == key.identity_id,
            OpenSession.session_date == key.session_date,
            OpenSession.class_identifier == key.class_identifier
        )
    )
    await db.commit()
    return True


async def create_excuse_record(
        db: AsyncSession,
        key: AttendanceKey,
        reason: str,
        image: Optional[str],
        now: datetime
) -> None:
    """Create a record that only carries a pending excuse. Raises IntegrityError if it exists"""
    db.add(AttendanceRecord(
        class_identifier=key.class_identifier,
        session_date=key.session_date,
        identity_id=key.identity_id,
        excuse_reason=reason,
        excuse_image=image,
        excuse_status="pending",
        excuse_submitted_at=now,
        created_at=now
    ))
    await db.commit()


async def attach_excuse(
        db: AsyncSession,
        key: AttendanceKey,
        reason: str,
        image: Optional[str],
        now: datetime,
        replace_declined: bool = False
) -> bool:
    """
    Attach a pending excuse to an absent record that has none (or, when
    ``replace_declined``, a declined one).
    """
    allowed = AttendanceRecord.excuse_status.is_(None)
    if replace_declined:
        allowed = or_(allowed, AttendanceRecord.excuse_status == "declined")

    result = await db.execute(
        update(AttendanceRecord)
        .where(_key_clause(key), AttendanceRecord.time_in.is_(None), allowed)
        .values(
            excuse_reason=reason,
            excuse_image=image,
            excuse_status="pending",
            excuse_submitted_at=now,
            excuse_reviewed_by=None,
            excuse_reviewed_at=None
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def resolve_excuse_if_pending(
        db: AsyncSession,
        key: AttendanceKey,
        new_status: str,
        reviewer_id: str,
        now: datetime
) -> bool:
    result = await db.execute(
        update(AttendanceRecord)
        .where(_key_clause(key), AttendanceRecord.excuse_status == "pending")
        .values(excuse_status=new_status, excuse_reviewed_by=reviewer_id, excuse_reviewed_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def list_day_records(
        db: AsyncSession,
        class_identifier: str,
        session_date: str
) -> List[AttendanceRecord]:
    query = select(AttendanceRecord).where(
        and_(
            AttendanceRecord.class_identifier == class_identifier,
            AttendanceRecord.session_date == session_date
        )
    ).order_by(AttendanceRecord.identity_id)
    result = await db.execute(query)
    return result.scalars().all()


async def list_records_between(
        db: AsyncSession,
        class_identifier: str,
        start_date: str,
        end_date: str
) -> List[AttendanceRecord]:
    """Records for a class with start_date <= date <= end_date (ISO strings sort by date)"""
    query = select(AttendanceRecord).where(
        and_(
            AttendanceRecord.class_identifier == class_identifier,
            AttendanceRecord.session_date >= start_date,
            AttendanceRecord.session_date <= end_date
        )
    ).order_by(AttendanceRecord.session_date, AttendanceRecord.identity_id)
    result = await db.execute(query)
    return result.scalars().all()


async def list_unapproved_excuses(
        db: AsyncSession,
        class_identifier: str,
        since_date: str,
        until_date: str
) -> List[AttendanceRecord]:
    """Excuses still pending or declined, newest day first"""
    query = select(AttendanceRecord).where(
        and_(
            AttendanceRecord.class_identifier == class_identifier,
            AttendanceRecord.session_date >= since_date,
            AttendanceRecord.session_date <= until_date,
            AttendanceRecord.excuse_status.isnot(None),
            AttendanceRecord.excuse_status != "approved"
        )
    ).order_by(AttendanceRecord.session_date.desc(), AttendanceRecord.identity_id)
    result = await db.execute(query)
    return result.scalars().all()


def calculate_duration_hours(record: AttendanceRecord) -> float:
    """Hours between time-in and time-out; zero while the session is open"""
    if record.time_in is None or record.time_out is None:
        return 0.0
    return (record.time_out - record.time_in).total_seconds() / 3600.0


async def get_open_session(db: AsyncSession, identity_id: str, session_date: str) -> Optional[OpenSession]:
    result = await db.execute(
        select(OpenSession)
        .where(OpenSession.identity_id == identity_id, OpenSession.session_date == session_date)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()
