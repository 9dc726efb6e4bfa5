from datetime import datetime

import pytest
import pytest_asyncio
from sqlalchemy import insert

from biotrack.core.exceptions import (
    AlreadyClosed,
    AlreadyExists,
    AlreadyOpenElsewhere,
    ClassNotFound,
    NoOpenSession,
    NoScheduleMatch,
    NotEnrolledInClass,
    TooEarly,
    TooLate,
)
from biotrack.crud.attendance import get_open_session, get_record
from biotrack.crud.identity import create_identity
from biotrack.models.attendance import AttendanceKey, AttendanceRecord, OpenSession
from biotrack.services.ledger import AttendanceStatus, SessionState

MONDAY = datetime(2024, 1, 1)
MONDAY_9_TO_10 = [("Monday", "9:00", "10:00")]


def at(hour, minute, day=MONDAY):
    return day.replace(hour=hour, minute=minute)


@pytest_asyncio.fixture
async def algebra(make_class, student):
    return await make_class("Algebra", MONDAY_9_TO_10, members=["S-001"], join_code="ALGE123")


async def test_time_in_before_start_is_rejected(db, ledger, algebra):
    with pytest.raises(NoScheduleMatch) as exc_info:
        await ledger.attempt_time_in(db, "S-001", algebra.class_id, at(8, 59))
    assert exc_info.value.detail["windows"][0]["start"] == "9:00"
    assert await get_record(db, AttendanceKey("ALGE123", "2024-01-01", "S-001")) is None


async def test_time_in_then_out_completes_the_session(db, ledger, algebra):
    result = await ledger.attempt_time_in(db, "S-001", algebra.class_id, at(9, 30))
    assert result.action == "time_in"
    assert result.state == SessionState.TIMED_IN
    assert result.status == AttendanceStatus.TIME_IN_ONLY
    assert result.record.path == "attendance/ALGE123/2024-01-01/S-001"
    assert await get_open_session(db, "S-001", "2024-01-01") is not None

    result = await ledger.attempt_time_out(db, "S-001", algebra.class_id, at(10, 5))
    assert result.action == "time_out"
    assert result.state == SessionState.COMPLETED
    assert result.status == AttendanceStatus.PRESENT
    assert result.record.time_in == at(9, 30)
    assert result.record.time_out == at(10, 5)
    assert await get_open_session(db, "S-001", "2024-01-01") is None


@pytest.mark.parametrize("hour, minute", [(9, 59), (10, 0)])
async def test_time_out_inside_window_is_too_early(db, ledger, algebra, hour, minute):
    await ledger.attempt_time_in(db, "S-001", algebra.class_id, at(9, 30))
    with pytest.raises(TooEarly) as exc_info:
        await ledger.attempt_time_out(db, "S-001", algebra.class_id, at(hour, minute))
    assert exc_info.value.detail["time_out_after"] == "10:00"
    assert exc_info.value.detail["time_out_until"] == "10:20"


async def test_time_out_at_end_of_grace_is_accepted(db, ledger, algebra):
    await ledger.attempt_time_in(db, "S-001", algebra.class_id, at(9, 30))
    result = await ledger.attempt_time_out(db, "S-001", algebra.class_id, at(10, 20))
    assert result.state == SessionState.COMPLETED


async def test_time_out_after_grace_is_too_late(db, ledger, algebra):
    await ledger.attempt_time_in(db, "S-001", algebra.class_id, at(9, 30))
    with pytest.raises(TooLate) as exc_info:
        await ledger.attempt_time_out(db, "S-001", algebra.class_id, at(10, 21))
    assert exc_info.value.detail["grace_minutes"] == 20

    record = await get_record(db, AttendanceKey("ALGE123", "2024-01-01", "S-001"))
    assert record.time_out is None


async def test_second_time_in_does_not_overwrite(db, ledger, algebra):
    await ledger.attempt_time_in(db, "S-001", algebra.class_id, at(9, 30))
    with pytest.raises(AlreadyExists):
        await ledger.attempt_time_in(db, "S-001", algebra.class_id, at(9, 45))

    record = await get_record(db, AttendanceKey("ALGE123", "2024-01-01", "S-001"))
    assert record.time_in == at(9, 30)


async def test_time_in_after_completion_is_rejected(db, ledger, algebra):
    await ledger.attempt_time_in(db, "S-001", algebra.class_id, at(9, 30))
    await ledger.attempt_time_out(db, "S-001", algebra.class_id, at(10, 5))
    with pytest.raises(AlreadyExists) as exc_info:
        await ledger.attempt_time_in(db, "S-001", algebra.class_id, at(9, 50))
    assert exc_info.value.detail["state"] == "COMPLETED"


async def test_second_time_out_does_not_overwrite(db, ledger, algebra):
    await ledger.attempt_time_in(db, "S-001", algebra.class_id, at(9, 30))
    await ledger.attempt_time_out(db, "S-001", algebra.class_id, at(10, 5))
    with pytest.raises(AlreadyClosed):
        await ledger.attempt_time_out(db, "S-001", algebra.class_id, at(10, 10))

    record = await get_record(db, AttendanceKey("ALGE123", "2024-01-01", "S-001"))
    assert record.time_out == at(10, 5)


async def test_time_out_without_time_in(db, ledger, algebra):
    with pytest.raises(NoOpenSession):
        await ledger.attempt_time_out(db, "S-001", algebra.class_id, at(10, 5))


async def test_next_day_is_a_fresh_session(db, ledger, make_class, student):
    daily = await make_class(
        "Daily Standup",
        [("Monday", "9:00", "10:00"), ("Tuesday", "9:00", "10:00")],
        members=["S-001"]
    )
    await ledger.attempt_time_in(db, "S-001", daily.class_id, at(9, 30))
    tuesday = datetime(2024, 1, 2)
    result = await ledger.attempt_time_in(db, "S-001", daily.class_id, at(9, 30, day=tuesday))
    assert result.record.path == "attendance/Daily_Standup/2024-01-02/S-001"


async def test_one_open_session_across_classes(db, ledger, make_class, student):
    first = await make_class("Algebra", MONDAY_9_TO_10, members=["S-001"], join_code="ALGE123")
    second = await make_class("Biology", [("Monday", "9:30", "11:00")], members=["S-001"], join_code="BIOL456")

    await ledger.attempt_time_in(db, "S-001", first.class_id, at(9, 15))
    with pytest.raises(AlreadyOpenElsewhere) as exc_info:
        await ledger.attempt_time_in(db, "S-001", second.class_id, at(9, 45))
    assert exc_info.value.detail["open_class_identifier"] == "ALGE123"

    await ledger.attempt_time_out(db, "S-001", first.class_id, at(10, 5))
    result = await ledger.attempt_time_in(db, "S-001", second.class_id, at(10, 10))
    assert result.record.class_identifier == "BIOL456"


async def test_open_session_index_rejects_a_concurrent_time_in(db, ledger, make_class, student):
    second = await make_class("Biology", [("Monday", "9:30", "11:00")], members=["S-001"], join_code="BIOL456")
    second_id = second.class_id

    # Another writer's session that the class scan has not seen yet
    await db.execute(insert(OpenSession).values(
        identity_id="S-001", session_date="2024-01-01", class_identifier="ALGE123", opened_at=at(9, 15)
    ))
    await db.commit()

    with pytest.raises(AlreadyOpenElsewhere) as exc_info:
        await ledger.attempt_time_in(db, "S-001", second_id, at(9, 45))
    assert exc_info.value.detail["open_class_identifier"] == "ALGE123"
    assert await get_record(db, AttendanceKey("BIOL456", "2024-01-01", "S-001")) is None


async def test_record_attendance_times_in_then_out(db, ledger, make_class, student):
    await make_class("Algebra", MONDAY_9_TO_10, members=["S-001"], join_code="ALGE123")
    await make_class("Biology", [("Monday", "13:00", "14:00")], members=["S-001"], join_code="BIOL456")

    result = await ledger.record_attendance(db, "S-001", at(13, 10))
    assert result.action == "time_in"
    assert result.school_class.subject_name == "Biology"

    result = await ledger.record_attendance(db, "S-001", at(14, 5))
    assert result.action == "time_out"
    assert result.record.class_identifier == "BIOL456"


async def test_record_attendance_outside_every_window(db, ledger, make_class, student):
    await make_class("Algebra", MONDAY_9_TO_10, members=["S-001"], join_code="ALGE123")
    with pytest.raises(NoScheduleMatch) as exc_info:
        await ledger.record_attendance(db, "S-001", at(12, 0))
    assert [w["start"] for w in exc_info.value.detail["windows"]] == ["9:00"]


async def test_non_member_and_missing_class(db, ledger, algebra):
    await create_identity(db, "S-002", "Outsider")
    with pytest.raises(NotEnrolledInClass):
        await ledger.attempt_time_in(db, "S-002", algebra.class_id, at(9, 30))
    with pytest.raises(ClassNotFound):
        await ledger.attempt_time_in(db, "S-001", 9999, at(9, 30))


async def test_stale_open_sessions_close_in_class_order(db, ledger, make_class, student):
    first = await make_class("Algebra", MONDAY_9_TO_10, members=["S-001"], join_code="ALGE123")
    await make_class("Biology", MONDAY_9_TO_10, members=["S-001"], join_code="BIOL456")
    first_id = first.class_id

    # Two open sessions left behind by rows written before the index existed.
    # Biology's record is older, but Algebra comes first in class order.
    for class_identifier in ("BIOL456", "ALGE123"):
        await db.execute(insert(AttendanceRecord).values(
            class_identifier=class_identifier,
            session_date="2024-01-01",
            identity_id="S-001",
            time_in=at(9, 15),
            verification_method="manual",
            created_at=at(9, 15)
        ))
    await db.commit()

    result = await ledger.record_attendance(db, "S-001", at(10, 5))
    assert result.action == "time_out"
    assert result.school_class.class_id == first_id
    assert result.record.identity_id == "S-001"
    assert result.record.class_identifier == "ALGE123"

    biology = await get_record(db, AttendanceKey("BIOL456", "2024-01-01", "S-001"))
    assert biology.time_in is not None
    assert biology.time_out is None
