import random

import pytest

from biotrack.core.exceptions import JoinCodeUnavailable
from biotrack.crud.identity import create_identity
from biotrack.crud.school_class import (
    add_member,
    create_class,
    generate_join_code,
    get_schedule,
    list_classes_for_identity,
    list_student_ids,
    remove_member,
    replace_schedule,
)


async def test_class_identifier_falls_back_to_subject(db):
    school_class = await create_class(db, "Intro to  Biology", [("Monday", "9:00", "10:00")])
    assert school_class.class_identifier == "Intro_to__Biology"

    coded = await create_class(db, "Chemistry", [("Monday", "9:00", "10:00")], join_code="CHEM321")
    assert coded.class_identifier == "CHEM321"


async def test_schedule_keeps_declaration_order(db):
    windows = [("Wednesday", "13:00", "14:00"), ("Monday", "9:00", "10:00")]
    school_class = await create_class(db, "Algebra", windows)

    rows = await get_schedule(db, school_class.class_id)
    assert [(row.day, row.start_time, row.end_time) for row in rows] == windows

    await replace_schedule(db, school_class, [("Friday", "8:00", "9:00")])
    rows = await get_schedule(db, school_class.class_id)
    assert [(row.day, row.start_time) for row in rows] == [("Friday", "8:00")]


async def test_membership(db, student):
    first = await create_class(db, "Algebra", [("Monday", "9:00", "10:00")], join_code="ALGE123")
    second = await create_class(db, "Biology", [("Monday", "9:00", "10:00")], join_code="BIOL456")

    assert await add_member(db, second, "S-001")
    assert await add_member(db, first, "S-001")
    assert not await add_member(db, first, "S-001")

    assert await list_student_ids(db, first.class_id) == ["S-001"]
    # Declaration order, not join order
    assert [c.subject_name for c in await list_classes_for_identity(db, "S-001")] == ["Algebra", "Biology"]

    assert await remove_member(db, first, "S-001")
    assert not await remove_member(db, first, "S-001")
    assert await list_student_ids(db, first.class_id) == []


async def test_join_code_format(db):
    code = await generate_join_code(db, "data science")
    assert code[:4] == "DATA"
    assert 100 <= int(code[4:]) <= 999


async def test_join_code_prefix_keeps_short_subjects_as_written(db, monkeypatch):
    monkeypatch.setattr(random, "randint", lambda low, high: 123)
    assert await generate_join_code(db, "AI Lab") == "AI L123"
    assert await generate_join_code(db, "Art") == "ART123"


async def test_join_code_retries_on_collision(db, monkeypatch):
    await create_class(db, "Algebra", [("Monday", "9:00", "10:00")], join_code="ALGE100")
    picks = iter([100, 100, 555])
    monkeypatch.setattr(random, "randint", lambda low, high: next(picks))
    assert await generate_join_code(db, "Algebra") == "ALGE555"


async def test_join_code_gives_up(db, monkeypatch):
    await create_class(db, "Algebra", [("Monday", "9:00", "10:00")], join_code="ALGE100")
    monkeypatch.setattr(random, "randint", lambda low, high: 100)
    with pytest.raises(JoinCodeUnavailable) as exc_info:
        await generate_join_code(db, "Algebra", attempts=3)
    assert exc_info.value.detail == {"prefix": "ALGE", "attempts": 3}
    assert exc_info.value.status_code == 409


async def test_class_with_teacher_starts_empty(db):
    await create_identity(db, "T-001", "Teacher", role="teacher")
    school_class = await create_class(db, "Algebra", [("Monday", "9:00", "10:00")], teacher_id="T-001")
    assert school_class.teacher_id == "T-001"
    assert school_class.member_ids == []
