import logging
import random
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from biotrack.core.exceptions import JoinCodeUnavailable
from biotrack.models.school_class import ClassMember, ClassSchedule, SchoolClass

logger = logging.getLogger(__name__)


def _schedule_rows(windows: Sequence[Tuple[str, str, str]]) -> List[ClassSchedule]:
    return [
        ClassSchedule(position=i, day=day, start_time=start, end_time=end)
        for i, (day, start, end) in enumerate(windows)
    ]


async def get_class(db: AsyncSession, class_id: int) -> Optional[SchoolClass]:
    result = await db.execute(
        select(SchoolClass).where(SchoolClass.class_id == class_id)
    )
    return result.scalar_one_or_none()


async def get_schedule(db: AsyncSession, class_id: int) -> List[ClassSchedule]:
    """Weekly windows of a class in declaration order"""
    result = await db.execute(
        select(ClassSchedule)
        .where(ClassSchedule.class_id == class_id)
        .order_by(ClassSchedule.position)
    )
    return result.scalars().all()


async def get_class_by_join_code(db: AsyncSession, join_code: str) -> Optional[SchoolClass]:
    result = await db.execute(
        select(SchoolClass).where(SchoolClass.join_code == join_code)
    )
    return result.scalar_one_or_none()


async def create_class(
        db: AsyncSession,
        subject_name: str,
        windows: Sequence[Tuple[str, str, str]],
        teacher_id: Optional[str] = None,
        join_code: Optional[str] = None
) -> SchoolClass:
    school_class = SchoolClass(
        subject_name=subject_name,
        teacher_id=teacher_id,
        join_code=join_code,
        created_at=datetime.now(),
        schedule=_schedule_rows(windows),
        members=[]
    )
    db.add(school_class)
    await db.commit()
    return school_class


async def replace_schedule(
        db: AsyncSession,
        school_class: SchoolClass,
        windows: Sequence[Tuple[str, str, str]]
) -> SchoolClass:
    school_class.schedule = _schedule_rows(windows)
    await db.commit()
    return school_class


async def add_member(db: AsyncSession, school_class: SchoolClass, identity_id: str) -> bool:
    """Returns False if the identity was already a member"""
    if identity_id in school_class.member_ids:
        return False
    school_class.members.append(
        ClassMember(class_id=school_class.class_id, identity_id=identity_id, joined_at=datetime.now())
    )
    await db.commit()
    return True


async def remove_member(db: AsyncSession, school_class: SchoolClass, identity_id: str) -> bool:
    for member in list(school_class.members):
        if member.identity_id == identity_id:
            school_class.members.remove(member)
            await db.commit()
            return True
    return False


async def list_student_ids(db: AsyncSession, class_id: int) -> List[str]:
    result = await db.execute(
        select(ClassMember.identity_id)
        .where(ClassMember.class_id == class_id)
        .order_by(ClassMember.joined_at, ClassMember.identity_id)
    )
    return list(result.scalars().all())


async def list_classes_for_identity(db: AsyncSession, identity_id: str) -> List[SchoolClass]:
    """Classes the identity belongs to, in class declaration order"""
    result = await db.execute(
        select(SchoolClass)
        .join(ClassMember, ClassMember.class_id == SchoolClass.class_id)
        .where(ClassMember.identity_id == identity_id)
        .order_by(SchoolClass.class_id)
    )
    return result.scalars().all()


async def generate_join_code(db: AsyncSession, subject_name: str, attempts: int = 10) -> str:
    """First four characters of the subject, upper-cased, plus three random digits"""
    prefix = subject_name[:4].upper()
    for _ in range(attempts):
        code = f"{prefix}{random.randint(100, 999)}"
        if await get_class_by_join_code(db, code) is None:
            return code
        logger.debug(f"Join code {code} is taken, retrying")
    raise JoinCodeUnavailable(
        f"Could not find a free join code for '{subject_name}'",
        prefix=prefix,
        attempts=attempts
    )
