import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from biotrack.api.errors import database_unavailable, http_error
from biotrack.core.exceptions import AttendanceError, ClassNotFound, IdentityNotFound
from biotrack.crud.identity import get_identity
from biotrack.crud.school_class import (
    add_member,
    create_class,
    generate_join_code,
    get_class,
    get_class_by_join_code,
    list_classes_for_identity,
    remove_member,
    replace_schedule,
)
from biotrack.dependencies import get_db
from biotrack.models.school_class import SchoolClass
from biotrack.schemas.class_schema import ClassCreate, ClassResponse, JoinRequest, ScheduleUpdate, WindowOut
from biotrack.services.schedule import windows_from_class

logger = logging.getLogger(__name__)

class_router = APIRouter(prefix="/classes", tags=["classes"])


def convert_to_class_response(school_class: SchoolClass) -> ClassResponse:
    return ClassResponse(
        class_id=school_class.class_id,
        subject_name=school_class.subject_name,
        join_code=school_class.join_code,
        class_identifier=school_class.class_identifier,
        teacher_id=school_class.teacher_id,
        schedule=[WindowOut(**window.to_dict()) for window in windows_from_class(school_class)],
        member_ids=school_class.member_ids,
        created_at=school_class.created_at
    )


async def _load_class(db: AsyncSession, class_id: int) -> SchoolClass:
    school_class = await get_class(db, class_id)
    if school_class is None:
        raise ClassNotFound(f"Class {class_id} not found", class_id=class_id)
    return school_class


@class_router.post("", response_model=ClassResponse, status_code=status.HTTP_201_CREATED)
async def create_new_class(payload: ClassCreate, db: AsyncSession = Depends(get_db)):
    """
    Create a class with its weekly schedule. A join code is generated from
    the subject name.
    """
    try:
        windows = [entry.to_window() for entry in payload.schedule]

        if payload.teacher_id and await get_identity(db, payload.teacher_id) is None:
            raise IdentityNotFound(f"Teacher '{payload.teacher_id}' not found", identity_id=payload.teacher_id)

        join_code = await generate_join_code(db, payload.subject_name)
        school_class = await create_class(
            db,
            subject_name=payload.subject_name,
            windows=[(w.day, w.start, w.end) for w in windows],
            teacher_id=payload.teacher_id,
            join_code=join_code
        )
        logger.info(f"Class created: {school_class.subject_name} (join code: {join_code})")
        return convert_to_class_response(school_class)

    except AttendanceError as e:
        raise http_error(e)
    except SQLAlchemyError as e:
        raise database_unavailable(e, "class creation")


@class_router.get("/identity/{identity_id}", response_model=List[ClassResponse])
async def get_classes_for_identity(identity_id: str, db: AsyncSession = Depends(get_db)):
    try:
        classes = await list_classes_for_identity(db, identity_id)
        return [convert_to_class_response(school_class) for school_class in classes]
    except SQLAlchemyError as e:
        raise database_unavailable(e, "class listing")


@class_router.get("/{class_id}", response_model=ClassResponse)
async def get_class_detail(class_id: int, db: AsyncSession = Depends(get_db)):
    try:
        return convert_to_class_response(await _load_class(db, class_id))
    except AttendanceError as e:
        raise http_error(e)
    except SQLAlchemyError as e:
        raise database_unavailable(e, "class lookup")


@class_router.put("/{class_id}/schedule", response_model=ClassResponse)
async def update_class_schedule(
        class_id: int,
        payload: ScheduleUpdate,
        db: AsyncSession = Depends(get_db)
):
    """Replace the class's weekly windows; existing attendance records are untouched"""
    try:
        windows = [entry.to_window() for entry in payload.schedule]
        school_class = await _load_class(db, class_id)
        school_class = await replace_schedule(db, school_class, [(w.day, w.start, w.end) for w in windows])
        logger.info(f"Schedule of class {class_id} replaced with {len(windows)} window(s)")
        return convert_to_class_response(school_class)
    except AttendanceError as e:
        raise http_error(e)
    except SQLAlchemyError as e:
        raise database_unavailable(e, "schedule update")


@class_router.post("/join", response_model=ClassResponse)
async def join_class(payload: JoinRequest, db: AsyncSession = Depends(get_db)):
    """Add an identity to the class holding the given join code"""
    try:
        school_class = await get_class_by_join_code(db, payload.join_code.strip().upper())
        if school_class is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"message": "Invalid join code", "error_type": "invalid_join_code"}
            )
        if await get_identity(db, payload.identity_id) is None:
            raise IdentityNotFound(f"Identity '{payload.identity_id}' not found", identity_id=payload.identity_id)

        if await add_member(db, school_class, payload.identity_id):
            logger.info(f"{payload.identity_id} joined {school_class.subject_name}")
        else:
            logger.info(f"{payload.identity_id} is already a member of {school_class.subject_name}")
        return convert_to_class_response(school_class)

    except AttendanceError as e:
        raise http_error(e)
    except SQLAlchemyError as e:
        raise database_unavailable(e, "class join")


@class_router.delete("/{class_id}/members/{identity_id}", response_model=ClassResponse)
async def remove_class_member(class_id: int, identity_id: str, db: AsyncSession = Depends(get_db)):
    try:
        school_class = await _load_class(db, class_id)
        if not await remove_member(db, school_class, identity_id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"message": f"{identity_id} is not a member of this class", "error_type": "not_a_member"}
            )
        logger.info(f"{identity_id} removed from {school_class.subject_name}")
        return convert_to_class_response(school_class)
    except AttendanceError as e:
        raise http_error(e)
    except SQLAlchemyError as e:
        raise database_unavailable(e, "member removal")
