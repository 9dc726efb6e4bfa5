import logging
from datetime import date, datetime
from typing import Callable, List

from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from biotrack.api.errors import database_unavailable, http_error
from biotrack.api.v1.attendance import record_response
from biotrack.core.exceptions import AttendanceError
from biotrack.dependencies import get_actor, get_clock, get_db, get_excuse_workflow, require_role
from biotrack.models.identity import Identity
from biotrack.schemas.attendance import AttendanceRecordResponse
from biotrack.schemas.excuse_schema import ExcuseResolve, ExcuseSubmit
from biotrack.services.excuses import ExcuseDecision, ExcuseWorkflow

logger = logging.getLogger(__name__)

excuse_router = APIRouter(prefix="/excuses", tags=["excuses"])


@excuse_router.post("", response_model=AttendanceRecordResponse, status_code=status.HTTP_201_CREATED)
async def submit_excuse(
        payload: ExcuseSubmit,
        actor: Identity = Depends(get_actor),
        db: AsyncSession = Depends(get_db),
        workflow: ExcuseWorkflow = Depends(get_excuse_workflow),
        clock: Callable[[], datetime] = Depends(get_clock)
):
    """
    Submit a justification for an absence. Students submit for themselves;
    admins may submit on a student's behalf.
    """
    try:
        if actor.identity_id != payload.identity_id:
            require_role(actor, "admin")

        key = await workflow.record_key(db, payload.class_id, payload.session_date, payload.identity_id)
        record = await workflow.submit(db, key, payload.reason, payload.image, now=clock())
        return record_response(record)

    except AttendanceError as e:
        raise http_error(e)
    except SQLAlchemyError as e:
        raise database_unavailable(e, "excuse submission")


@excuse_router.post("/{class_id}/{session_date}/{identity_id}/resolve", response_model=AttendanceRecordResponse)
async def resolve_excuse(
        class_id: int,
        session_date: date,
        identity_id: str,
        payload: ExcuseResolve,
        actor: Identity = Depends(get_actor),
        db: AsyncSession = Depends(get_db),
        workflow: ExcuseWorkflow = Depends(get_excuse_workflow),
        clock: Callable[[], datetime] = Depends(get_clock)
):
    """Approve or decline a pending excuse (teachers and admins)"""
    try:
        require_role(actor, "teacher", "admin")

        key = await workflow.record_key(db, class_id, session_date, identity_id, require_member=False)
        record = await workflow.resolve(
            db, key, ExcuseDecision(payload.decision), reviewer_id=actor.identity_id, now=clock()
        )
        return record_response(record)

    except AttendanceError as e:
        raise http_error(e)
    except SQLAlchemyError as e:
        raise database_unavailable(e, "excuse review")


@excuse_router.get("/class/{class_id}", response_model=List[AttendanceRecordResponse])
async def excuses_for_review(
        class_id: int,
        actor: Identity = Depends(get_actor),
        db: AsyncSession = Depends(get_db),
        workflow: ExcuseWorkflow = Depends(get_excuse_workflow),
        clock: Callable[[], datetime] = Depends(get_clock)
):
    """Excuses of the class from the review window that are not yet approved"""
    try:
        require_role(actor, "teacher", "admin")
        records = await workflow.list_for_review(db, class_id, today=clock().date())
        return [record_response(record) for record in records]
    except AttendanceError as e:
        raise http_error(e)
    except SQLAlchemyError as e:
        raise database_unavailable(e, "excuse listing")
