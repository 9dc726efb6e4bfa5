import logging
from datetime import date, datetime
from typing import Callable, Literal, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from biotrack.api.errors import database_unavailable, http_error
from biotrack.core.exceptions import AttendanceError
from biotrack.crud.attendance import calculate_duration_hours
from biotrack.dependencies import get_clock, get_coordinator, get_db, get_face_coordinator, get_ledger
from biotrack.models.attendance import AttendanceRecord
from biotrack.schemas.attendance import (
    AttendanceAttempt,
    AttendanceRecordResponse,
    AttendanceReport,
    AttendanceResponse,
    ExcuseInfo,
    RosterEntry,
    RosterResponse,
    VerifyRequest,
)
from biotrack.services.face_recognition import get_face_service
from biotrack.services.face_service import face_capture_service
from biotrack.services.ledger import LedgerResult, SessionLedger, session_state, status_of
from biotrack.services.reports import attendance_summary, class_roster
from biotrack.services.verification import VerificationCoordinator, VerificationOutcome

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/attendance", tags=["attendance"])


def record_response(record: AttendanceRecord) -> AttendanceRecordResponse:
    excuse = None
    if record.has_excuse:
        excuse = ExcuseInfo(
            reason=record.excuse_reason,
            image=record.excuse_image,
            status=record.excuse_status,
            submitted_at=record.excuse_submitted_at,
            reviewed_by=record.excuse_reviewed_by,
            reviewed_at=record.excuse_reviewed_at
        )
    return AttendanceRecordResponse(
        path=record.path,
        class_identifier=record.class_identifier,
        session_date=record.session_date,
        identity_id=record.identity_id,
        time_in=record.time_in,
        time_out=record.time_out,
        verification_method=record.verification_method,
        excuse=excuse,
        state=session_state(record).value,
        status=status_of(record).value,
        duration_hours=calculate_duration_hours(record)
    )


def attendance_response(result: LedgerResult, outcome: Optional[VerificationOutcome] = None) -> AttendanceResponse:
    message = "Time-in recorded successfully" if result.action == "time_in" else "Time-out recorded successfully"
    return AttendanceResponse(
        success=True,
        message=message,
        action=result.action,
        identity_id=result.record.identity_id,
        class_id=result.school_class.class_id,
        subject_name=result.school_class.subject_name,
        record=record_response(result.record),
        distance=round(outcome.match.distance, 4) if outcome else None,
        threshold=outcome.match.threshold if outcome else None
    )


@router.get("/health")
async def health_check():
    """Check the health status of the face recognition service"""
    face_service = get_face_service()
    service_status = face_service.get_status()
    return {
        "status": service_status["status"],
        "message": f"Face recognition service is {service_status['status']}",
        "details": service_status,
        "timestamp": datetime.now().isoformat()
    }


@router.post("/time-in", response_model=AttendanceResponse)
async def time_in(
        attempt: AttendanceAttempt,
        db: AsyncSession = Depends(get_db),
        ledger: SessionLedger = Depends(get_ledger),
        clock: Callable[[], datetime] = Depends(get_clock)
):
    """
    Record a time-in for an identity in a class.

    Only accepted inside one of today's scheduled windows, once per class per
    day, and only while the identity has no other open session today.
    """
    try:
        result = await ledger.attempt_time_in(
            db,
            attempt.identity_id,
            attempt.class_id,
            clock(),
            verification_method=attempt.verification_method
        )
        return attendance_response(result)
    except AttendanceError as e:
        raise http_error(e)
    except SQLAlchemyError as e:
        raise database_unavailable(e, "time-in")


@router.post("/time-out", response_model=AttendanceResponse)
async def time_out(
        attempt: AttendanceAttempt,
        db: AsyncSession = Depends(get_db),
        ledger: SessionLedger = Depends(get_ledger),
        clock: Callable[[], datetime] = Depends(get_clock)
):
    """
    Record a time-out. Accepted only after the session's end time and within
    the grace period that follows it.
    """
    try:
        result = await ledger.attempt_time_out(
            db,
            attempt.identity_id,
            attempt.class_id,
            clock(),
            verification_method=attempt.verification_method
        )
        return attendance_response(result)
    except AttendanceError as e:
        raise http_error(e)
    except SQLAlchemyError as e:
        raise database_unavailable(e, "time-out")


@router.post("/verify", response_model=AttendanceResponse)
async def verify_embedding(
        request: VerifyRequest,
        db: AsyncSession = Depends(get_db),
        coordinator: VerificationCoordinator = Depends(get_coordinator),
        clock: Callable[[], datetime] = Depends(get_clock)
):
    """
    Match a face embedding against enrolled identities and record the time-in
    or time-out its current state calls for.
    """
    logger.info(f"Verification request received (mode: {request.mode})")
    try:
        outcome = await coordinator.verify(
            db,
            request.embedding,
            now=clock(),
            mode=request.mode,
            class_id=request.class_id
        )
        return attendance_response(outcome.result, outcome)
    except AttendanceError as e:
        raise http_error(e)
    except SQLAlchemyError as e:
        raise database_unavailable(e, "verification")


@router.post("/face/verify", response_model=AttendanceResponse)
async def verify_face(
        image: UploadFile = File(..., description="Face image for attendance"),
        mode: Literal["login", "kiosk"] = Query("kiosk"),
        class_id: Optional[int] = Query(None),
        db: AsyncSession = Depends(get_db),
        coordinator: VerificationCoordinator = Depends(get_face_coordinator),
        clock: Callable[[], datetime] = Depends(get_clock)
):
    """
    Face-based attendance: extract the embedding from the photo, then verify
    it as /attendance/verify does, against the face model's own thresholds.
    """
    embedding = await face_capture_service.embedding_from_upload(image)
    try:
        outcome = await coordinator.verify(db, embedding, now=clock(), mode=mode, class_id=class_id)
        return attendance_response(outcome.result, outcome)
    except AttendanceError as e:
        raise http_error(e)
    except SQLAlchemyError as e:
        raise database_unavailable(e, "face verification")


@router.get("/{class_id}/report", response_model=AttendanceReport)
async def class_report(
        class_id: int,
        start: date = Query(..., description="First day, YYYY-MM-DD"),
        end: date = Query(..., description="Last day, YYYY-MM-DD"),
        db: AsyncSession = Depends(get_db)
):
    """Per-day counts of each attendance status across the class members"""
    try:
        school_class, days = await attendance_summary(db, class_id, start, end)
        return AttendanceReport(
            class_id=school_class.class_id,
            subject_name=school_class.subject_name,
            start=start,
            end=end,
            days=days
        )
    except AttendanceError as e:
        raise http_error(e)
    except SQLAlchemyError as e:
        raise database_unavailable(e, "report")


@router.get("/{class_id}/{session_date}", response_model=RosterResponse)
async def class_day_roster(
        class_id: int,
        session_date: date,
        db: AsyncSession = Depends(get_db)
):
    """Every member's attendance status for one class day"""
    try:
        school_class, lines = await class_roster(db, class_id, session_date)
        return RosterResponse(
            class_id=school_class.class_id,
            subject_name=school_class.subject_name,
            session_date=session_date,
            entries=[
                RosterEntry(
                    identity_id=line.identity_id,
                    display_name=line.display_name,
                    status=line.status.value,
                    time_in=line.time_in,
                    time_out=line.time_out,
                    duration_hours=line.duration_hours
                )
                for line in lines
            ]
        )
    except AttendanceError as e:
        raise http_error(e)
    except SQLAlchemyError as e:
        raise database_unavailable(e, "roster")
