"""
Excuse workflow for absences.

An excuse is attached to an absent attendance record as ``pending`` and is
resolved exactly once to ``approved`` (the day becomes an excused absence)
or ``declined`` (the day stays absent). Pending excuses never expire.
"""
import logging
from datetime import date, datetime, timedelta
from enum import Enum
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from biotrack.core.exceptions import ClassNotFound, ExcuseNotAllowed, NotEnrolledInClass, NotPending
from biotrack.crud.attendance import (
    attach_excuse,
    create_excuse_record,
    get_record,
    list_unapproved_excuses,
    resolve_excuse_if_pending,
)
from biotrack.crud.school_class import get_class
from biotrack.models.attendance import AttendanceKey, AttendanceRecord
from biotrack.models.school_class import SchoolClass
from biotrack.services.ledger import status_of

logger = logging.getLogger(__name__)


class ExcuseStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"


class ExcuseDecision(str, Enum):
    APPROVE = "approve"
    DECLINE = "decline"

    @property
    def resulting_status(self) -> ExcuseStatus:
        return ExcuseStatus.APPROVED if self is ExcuseDecision.APPROVE else ExcuseStatus.DECLINED


class ExcuseWorkflow:
    def __init__(self, allow_resubmission: bool = False, review_window_days: int = 30):
        self.allow_resubmission = allow_resubmission
        self.review_window_days = review_window_days

    async def record_key(
            self,
            db: AsyncSession,
            class_id: int,
            day: date,
            identity_id: str,
            require_member: bool = True
    ) -> AttendanceKey:
        school_class = await self._load_class(db, class_id)
        if require_member and identity_id not in school_class.member_ids:
            raise NotEnrolledInClass(
                f"{identity_id} is not a member of {school_class.subject_name}",
                class_id=class_id,
                identity_id=identity_id
            )
        return AttendanceKey(school_class.class_identifier, day.isoformat(), identity_id)

    async def _load_class(self, db: AsyncSession, class_id: int) -> SchoolClass:
        school_class = await get_class(db, class_id)
        if school_class is None:
            raise ClassNotFound(f"Class {class_id} not found", class_id=class_id)
        return school_class

    def _check_submittable(self, record: Optional[AttendanceRecord], key: AttendanceKey):
        if record is None:
            return
        if record.time_in is not None:
            raise ExcuseNotAllowed(
                "Attendance was recorded for this day; there is no absence to excuse",
                path=key.path,
                status=status_of(record).value
            )
        if record.excuse_status is None:
            return
        if record.excuse_status == ExcuseStatus.DECLINED.value and self.allow_resubmission:
            return
        raise ExcuseNotAllowed(
            "An excuse was already submitted for this day",
            path=key.path,
            excuse_status=record.excuse_status
        )

    async def submit(
            self,
            db: AsyncSession,
            key: AttendanceKey,
            reason: str,
            image: Optional[str] = None,
            now: Optional[datetime] = None
    ) -> AttendanceRecord:
        now = now or datetime.now()
        record = await get_record(db, key)
        self._check_submittable(record, key)

        if record is None:
            try:
                await create_excuse_record(db, key, reason, image, now)
            except IntegrityError:
                await db.rollback()
                current = await get_record(db, key)
                self._check_submittable(current, key)
                if not await attach_excuse(db, key, reason, image, now, self.allow_resubmission):
                    self._check_submittable(await get_record(db, key), key)
        elif not await attach_excuse(db, key, reason, image, now, self.allow_resubmission):
            # State moved between the read and the write
            self._check_submittable(await get_record(db, key), key)

        record = await get_record(db, key)
        logger.info(f"Excuse submitted for {key.path}")
        return record

    async def resolve(
            self,
            db: AsyncSession,
            key: AttendanceKey,
            decision: ExcuseDecision,
            reviewer_id: str,
            now: Optional[datetime] = None
    ) -> AttendanceRecord:
        now = now or datetime.now()
        decision = ExcuseDecision(decision)

        resolved = await resolve_excuse_if_pending(db, key, decision.resulting_status.value, reviewer_id, now)
        record = await get_record(db, key)
        if not resolved:
            logger.warning(f"Excuse resolution rejected for {key.path}: not pending")
            raise NotPending(
                "Excuse is not pending review",
                path=key.path,
                excuse_status=record.excuse_status if record else None
            )

        logger.info(f"Excuse for {key.path} {decision.resulting_status.value} by {reviewer_id}")
        return record

    async def list_for_review(
            self,
            db: AsyncSession,
            class_id: int,
            today: Optional[date] = None
    ) -> List[AttendanceRecord]:
        """Unapproved excuses of the class within the review window, newest day first"""
        today = today or date.today()
        school_class = await self._load_class(db, class_id)
        since = today - timedelta(days=self.review_window_days)
        return await list_unapproved_excuses(
            db, school_class.class_identifier, since.isoformat(), today.isoformat()
        )
