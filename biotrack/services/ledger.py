"""
Session ledger: the per (class, day, identity) attendance state machine.

    NONE --time in--> TIMED_IN --time out--> COMPLETED

Every transition is gated by the class schedule and guarded against
overwrites: time-in never replaces an existing session and time-out only
updates a record that is still open. An identity may hold at most one open
session per day across all of its classes; this is checked by scanning the
identity's classes and enforced by the ``open_sessions`` index, whose primary
key rejects a concurrent second time-in.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

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
from biotrack.crud.attendance import (
    create_time_in,
    get_open_session,
    get_record,
    list_open_records,
    set_time_in_if_absent,
    set_time_out_if_open,
)
from biotrack.crud.school_class import get_class, list_classes_for_identity
from biotrack.models.attendance import AttendanceKey, AttendanceRecord
from biotrack.models.school_class import SchoolClass
from biotrack.services.schedule import (
    DEFAULT_GRACE_MINUTES,
    Window,
    WindowState,
    is_within,
    timeout_window,
    window_state,
    windows_for_day,
    windows_from_class,
)
from biotrack.utils.time_format import format_minutes, session_date, weekday_name

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    NONE = "NONE"
    TIMED_IN = "TIMED_IN"
    COMPLETED = "COMPLETED"


class AttendanceStatus(str, Enum):
    PRESENT = "Present"
    TIME_IN_ONLY = "Time In Only"
    EXCUSED_ABSENCE = "Excused Absence"
    PENDING_EXCUSE = "Pending Excuse"
    ABSENT = "Absent"


def session_state(record: Optional[AttendanceRecord]) -> SessionState:
    if record is None or record.time_in is None:
        return SessionState.NONE
    if record.time_out is None:
        return SessionState.TIMED_IN
    return SessionState.COMPLETED


def status_of(record: Optional[AttendanceRecord]) -> AttendanceStatus:
    """Derived attendance label; never stored"""
    if record is None:
        return AttendanceStatus.ABSENT
    if record.time_in is not None and record.time_out is not None:
        return AttendanceStatus.PRESENT
    if record.time_in is not None:
        return AttendanceStatus.TIME_IN_ONLY
    if record.excuse_status == "approved":
        return AttendanceStatus.EXCUSED_ABSENCE
    if record.excuse_status == "pending":
        return AttendanceStatus.PENDING_EXCUSE
    return AttendanceStatus.ABSENT


@dataclass
class LedgerResult:
    action: str  # "time_in" | "time_out"
    school_class: SchoolClass
    record: AttendanceRecord
    window: Optional[Window] = None

    @property
    def state(self) -> SessionState:
        return session_state(self.record)

    @property
    def status(self) -> AttendanceStatus:
        return status_of(self.record)


def _windows_detail(windows: List[Window]):
    return [window.to_dict() for window in windows]


class SessionLedger:
    def __init__(self, grace_minutes: int = DEFAULT_GRACE_MINUTES):
        self.grace_minutes = grace_minutes

    async def _load_class(self, db: AsyncSession, identity_id: str, class_id: int) -> SchoolClass:
        school_class = await get_class(db, class_id)
        if school_class is None:
            raise ClassNotFound(f"Class {class_id} not found", class_id=class_id)
        if identity_id not in school_class.member_ids:
            raise NotEnrolledInClass(
                f"{identity_id} is not a member of {school_class.subject_name}",
                class_id=class_id,
                identity_id=identity_id
            )
        return school_class

    async def find_open_session(
            self,
            db: AsyncSession,
            identity_id: str,
            day: str,
            exclude: Optional[str] = None
    ) -> Optional[tuple]:
        """
        First (class, record) pair, in class declaration order, holding an
        open session for the identity on that day.
        """
        open_records = {
            record.class_identifier: record
            for record in reversed(await list_open_records(db, identity_id, day))
        }
        if not open_records:
            return None

        for school_class in await list_classes_for_identity(db, identity_id):
            identifier = school_class.class_identifier
            if identifier == exclude:
                continue
            if identifier in open_records:
                return school_class, open_records[identifier]
        return None

    async def attempt_time_in(
            self,
            db: AsyncSession,
            identity_id: str,
            class_id: int,
            now: datetime,
            verification_method: Optional[str] = "manual"
    ) -> LedgerResult:
        school_class = await self._load_class(db, identity_id, class_id)
        return await self._time_in(db, identity_id, school_class, now, verification_method)

    async def _time_in(
            self,
            db: AsyncSession,
            identity_id: str,
            school_class: SchoolClass,
            now: datetime,
            verification_method: Optional[str]
    ) -> LedgerResult:
        schedule = windows_from_class(school_class)
        match = is_within(schedule, now)
        if not match.matched:
            logger.warning(f"Time-in rejected for {identity_id}: no window of {school_class.subject_name} at {now}")
            raise NoScheduleMatch(
                f"{school_class.subject_name} has no session scheduled at this time",
                class_id=school_class.class_id,
                day=weekday_name(now),
                at=now.isoformat(),
                windows=_windows_detail(windows_for_day(schedule, now))
            )

        key = AttendanceKey(school_class.class_identifier, session_date(now), identity_id)

        elsewhere = await self.find_open_session(db, identity_id, key.session_date, exclude=key.class_identifier)
        if elsewhere is not None:
            other_class, other_record = elsewhere
            logger.warning(f"Time-in rejected for {identity_id}: session still open in {other_class.subject_name}")
            raise AlreadyOpenElsewhere(
                f"Time out of {other_class.subject_name} before timing in to another class",
                open_class_id=other_class.class_id,
                open_class_identifier=other_class.class_identifier,
                time_in=other_record.time_in.isoformat()
            )

        existing = await get_record(db, key)
        if session_state(existing) != SessionState.NONE:
            raise AlreadyExists(
                "Attendance already recorded for this class today",
                path=key.path,
                state=session_state(existing).value
            )

        try:
            if existing is None:
                await create_time_in(db, key, now, verification_method)
            elif not await set_time_in_if_absent(db, key, now, verification_method):
                current = await get_record(db, key)
                raise AlreadyExists(
                    "Attendance already recorded for this class today",
                    path=key.path,
                    state=session_state(current).value
                )
        except IntegrityError:
            # Lost a race with a concurrent writer; report what won
            await db.rollback()
            current = await get_record(db, key)
            if session_state(current) != SessionState.NONE:
                raise AlreadyExists(
                    "Attendance already recorded for this class today",
                    path=key.path,
                    state=session_state(current).value
                )
            index_row = await get_open_session(db, identity_id, key.session_date)
            raise AlreadyOpenElsewhere(
                "Another session was opened for this identity at the same time",
                open_class_identifier=index_row.class_identifier if index_row else None
            )

        record = await get_record(db, key)
        logger.info(f"Time-in recorded: {key.path} at {now.isoformat()} via {verification_method}")
        return LedgerResult(action="time_in", school_class=school_class, record=record, window=match.window)

    async def attempt_time_out(
            self,
            db: AsyncSession,
            identity_id: str,
            class_id: int,
            now: datetime,
            verification_method: Optional[str] = None
    ) -> LedgerResult:
        school_class = await self._load_class(db, identity_id, class_id)
        return await self._time_out(db, identity_id, school_class, now, verification_method)

    async def _time_out(
            self,
            db: AsyncSession,
            identity_id: str,
            school_class: SchoolClass,
            now: datetime,
            verification_method: Optional[str]
    ) -> LedgerResult:
        key = AttendanceKey(school_class.class_identifier, session_date(now), identity_id)
        record = await get_record(db, key)

        if session_state(record) == SessionState.NONE:
            raise NoOpenSession(
                "No time-in recorded for this class today",
                path=key.path
            )
        if record.time_out is not None:
            raise AlreadyClosed(
                "Time-out already recorded for this class today",
                path=key.path,
                time_out=record.time_out.isoformat()
            )

        schedule = windows_from_class(school_class)
        window = timeout_window(schedule, record.time_in, now)
        if window is None:
            raise NoScheduleMatch(
                f"{school_class.subject_name} has no session scheduled today",
                class_id=school_class.class_id,
                day=weekday_name(now),
                at=now.isoformat(),
                windows=[]
            )

        bounds = {
            "window": window.to_dict(),
            "grace_minutes": self.grace_minutes,
            "time_out_after": window.end,
            "time_out_until": format_minutes(window.end_minutes + self.grace_minutes),
            "at": now.isoformat(),
        }
        state = window_state(window, now, self.grace_minutes)
        if state in (WindowState.BEFORE_START, WindowState.IN_WINDOW):
            logger.warning(f"Time-out too early for {key.path} at {now.isoformat()}")
            raise TooEarly(f"Time-out opens after the session ends at {window.end}", **bounds)
        if state == WindowState.AFTER_GRACE:
            logger.warning(f"Time-out too late for {key.path} at {now.isoformat()}")
            raise TooLate(
                f"Time-out closed {self.grace_minutes} minutes after the session ended at {window.end}",
                **bounds
            )

        if not await set_time_out_if_open(db, key, now, verification_method):
            current = await get_record(db, key)
            raise AlreadyClosed(
                "Time-out already recorded for this class today",
                path=key.path,
                time_out=current.time_out.isoformat() if current and current.time_out else None
            )

        record = await get_record(db, key)
        logger.info(f"Time-out recorded: {key.path} at {now.isoformat()}")
        return LedgerResult(action="time_out", school_class=school_class, record=record, window=window)

    async def record_attendance(
            self,
            db: AsyncSession,
            identity_id: str,
            now: datetime,
            class_id: Optional[int] = None,
            verification_method: Optional[str] = "face_recognition"
    ) -> LedgerResult:
        """
        Time in or out, whichever the identity's current state calls for.

        An open session today (first in class declaration order) is timed
        out; otherwise the first class scheduled right now is timed in.
        """
        if class_id is not None:
            school_class = await self._load_class(db, identity_id, class_id)
            key = AttendanceKey(school_class.class_identifier, session_date(now), identity_id)
            if session_state(await get_record(db, key)) == SessionState.TIMED_IN:
                return await self._time_out(db, identity_id, school_class, now, verification_method)
            return await self._time_in(db, identity_id, school_class, now, verification_method)

        open_session = await self.find_open_session(db, identity_id, session_date(now))
        if open_session is not None:
            school_class, _ = open_session
            return await self._time_out(db, identity_id, school_class, now, verification_method)

        classes = await list_classes_for_identity(db, identity_id)
        for school_class in classes:
            if is_within(windows_from_class(school_class), now).matched:
                return await self._time_in(db, identity_id, school_class, now, verification_method)

        todays = []
        for school_class in classes:
            for window in windows_for_day(windows_from_class(school_class), now):
                todays.append({"class_id": school_class.class_id, **window.to_dict()})
        raise NoScheduleMatch(
            "You do not have any class scheduled for now",
            day=weekday_name(now),
            at=now.isoformat(),
            windows=todays
        )
