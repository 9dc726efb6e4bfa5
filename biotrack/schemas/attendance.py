from datetime import date, datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class AttendanceAttempt(BaseModel):
    identity_id: str
    class_id: int
    verification_method: str = "manual"


class VerifyRequest(BaseModel):
    embedding: List[float] = Field(..., min_length=1)
    mode: Literal["login", "kiosk"] = "kiosk"
    class_id: Optional[int] = None


class ExcuseInfo(BaseModel):
    reason: str
    image: Optional[str] = None
    status: str
    submitted_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None


class AttendanceRecordResponse(BaseModel):
    path: str
    class_identifier: str
    session_date: str
    identity_id: str
    time_in: Optional[datetime] = None
    time_out: Optional[datetime] = None
    verification_method: Optional[str] = None
    excuse: Optional[ExcuseInfo] = None
    state: str
    status: str
    duration_hours: float = 0.0


class AttendanceResponse(BaseModel):
    success: bool
    message: str
    action: str  # "time_in" | "time_out"
    identity_id: str
    class_id: int
    subject_name: str
    record: AttendanceRecordResponse
    distance: Optional[float] = None
    threshold: Optional[float] = None


class RosterEntry(BaseModel):
    identity_id: str
    display_name: Optional[str] = None
    status: str
    time_in: Optional[datetime] = None
    time_out: Optional[datetime] = None
    duration_hours: float = 0.0


class RosterResponse(BaseModel):
    class_id: int
    subject_name: str
    session_date: date
    entries: List[RosterEntry]


class DailySummary(BaseModel):
    session_date: date
    counts: Dict[str, int]


class AttendanceReport(BaseModel):
    class_id: int
    subject_name: str
    start: date
    end: date
    days: List[DailySummary]
