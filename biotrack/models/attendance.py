from typing import NamedTuple

from sqlalchemy import Column, Integer, String, DateTime, Text, UniqueConstraint, func

from biotrack.database import Base


class AttendanceKey(NamedTuple):
    class_identifier: str
    session_date: str  # YYYY-MM-DD
    identity_id: str

    @property
    def path(self) -> str:
        return f"attendance/{self.class_identifier}/{self.session_date}/{self.identity_id}"


class AttendanceRecord(Base):
    """One identity's attendance for one class on one calendar day"""
    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("class_identifier", "session_date", "identity_id", name="uq_attendance_key"),
    )

    attendance_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    class_identifier = Column(String(255), nullable=False, index=True)
    session_date = Column(String(10), nullable=False, index=True)
    identity_id = Column(String(128), nullable=False, index=True)

    time_in = Column(DateTime, nullable=True)
    time_out = Column(DateTime, nullable=True)
    verification_method = Column(String(64), nullable=True)

    excuse_reason = Column(Text, nullable=True)
    excuse_image = Column(String(1024), nullable=True)
    excuse_status = Column(String(16), nullable=True)  # pending | approved | declined
    excuse_submitted_at = Column(DateTime, nullable=True)
    excuse_reviewed_by = Column(String(128), nullable=True)
    excuse_reviewed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())

    @property
    def key(self) -> AttendanceKey:
        return AttendanceKey(self.class_identifier, self.session_date, self.identity_id)

    @property
    def path(self) -> str:
        return self.key.path

    @property
    def has_excuse(self) -> bool:
        return self.excuse_status is not None


class OpenSession(Base):
    """
    Index of open (timed in, not timed out) sessions, one row per identity
    per day. Its primary key makes a second concurrent time-in fail.
    """
    __tablename__ = "open_sessions"

    identity_id = Column(String(128), primary_key=True)
    session_date = Column(String(10), primary_key=True)
    class_identifier = Column(String(255), nullable=False)
    opened_at = Column(DateTime, nullable=False)
