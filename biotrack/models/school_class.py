import re

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, func
from sqlalchemy.orm import relationship

from biotrack.database import Base


class SchoolClass(Base):
    __tablename__ = "classes"

    class_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    subject_name = Column(String(255), nullable=False)
    join_code = Column(String(32), nullable=True, unique=True, index=True)
    teacher_id = Column(String(128), ForeignKey("identities.identity_id"), nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    schedule = relationship(
        "ClassSchedule",
        order_by="ClassSchedule.position",
        cascade="all, delete-orphan",
        lazy="selectin"
    )
    members = relationship(
        "ClassMember",
        order_by="ClassMember.joined_at",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    @property
    def class_identifier(self) -> str:
        """Key segment used for this class's attendance records"""
        if self.join_code:
            return self.join_code
        return re.sub(r"\s", "_", self.subject_name)

    @property
    def member_ids(self):
        return [member.identity_id for member in self.members]

    def __repr__(self):
        return f"<SchoolClass(id={self.class_id}, subject='{self.subject_name}')>"


class ClassSchedule(Base):
    __tablename__ = "class_schedules"

    schedule_id = Column(Integer, primary_key=True, autoincrement=True)
    class_id = Column(Integer, ForeignKey("classes.class_id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    day = Column(String(16), nullable=False)
    # 24-hour H:MM wall clock
    start_time = Column(String(8), nullable=False)
    end_time = Column(String(8), nullable=False)


class ClassMember(Base):
    __tablename__ = "class_members"

    class_id = Column(Integer, ForeignKey("classes.class_id", ondelete="CASCADE"), primary_key=True)
    identity_id = Column(String(128), ForeignKey("identities.identity_id"), primary_key=True, index=True)
    joined_at = Column(DateTime, nullable=False, server_default=func.now())
