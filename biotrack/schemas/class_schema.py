from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from biotrack.services.schedule import Window


class WindowIn(BaseModel):
    day: str = Field(..., description="Weekday name, e.g. Monday")
    start: str = Field(..., description="H:MM (24-hour) or h:mm AM/PM")
    end: str = Field(..., description="H:MM (24-hour) or h:mm AM/PM")

    def to_window(self) -> Window:
        return Window.parse(self.day, self.start, self.end)


class ClassCreate(BaseModel):
    subject_name: str = Field(..., min_length=1, max_length=255)
    schedule: List[WindowIn] = Field(..., min_length=1)
    teacher_id: Optional[str] = None

    @field_validator("subject_name")
    @classmethod
    def strip_subject(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Subject name must not be blank")
        return value


class ScheduleUpdate(BaseModel):
    schedule: List[WindowIn] = Field(..., min_length=1)


class JoinRequest(BaseModel):
    join_code: str = Field(..., min_length=1)
    identity_id: str


class WindowOut(BaseModel):
    day: str
    start: str
    end: str
    start_12h: str
    end_12h: str


class ClassResponse(BaseModel):
    class_id: int
    subject_name: str
    join_code: Optional[str]
    class_identifier: str
    teacher_id: Optional[str]
    schedule: List[WindowOut]
    member_ids: List[str]
    created_at: datetime
