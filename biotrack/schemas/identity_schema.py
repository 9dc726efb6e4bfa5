from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field


class IdentityCreate(BaseModel):
    identity_id: str = Field(..., min_length=1, max_length=128, description="Student/employee id, or email for staff")
    display_name: str = Field(..., min_length=1, max_length=255)
    role: Literal["student", "teacher", "admin"] = "student"
    email: Optional[EmailStr] = None
    embedding: Optional[List[float]] = Field(None, min_length=1, description="Face embedding to enroll right away")


class EmbeddingEnroll(BaseModel):
    embedding: List[float] = Field(..., min_length=1)


class IdentityResponse(BaseModel):
    identity_id: str
    display_name: str
    role: str
    email: Optional[str] = None
    is_enrolled: bool
    enrolled_at: Optional[datetime] = None

    class Config:
        from_attributes = True
