from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, Field


class ExcuseSubmit(BaseModel):
    class_id: int
    session_date: date
    identity_id: str
    reason: str = Field(..., min_length=1, max_length=2000)
    image: Optional[str] = Field(None, description="URL of a supporting document")


class ExcuseResolve(BaseModel):
    decision: Literal["approve", "decline"]
