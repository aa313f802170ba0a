from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from ..models import MeetingType


class MeetingForm(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    meeting_date: datetime
    location: Optional[str] = Field(default=None, max_length=255)
    duration_minutes: int = Field(default=60, ge=5, le=480)
    meeting_type: MeetingType = MeetingType.PARENT_MEETING
    class_id: int
    student_ids: List[int] = Field(min_length=1)
