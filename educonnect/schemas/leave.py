from datetime import date
from typing import Literal, Optional
from pydantic import BaseModel, Field, model_validator

from ..models import LeaveType


class LeaveApplicationForm(BaseModel):
    student_id: int
    leave_type: LeaveType
    start_date: date
    end_date: date
    reason: str = Field(min_length=1, max_length=1000)
    attachment_url: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("Ngày kết thúc phải sau hoặc bằng ngày bắt đầu")
        return self


class LeaveResponseForm(BaseModel):
    status: Literal["approved", "rejected"]
    teacher_response: Optional[str] = Field(default=None, max_length=1000)
