from datetime import date
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from ..models import AgreementStatus
from .base import PartialUpdate


class ReportPeriodForm(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    start_date: date
    end_date: date
    academic_year_id: int
    semester_id: int

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date >= self.end_date:
            raise ValueError("Ngày bắt đầu phải trước ngày kết thúc")
        return self


class ReportPeriodUpdate(PartialUpdate):
    not_null = ("name", "start_date", "end_date", "is_active")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: Optional[bool] = None


class ReportForm(BaseModel):
    report_period_id: int
    student_id: int
    strengths: str = Field(min_length=1, max_length=5000)
    weaknesses: str = Field(min_length=1, max_length=5000)
    academic_performance: Optional[str] = Field(default=None, max_length=5000)
    discipline_status: Optional[str] = Field(default=None, max_length=5000)
    edit_mode: bool = False

    @field_validator("strengths", "weaknesses")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Không được để trống")
        return v


class ResendForm(BaseModel):
    resend_reason: str = Field(min_length=1, max_length=1000)

    @field_validator("resend_reason")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Vui lòng nhập lý do gửi lại")
        return v


class BulkSendForm(BaseModel):
    report_ids: List[int] = Field(min_length=1)


class ParentResponseForm(BaseModel):
    agreement_status: AgreementStatus
    comments: Optional[str] = Field(default=None, max_length=2000)
