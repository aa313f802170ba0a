from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from ..models import GradeType
from .base import PartialUpdate, to_naive_utc

DEADLINE_FIELDS = ("start_date", "end_date", "import_deadline", "edit_deadline")


def _check_grade_value(v: float) -> float:
    if v < 0 or v > 10:
        raise ValueError("Điểm phải từ 0 đến 10")
    if round(v, 1) != round(v, 6):
        raise ValueError("Điểm chỉ được có tối đa 1 chữ số thập phân")
    return round(v, 1)


class GradePeriodForm(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    academic_year_id: int
    semester_id: int
    start_date: datetime
    end_date: datetime
    import_deadline: datetime
    edit_deadline: datetime
    description: Optional[str] = Field(default=None, max_length=1000)

    @field_validator(*DEADLINE_FIELDS)
    @classmethod
    def normalise_timezone(cls, v: datetime) -> datetime:
        return to_naive_utc(v)

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date >= self.end_date:
            raise ValueError("Ngày bắt đầu phải trước ngày kết thúc")
        if self.import_deadline > self.edit_deadline:
            raise ValueError("Hạn nhập điểm phải trước hoặc bằng hạn sửa điểm")
        if self.import_deadline > self.end_date:
            raise ValueError("Hạn nhập điểm phải trước hoặc bằng ngày kết thúc")
        return self


class GradePeriodUpdate(PartialUpdate):
    not_null = ("name", *DEADLINE_FIELDS, "is_active")

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    import_deadline: Optional[datetime] = None
    edit_deadline: Optional[datetime] = None
    description: Optional[str] = Field(default=None, max_length=1000)
    is_active: Optional[bool] = None

    @field_validator(*DEADLINE_FIELDS)
    @classmethod
    def normalise_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)


class GradeEntry(BaseModel):
    grade_period_id: int
    student_id: int
    subject_id: int
    class_id: int
    grade_type: GradeType = GradeType.SEMESTER1
    grade_value: float
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("grade_value")
    @classmethod
    def check_grade_value(cls, v: float) -> float:
        return _check_grade_value(v)


class GradeBatch(BaseModel):
    grades: List[GradeEntry] = Field(min_length=1)


class GradeUpdate(BaseModel):
    grade_value: float
    notes: Optional[str] = Field(default=None, max_length=500)
    change_reason: str = Field(min_length=10, max_length=1000)

    @field_validator("grade_value")
    @classmethod
    def check_grade_value(cls, v: float) -> float:
        return _check_grade_value(v)

    @field_validator("change_reason")
    @classmethod
    def strip_reason(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 10:
            raise ValueError("Lý do thay đổi phải có ít nhất 10 ký tự")
        return v


class GradeLockForm(BaseModel):
    grade_period_id: int
    class_id: int
    subject_id: int
    locked: bool = True
