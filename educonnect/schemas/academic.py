from datetime import date
from typing import Optional
from pydantic import BaseModel, Field, model_validator

from .base import PartialUpdate


class _DateRange(BaseModel):
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date >= self.end_date:
            raise ValueError("Ngày bắt đầu phải trước ngày kết thúc")
        return self


class AcademicYearForm(_DateRange):
    name: str = Field(min_length=1, max_length=20)
    is_current: bool = False


class SemesterForm(_DateRange):
    academic_year_id: int
    name: str = Field(min_length=1, max_length=50)
    semester_number: int = Field(ge=1, le=2)
    is_current: bool = False


class ClassForm(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    grade_level: Optional[int] = Field(default=None, ge=1, le=12)
    academic_year_id: int
    semester_id: int
    homeroom_teacher_id: Optional[int] = None
    max_students: int = Field(default=45, ge=1, le=100)
    description: Optional[str] = Field(default=None, max_length=500)


class ClassUpdate(PartialUpdate):
    not_null = ("name", "max_students")

    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    grade_level: Optional[int] = Field(default=None, ge=1, le=12)
    homeroom_teacher_id: Optional[int] = None
    max_students: Optional[int] = Field(default=None, ge=1, le=100)
    description: Optional[str] = Field(default=None, max_length=500)


class AssignmentForm(BaseModel):
    student_id: int


class SubjectForm(BaseModel):
    code: str = Field(min_length=1, max_length=20)
    name: str = Field(min_length=1, max_length=100)
