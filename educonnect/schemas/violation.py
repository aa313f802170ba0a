from datetime import date
from typing import List, Optional
from pydantic import BaseModel, Field

from ..models import DisciplinaryCaseStatus, ViolationSeverity
from .base import PartialUpdate


class CategoryForm(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


class ViolationTypeForm(BaseModel):
    category_id: int
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=500)
    default_severity: ViolationSeverity = ViolationSeverity.MINOR
    points: int = Field(default=0, ge=0)


class ViolationTypeUpdate(PartialUpdate):
    not_null = ("category_id", "name", "default_severity", "points", "is_active")

    category_id: Optional[int] = None
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=500)
    default_severity: Optional[ViolationSeverity] = None
    points: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class ViolationForm(BaseModel):
    student_id: int
    class_id: int
    violation_type_id: int
    severity: ViolationSeverity
    points: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = Field(default=None, max_length=1000)
    violation_date: Optional[date] = None
    academic_year_id: int
    semester_id: int


class BulkViolationForm(BaseModel):
    student_ids: List[int] = Field(min_length=1)
    class_id: int
    violation_type_id: int
    severity: ViolationSeverity
    points: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = Field(default=None, max_length=1000)
    violation_date: date
    academic_year_id: int
    semester_id: int


class ViolationUpdate(PartialUpdate):
    not_null = ("severity",)

    severity: Optional[ViolationSeverity] = None
    description: Optional[str] = Field(default=None, max_length=1000)


class ActionTypeForm(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=500)
    severity_level: int = Field(default=1, ge=1, le=10)


class ActionTypeUpdate(PartialUpdate):
    not_null = ("name", "severity_level", "is_active")

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=500)
    severity_level: Optional[int] = Field(default=None, ge=1, le=10)
    is_active: Optional[bool] = None


class CaseForm(BaseModel):
    student_id: int
    class_id: int
    semester_id: int
    week_index: int = Field(ge=1, le=52)
    action_type_id: int
    notes: Optional[str] = Field(default=None, max_length=1000)
    violation_ids: List[int] = Field(default_factory=list)


class CaseStatusForm(BaseModel):
    status: DisciplinaryCaseStatus
    notes: Optional[str] = Field(default=None, max_length=1000)
