from typing import Optional
from datetime import datetime
from enum import Enum
from sqlmodel import Field, SQLModel
from sqlalchemy import CheckConstraint, UniqueConstraint


class GradeType(str, Enum):
    SEMESTER1 = "semester1"
    SEMESTER2 = "semester2"
    FULL_YEAR = "full_year"


class GradeReportingPeriod(SQLModel, table=True):
    """A window in which grades may be imported, then edited until edit_deadline."""
    __tablename__ = "grade_reporting_periods"
    __table_args__ = (
        CheckConstraint("start_date < end_date", name="ck_grade_period_dates"),
        CheckConstraint("import_deadline <= edit_deadline", name="ck_grade_period_deadlines"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    academic_year_id: int = Field(foreign_key="academic_years.id", index=True)
    semester_id: int = Field(foreign_key="semesters.id", index=True)
    start_date: datetime
    end_date: datetime
    import_deadline: datetime
    edit_deadline: datetime
    description: Optional[str] = None
    is_active: bool = True
    created_by_id: Optional[int] = Field(default=None, foreign_key="users.id")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class StudentGrade(SQLModel, table=True):
    __tablename__ = "student_grades"
    __table_args__ = (
        UniqueConstraint("grade_period_id", "student_id", "subject_id", "grade_type", name="uq_student_grade"),
        CheckConstraint("grade_value >= 0 AND grade_value <= 10", name="ck_grade_value"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    grade_period_id: int = Field(foreign_key="grade_reporting_periods.id", index=True)
    student_id: int = Field(foreign_key="users.id", index=True)
    subject_id: int = Field(foreign_key="subjects.id", index=True)
    class_id: int = Field(foreign_key="classes.id", index=True)
    grade_type: GradeType = Field(default=GradeType.SEMESTER1)
    grade_value: float
    notes: Optional[str] = None
    is_locked: bool = False
    created_by_id: Optional[int] = Field(default=None, foreign_key="users.id")
    updated_by_id: Optional[int] = Field(default=None, foreign_key="users.id")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class GradeAuditLog(SQLModel, table=True):
    __tablename__ = "grade_audit_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    grade_id: int = Field(foreign_key="student_grades.id", index=True)
    old_value: Optional[float] = None
    new_value: float
    change_reason: str
    changed_by_id: int = Field(foreign_key="users.id")
    changed_at: datetime = Field(default_factory=datetime.utcnow)


class GradeImportLog(SQLModel, table=True):
    __tablename__ = "grade_import_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    grade_period_id: int = Field(foreign_key="grade_reporting_periods.id", index=True)
    class_id: int = Field(foreign_key="classes.id")
    subject_id: int = Field(foreign_key="subjects.id")
    filename: Optional[str] = None
    total_records: int = 0
    valid_records: int = 0
    error_records: int = 0
    status: str = "completed"  # completed|failed
    imported_by_id: int = Field(foreign_key="users.id")
    imported_at: datetime = Field(default_factory=datetime.utcnow)
