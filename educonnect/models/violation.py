from typing import List, Optional
from datetime import date, datetime
from enum import Enum
from sqlmodel import Field, SQLModel, Column, JSON
from sqlalchemy import CheckConstraint, UniqueConstraint


class ViolationSeverity(str, Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    SERIOUS = "serious"
    SEVERE = "severe"

    @property
    def label(self) -> str:
        return SEVERITY_LABELS[self]


SEVERITY_LABELS = {
    ViolationSeverity.MINOR: "Nhẹ",
    ViolationSeverity.MODERATE: "Trung bình",
    ViolationSeverity.SERIOUS: "Nghiêm trọng",
    ViolationSeverity.SEVERE: "Rất nghiêm trọng",
}


class DisciplinaryCaseStatus(str, Enum):
    DRAFT = "draft"
    SENT_TO_HOMEROOM = "sent_to_homeroom"
    ACKNOWLEDGED = "acknowledged"
    MEETING_SCHEDULED = "meeting_scheduled"
    RESOLVED = "resolved"


CASE_TRANSITIONS = {
    DisciplinaryCaseStatus.DRAFT: {DisciplinaryCaseStatus.SENT_TO_HOMEROOM},
    DisciplinaryCaseStatus.SENT_TO_HOMEROOM: {
        DisciplinaryCaseStatus.ACKNOWLEDGED,
        DisciplinaryCaseStatus.MEETING_SCHEDULED,
        DisciplinaryCaseStatus.RESOLVED,
    },
    DisciplinaryCaseStatus.ACKNOWLEDGED: {
        DisciplinaryCaseStatus.MEETING_SCHEDULED,
        DisciplinaryCaseStatus.RESOLVED,
    },
    DisciplinaryCaseStatus.MEETING_SCHEDULED: {DisciplinaryCaseStatus.RESOLVED},
    DisciplinaryCaseStatus.RESOLVED: set(),
}


class ViolationCategory(SQLModel, table=True):
    __tablename__ = "violation_categories"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(unique=True)
    description: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ViolationType(SQLModel, table=True):
    __tablename__ = "violation_types"
    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_violation_type_points"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    category_id: int = Field(foreign_key="violation_categories.id", index=True)
    name: str
    description: Optional[str] = None
    default_severity: ViolationSeverity = Field(default=ViolationSeverity.MINOR)
    points: int = 0
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)


class StudentViolation(SQLModel, table=True):
    __tablename__ = "student_violations"

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key="users.id", index=True)
    class_id: int = Field(foreign_key="classes.id", index=True)
    violation_type_id: int = Field(foreign_key="violation_types.id")
    severity: ViolationSeverity
    points: int = 0
    description: Optional[str] = None
    violation_date: date = Field(default_factory=date.today, index=True)
    academic_year_id: int = Field(foreign_key="academic_years.id")
    semester_id: int = Field(foreign_key="semesters.id", index=True)
    week_index: int = Field(default=1, index=True)
    month_index: int = Field(default=1, index=True)
    recorded_by_id: int = Field(foreign_key="users.id")
    recorded_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class MonthlyViolationAlert(SQLModel, table=True):
    __tablename__ = "monthly_violation_alerts"
    __table_args__ = (
        UniqueConstraint("student_id", "semester_id", "month_index", name="uq_alert_student_month"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key="users.id", index=True)
    class_id: int = Field(foreign_key="classes.id")
    semester_id: int = Field(foreign_key="semesters.id", index=True)
    month_index: int
    total_violations: int = 0
    is_seen: bool = False
    seen_by_id: Optional[int] = Field(default=None, foreign_key="users.id")
    seen_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class DisciplinaryActionType(SQLModel, table=True):
    __tablename__ = "disciplinary_action_types"
    __table_args__ = (
        CheckConstraint("severity_level BETWEEN 1 AND 10", name="ck_action_severity"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    description: Optional[str] = None
    severity_level: int = 1
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)


class DisciplinaryCase(SQLModel, table=True):
    __tablename__ = "disciplinary_cases"

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key="users.id", index=True)
    class_id: int = Field(foreign_key="classes.id", index=True)
    semester_id: int = Field(foreign_key="semesters.id", index=True)
    week_index: int
    action_type_id: int = Field(foreign_key="disciplinary_action_types.id")
    notes: Optional[str] = None
    violation_ids: List[int] = Field(default_factory=list, sa_column=Column(JSON))
    total_points: int = 0
    status: DisciplinaryCaseStatus = Field(default=DisciplinaryCaseStatus.DRAFT, index=True)
    created_by_id: int = Field(foreign_key="users.id")
    acknowledged_by_id: Optional[int] = Field(default=None, foreign_key="users.id")
    acknowledged_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
