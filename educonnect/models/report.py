from typing import Optional
from datetime import date, datetime
from enum import Enum
from sqlmodel import Field, SQLModel
from sqlalchemy import CheckConstraint, UniqueConstraint


class ReportStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"


class AgreementStatus(str, Enum):
    AGREE = "agree"
    DISAGREE = "disagree"


class ReportPeriod(SQLModel, table=True):
    __tablename__ = "report_periods"
    __table_args__ = (
        CheckConstraint("start_date < end_date", name="ck_report_period_dates"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    start_date: date
    end_date: date
    academic_year_id: int = Field(foreign_key="academic_years.id", index=True)
    semester_id: int = Field(foreign_key="semesters.id", index=True)
    is_active: bool = True
    created_by_id: Optional[int] = Field(default=None, foreign_key="users.id")
    created_at: datetime = Field(default_factory=datetime.utcnow)


class StudentReport(SQLModel, table=True):
    __tablename__ = "student_reports"
    __table_args__ = (
        UniqueConstraint("report_period_id", "student_id", name="uq_report_period_student"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    report_period_id: int = Field(foreign_key="report_periods.id", index=True)
    student_id: int = Field(foreign_key="users.id", index=True)
    class_id: int = Field(foreign_key="classes.id", index=True)
    homeroom_teacher_id: Optional[int] = Field(default=None, foreign_key="users.id")
    strengths: Optional[str] = None
    weaknesses: Optional[str] = None
    academic_performance: Optional[str] = None
    discipline_status: Optional[str] = None
    status: ReportStatus = Field(default=ReportStatus.DRAFT, index=True)
    sent_at: Optional[datetime] = None
    resend_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ParentReportResponse(SQLModel, table=True):
    __tablename__ = "parent_report_responses"
    __table_args__ = (
        UniqueConstraint("report_id", "parent_id", name="uq_report_parent"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    report_id: int = Field(foreign_key="student_reports.id", index=True)
    parent_id: int = Field(foreign_key="users.id", index=True)
    agreement_status: Optional[AgreementStatus] = None
    comments: Optional[str] = None
    is_read: bool = False
    read_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
