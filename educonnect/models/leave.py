from typing import Optional
from datetime import date, datetime
from enum import Enum
from sqlmodel import Field, SQLModel
from sqlalchemy import CheckConstraint


class LeaveType(str, Enum):
    SICK = "sick"
    FAMILY = "family"
    EMERGENCY = "emergency"
    VACATION = "vacation"
    OTHER = "other"


class LeaveStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class LeaveApplication(SQLModel, table=True):
    __tablename__ = "leave_applications"
    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="ck_leave_dates"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key="users.id", index=True)
    parent_id: int = Field(foreign_key="users.id", index=True)
    class_id: int = Field(foreign_key="classes.id")
    academic_year_id: int = Field(foreign_key="academic_years.id")
    homeroom_teacher_id: int = Field(foreign_key="users.id", index=True)
    leave_type: LeaveType
    start_date: date
    end_date: date
    reason: str
    attachment_url: Optional[str] = None
    status: LeaveStatus = Field(default=LeaveStatus.PENDING, index=True)
    teacher_response: Optional[str] = None
    responded_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
