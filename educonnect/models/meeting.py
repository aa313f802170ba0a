from typing import List, Optional
from datetime import datetime
from enum import Enum
from sqlmodel import Field, SQLModel, Relationship
from sqlalchemy import UniqueConstraint


class MeetingType(str, Enum):
    PARENT_MEETING = "parent_meeting"
    CLASS_MEETING = "class_meeting"
    INDIVIDUAL_MEETING = "individual_meeting"


class MeetingStatus(str, Enum):
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class Meeting(SQLModel, table=True):
    __tablename__ = "meetings"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    meeting_date: datetime
    location: Optional[str] = None
    duration_minutes: int = 60
    meeting_type: MeetingType = Field(default=MeetingType.PARENT_MEETING)
    status: MeetingStatus = Field(default=MeetingStatus.SCHEDULED)
    class_id: int = Field(foreign_key="classes.id", index=True)
    teacher_id: int = Field(foreign_key="users.id", index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    recipients: List["MeetingRecipient"] = Relationship(
        back_populates="meeting",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class MeetingRecipient(SQLModel, table=True):
    """One row per (parent, student) a meeting invitation was sent for."""
    __tablename__ = "meeting_recipients"
    __table_args__ = (
        UniqueConstraint("meeting_id", "parent_id", "student_id", name="uq_meeting_recipient"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    meeting_id: int = Field(foreign_key="meetings.id", index=True)
    parent_id: int = Field(foreign_key="users.id", index=True)
    student_id: int = Field(foreign_key="users.id")
    is_read: bool = False
    read_at: Optional[datetime] = None

    meeting: "Meeting" = Relationship(back_populates="recipients")
