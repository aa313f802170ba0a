from typing import List, Optional, TYPE_CHECKING
from datetime import date, datetime
from sqlmodel import Field, SQLModel, Relationship
from sqlalchemy import CheckConstraint, UniqueConstraint

if TYPE_CHECKING:
    from .user import User


class AcademicYear(SQLModel, table=True):
    __tablename__ = "academic_years"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(unique=True)  # "2025-2026"
    start_date: date
    end_date: date
    is_current: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)

    semesters: List["Semester"] = Relationship(back_populates="academic_year")


class Semester(SQLModel, table=True):
    __tablename__ = "semesters"
    __table_args__ = (
        UniqueConstraint("academic_year_id", "semester_number", name="uq_year_semester"),
        CheckConstraint("semester_number IN (1, 2)", name="ck_semester_number"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    academic_year_id: int = Field(foreign_key="academic_years.id", index=True)
    name: str  # "Học kỳ 1"
    semester_number: int
    start_date: date
    end_date: date
    is_current: bool = False

    academic_year: "AcademicYear" = Relationship(back_populates="semesters")


class ClassRoom(SQLModel, table=True):
    __tablename__ = "classes"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str  # "10A1"
    grade_level: Optional[int] = None
    academic_year_id: int = Field(foreign_key="academic_years.id", index=True)
    semester_id: int = Field(foreign_key="semesters.id", index=True)
    homeroom_teacher_id: Optional[int] = Field(default=None, foreign_key="users.id", index=True)
    max_students: int = 45
    description: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)

    homeroom_teacher: Optional["User"] = Relationship()
    semester: "Semester" = Relationship()


class ClassAssignment(SQLModel, table=True):
    """Places a student in a class. Only one active assignment per academic year."""
    __tablename__ = "student_class_assignments"

    id: Optional[int] = Field(default=None, primary_key=True)
    class_id: int = Field(foreign_key="classes.id", index=True)
    student_id: int = Field(foreign_key="users.id", index=True)
    academic_year_id: int = Field(foreign_key="academic_years.id")
    is_active: bool = True
    assigned_at: datetime = Field(default_factory=datetime.utcnow)

    classroom: "ClassRoom" = Relationship()
    student: "User" = Relationship()


class Subject(SQLModel, table=True):
    __tablename__ = "subjects"

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(unique=True, index=True)
    name: str
    is_active: bool = True
