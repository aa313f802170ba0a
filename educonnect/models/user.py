from typing import Optional
from datetime import date, datetime
from enum import Enum
from sqlmodel import Field, SQLModel
from sqlalchemy import UniqueConstraint

from ..security import hash_password, verify_and_update_password


class UserRole(str, Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    PARENT = "parent"
    STUDENT = "student"


class RelationshipType(str, Enum):
    FATHER = "father"
    MOTHER = "mother"
    GUARDIAN = "guardian"


class UserBase(SQLModel):
    email: str = Field(unique=True, index=True)
    full_name: str
    role: UserRole = Field(default=UserRole.STUDENT, index=True)
    student_code: Optional[str] = Field(default=None, unique=True)
    phone: Optional[str] = None
    gender: Optional[str] = None
    date_of_birth: Optional[date] = None
    address: Optional[str] = None
    is_active: bool = True


class User(UserBase, table=True):
    """A profile. Every role (admin, teacher, parent, student) lives in this table."""
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    password_hash: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_authenticated(self) -> bool:
        return True

    def set_password(self, password: str):
        self.password_hash = hash_password(password)

    def check_password(self, password: str) -> bool:
        """Verifies the password and transparently upgrades legacy hashes."""
        if not self.password_hash:
            return False
        valid, new_hash = verify_and_update_password(password, self.password_hash)
        if valid and new_hash:
            self.password_hash = new_hash
        return valid

    def __repr__(self):
        return f"<User id={self.id} {self.full_name} role={self.role}>"


class UserRead(UserBase):
    id: int
    created_at: datetime


class ParentStudentRelationship(SQLModel, table=True):
    __tablename__ = "parent_student_relationships"
    __table_args__ = (
        UniqueConstraint("parent_id", "student_id", name="uq_parent_student"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    parent_id: int = Field(foreign_key="users.id", index=True)
    student_id: int = Field(foreign_key="users.id", index=True)
    relationship_type: RelationshipType = Field(default=RelationshipType.GUARDIAN)
    is_primary_contact: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
