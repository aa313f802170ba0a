from datetime import date
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from ..models import RelationshipType, UserRole
from .base import PartialUpdate


class UserCreate(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    full_name: str = Field(min_length=1, max_length=255)
    role: UserRole
    password: str = Field(min_length=8, max_length=128)
    student_code: Optional[str] = Field(default=None, max_length=32)
    phone: Optional[str] = Field(default=None, max_length=20)
    gender: Optional[str] = None
    date_of_birth: Optional[date] = None
    address: Optional[str] = Field(default=None, max_length=500)

    @field_validator("email")
    @classmethod
    def normalise_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Email không hợp lệ")
        return v

    @field_validator("student_code")
    @classmethod
    def blank_code_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() or None if v else None


class UserUpdate(PartialUpdate):
    not_null = ("full_name", "role", "is_active")

    full_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    role: Optional[UserRole] = None
    student_code: Optional[str] = Field(default=None, max_length=32)
    phone: Optional[str] = Field(default=None, max_length=20)
    gender: Optional[str] = None
    date_of_birth: Optional[date] = None
    address: Optional[str] = Field(default=None, max_length=500)
    is_active: Optional[bool] = None


class ProfileUpdate(PartialUpdate):
    not_null = ("full_name",)

    full_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=20)
    address: Optional[str] = Field(default=None, max_length=500)


class ParentLinkForm(BaseModel):
    parent_id: int
    student_id: int
    relationship_type: RelationshipType = RelationshipType.GUARDIAN
    is_primary_contact: bool = False
