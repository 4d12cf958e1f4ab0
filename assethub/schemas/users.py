import uuid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .common import UtcDatetime


class UserRole(str, Enum):
    admin = "admin"
    hr = "hr"
    employee = "employee"


PASSWORD_MIN_LENGTH = 6


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: EmailStr
    department: Optional[str] = None


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: EmailStr
    role: UserRole
    department: str
    is_active: bool
    last_login_at: Optional[UtcDatetime] = None
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None


class _UserFields(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    @field_validator("email", check_fields=False)
    @classmethod
    def _lower_email(cls, v):
        return v.lower() if v else v


class UserCreate(_UserFields):
    name: str = Field(min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(min_length=PASSWORD_MIN_LENGTH)
    role: UserRole = UserRole.employee
    department: str = Field(min_length=2, max_length=50)


class UserUpdate(_UserFields):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    email: Optional[EmailStr] = None
    role: Optional[UserRole] = None
    department: Optional[str] = Field(default=None, min_length=2, max_length=50)
    is_active: Optional[bool] = None


class ProfileUpdate(_UserFields):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    department: Optional[str] = Field(default=None, min_length=2, max_length=50)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH)


class ResetPasswordRequest(BaseModel):
    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH)
