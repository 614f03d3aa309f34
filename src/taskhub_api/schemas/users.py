"""
Pydantic schemas for user-related operations.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, SecretStr, field_validator

from taskhub_api.models.users import UserRole, UserStatus


class UserBase(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    email: EmailStr | None = Field(None, max_length=255)

    model_config = ConfigDict(from_attributes=True, str_strip_whitespace=True)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v):
        return v.lower() if v else v


class UserCreate(UserBase):
    password: SecretStr = Field(..., min_length=8, max_length=100)


class AdminUserUpdate(BaseModel):
    """Schema for admins to change a user's global role or approval status."""

    role: UserRole | None = None
    status: UserStatus | None = None


class UserResponse(UserBase):
    """Response schema, aka returned by API endpoints."""

    id: int
    role: UserRole
    status: UserStatus
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
