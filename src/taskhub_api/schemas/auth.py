"""
Pydantic schemas for login/signup.
"""

from pydantic import BaseModel, Field, SecretStr

from taskhub_api.schemas.users import UserResponse


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    password: SecretStr = Field(..., min_length=1, max_length=100)


class LoginResponse(BaseModel):
    user: UserResponse
    expires_at: int  # UNIX timestamp of the session expiry


class SignupResponse(BaseModel):
    user: UserResponse
    message: str = "Account created. An admin needs to approve it before you can log in."


class WhoAmIResponse(BaseModel):
    """Anonymous visitors get is_anonymous=True and no user."""

    is_anonymous: bool
    user: UserResponse | None = None
