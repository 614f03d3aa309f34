"""
Security utilities for handling passwords, session tokens and the request identity.

FastAPI recommend using pwdlib and argon2 for password hashing (https://fastapi.tiangolo.com/tutorial/security/oauth2-jwt/)

Sessions are opaque random tokens stored in the auth_sessions table (see crud/auth.py),
the browser only ever holds the token in an HttpOnly cookie.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timezone

from pwdlib import PasswordHash
from pwdlib.hashers.argon2 import Argon2Hasher
from pydantic import SecretStr

from taskhub_api.models.users import UserDB, UserRole, UserStatus

password_hash = PasswordHash(hashers=[Argon2Hasher()])

SESSION_TOKEN_BYTES = 32


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return password_hash.verify(plain_password, hashed_password)


def get_password_hash(password: SecretStr) -> str:
    return password_hash.hash(password.get_secret_value())


def generate_session_id() -> str:
    """Random URL safe session token (43 characters for 32 bytes)."""
    return secrets.token_urlsafe(SESSION_TOKEN_BYTES)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """
    SQLite hands back naive datetimes even for timezone aware columns.
    All datetimes we store are UTC, so a naive value is interpreted as UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class Identity:
    """
    Who is making the request, as resolved by the auth layer (deps.py) from the session cookie.

    Anonymous visitors are represented by None rather than an Identity instance.
    """

    user_id: int
    role: UserRole
    status: UserStatus
    username: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @classmethod
    def from_user(cls, user: UserDB) -> "Identity":
        return cls(user_id=user.id, role=user.role, status=user.status, username=user.username)
