"""
Authentication-related CRUD operations: credential checks and server side sessions.
"""

import logging
from datetime import timedelta

from fastapi import Response
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub_api.crud.users import get_user_by_username
from taskhub_api.exceptions import AuthenticationError
from taskhub_api.models.auth_sessions import AuthSessionDB
from taskhub_api.models.users import UserDB, UserStatus
from taskhub_api.security import as_utc, generate_session_id, utc_now, verify_password

logger = logging.getLogger(__name__)


async def authenticate_user(db: AsyncSession, username: str, password: str) -> UserDB:
    """
    Authenticate user by username and password when logging in and validate the
    account has been approved by an admin.

    Raises AuthenticationError if authentication fails. The same generic message is used
    for every failure, so it can not be used to probe which usernames exist.
    """
    generic_error_msg = "Invalid username or password, or the account has not been approved yet."
    user = await get_user_by_username(db, username)

    if not user:
        raise AuthenticationError(message=generic_error_msg)

    if not verify_password(plain_password=password, hashed_password=user.password_hash):
        raise AuthenticationError(message=generic_error_msg)

    if user.status != UserStatus.APPROVED:
        raise AuthenticationError(message=generic_error_msg)

    user.last_login_at = utc_now()
    await db.commit()
    await db.refresh(user)
    return user


async def create_session(
    db: AsyncSession,
    user_id: int | None,
    duration_seconds: int,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AuthSessionDB:
    """Create a new session. user_id None makes an anonymous session."""
    session = AuthSessionDB(
        id=generate_session_id(),
        user_id=user_id,
        ip_address=ip_address,
        user_agent=user_agent,
        expires_at=utc_now() + timedelta(seconds=duration_seconds),
    )
    db.add(session)
    await db.commit()
    await db.refresh(session)
    return session


async def validate_session(db: AsyncSession, session_id: str) -> AuthSessionDB | None:
    """Look up a session by its token. Expired sessions are deleted and None is returned."""
    session = await db.get(AuthSessionDB, session_id)
    if session is None:
        return None

    if as_utc(session.expires_at) <= utc_now():
        await db.delete(session)
        await db.commit()
        return None
    return session


async def delete_session(db: AsyncSession, session_id: str) -> None:
    await db.execute(delete(AuthSessionDB).where(AuthSessionDB.id == session_id))
    await db.commit()


async def cleanup_expired_sessions(db: AsyncSession) -> int:
    """Delete every session past its expiry. Returns the number of deleted sessions."""
    # No in-session evaluation of the expiry: SQLite hands back naive datetimes.
    stmt = delete(AuthSessionDB).where(AuthSessionDB.expires_at <= utc_now())
    result = await db.execute(stmt.execution_options(synchronize_session=False))
    await db.commit()
    deleted = result.rowcount or 0
    if deleted:
        logger.info(f"Cleaned up {deleted} expired session(s)")
    return deleted


async def get_session_user(db: AsyncSession, session: AuthSessionDB) -> UserDB | None:
    if session.user_id is None:
        return None
    result = await db.execute(select(UserDB).where(UserDB.id == session.user_id))
    return result.scalar_one_or_none()


def set_session_cookie(response: Response, session: AuthSessionDB, cookie_name: str, secure: bool) -> Response:
    """Helper to hand the session token to the browser."""
    response.set_cookie(
        key=cookie_name,
        value=session.id,
        httponly=True,
        secure=secure,
        samesite="lax",
        expires=as_utc(session.expires_at),
        path="/",
    )
    return response


def delete_session_cookie(response: Response, cookie_name: str) -> Response:
    """Helper to delete the session cookie from a response (e.g. on logout)."""
    response.delete_cookie(cookie_name, path="/")
    return response
