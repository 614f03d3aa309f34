"""
Authentication endpoints for signup, login and logout.

Login hands out an opaque session token in an HttpOnly cookie, the session itself lives in the db.
"""

import logging

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub_api.api_config import Settings
from taskhub_api.crud.activity import log_user_activity
from taskhub_api.crud.auth import (
    authenticate_user,
    create_session,
    delete_session,
    delete_session_cookie,
    set_session_cookie,
)
from taskhub_api.crud.users import create_user, get_user_by_id_or_raise
from taskhub_api.db import get_db
from taskhub_api.deps import client_ip, get_identity, get_settings
from taskhub_api.schemas.auth import LoginRequest, LoginResponse, SignupResponse, WhoAmIResponse
from taskhub_api.schemas.users import UserCreate, UserResponse
from taskhub_api.security import Identity, as_utc

logger = logging.getLogger(__name__)

auth_router = APIRouter()


@auth_router.post("/signup", response_model=SignupResponse, status_code=status.HTTP_201_CREATED)
async def signup_endpoint(user_data: UserCreate, request: Request, db: AsyncSession = Depends(get_db)):
    """Create an account. It can only be used to log in once an admin has approved it."""
    user = await create_user(db=db, user_data=user_data)
    await log_user_activity(
        db, user_id=user.id, action="signup", resource_type="user", resource_id=user.id, ip_address=client_ip(request)
    )
    logger.info(f"New user signed up: {user.username}")
    return SignupResponse(user=UserResponse.model_validate(user))


@auth_router.post("/login", response_model=LoginResponse, status_code=status.HTTP_200_OK)
async def login_endpoint(
    login_data: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = await authenticate_user(db, username=login_data.username, password=login_data.password.get_secret_value())

    old_session_id = request.cookies.get(settings.sessions.cookie_name)
    if old_session_id:
        await delete_session(db, session_id=old_session_id)

    session = await create_session(
        db,
        user_id=user.id,
        duration_seconds=settings.sessions.duration_seconds,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    set_session_cookie(
        response, session=session, cookie_name=settings.sessions.cookie_name, secure=settings.sessions.cookie_secure
    )
    await log_user_activity(db, user_id=user.id, action="login", ip_address=client_ip(request))
    logger.info(f"User {user.username} logged in successfully.")

    expires_at = int(as_utc(session.expires_at).timestamp())
    return LoginResponse(user=UserResponse.model_validate(user), expires_at=expires_at)


@auth_router.post("/logout", status_code=status.HTTP_200_OK)
async def logout_endpoint(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    identity: Identity | None = Depends(get_identity),
    settings: Settings = Depends(get_settings),
):
    session_id = request.cookies.get(settings.sessions.cookie_name)
    if session_id:
        await delete_session(db, session_id=session_id)
    delete_session_cookie(response, cookie_name=settings.sessions.cookie_name)

    if identity is not None:
        await log_user_activity(db, user_id=identity.user_id, action="logout", ip_address=client_ip(request))
        logger.info(f"User {identity.username} logged out.")
    return {"message": "Logged out"}


@auth_router.get("/me", response_model=WhoAmIResponse, status_code=status.HTTP_200_OK)
async def whoami_endpoint(identity: Identity | None = Depends(get_identity), db: AsyncSession = Depends(get_db)):
    """Endpoint to return current logged in user's details, anonymous visitors get is_anonymous=true."""
    if identity is None:
        return WhoAmIResponse(is_anonymous=True)
    user = await get_user_by_id_or_raise(db=db, id=identity.user_id)
    return WhoAmIResponse(is_anonymous=False, user=UserResponse.model_validate(user))

