"""
CRUD operations for users.
"""

import logging

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub_api.exceptions import UserNotFoundError, UserRegistrationError, ValidationError
from taskhub_api.models.users import UserDB, UserRole, UserStatus
from taskhub_api.schemas.users import AdminUserUpdate, UserCreate
from taskhub_api.security import get_password_hash

logger = logging.getLogger(__name__)


async def get_user_by_id(db: AsyncSession, id: int) -> UserDB | None:
    """Get user by ID."""
    return await db.get(entity=UserDB, ident=id)


async def get_user_by_id_or_raise(db: AsyncSession, id: int) -> UserDB:
    """Get user by ID, but raise 404 if user not found."""
    user = await db.get(entity=UserDB, ident=id)
    if not user:
        raise UserNotFoundError()
    return user


async def get_user_by_username(db: AsyncSession, username: str) -> UserDB | None:
    stmt = select(UserDB).where(UserDB.username == username)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> UserDB | None:
    stmt = select(UserDB).where(UserDB.email == email.lower())
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_all_users(
    db: AsyncSession, limit: int = 1000, admins_only: bool = False, status: UserStatus | None = None
) -> list[UserDB]:
    """Get all users, oldest account first."""
    stmt = select(UserDB)
    if admins_only:
        stmt = stmt.where(UserDB.role == UserRole.ADMIN)
    if status is not None:
        stmt = stmt.where(UserDB.status == status)
    result = await db.execute(stmt.order_by(UserDB.id).limit(limit))
    return list(result.scalars().all())


async def create_user(
    db: AsyncSession,
    user_data: UserCreate,
    role: UserRole = UserRole.MEMBER,
    status: UserStatus = UserStatus.PENDING,
) -> UserDB:
    """Create a new user. Signups start out as PENDING until approved by an admin."""
    conditions = [UserDB.username == user_data.username]
    if user_data.email:
        conditions.append(UserDB.email == user_data.email)
    result = await db.execute(select(UserDB.id).where(or_(*conditions)).limit(1))
    if result.scalar_one_or_none() is not None:
        raise UserRegistrationError(
            internal_logging_message=f"Attempt made to register with existing username or email: {user_data.username}",
            user_message="Username or email already in use.",
        )

    user_dict = user_data.model_dump(exclude={"password"})
    password_hash = get_password_hash(user_data.password)

    user = UserDB(**user_dict, password_hash=password_hash, role=role, status=status, project_access="[]")
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def admin_update_user(db: AsyncSession, user_id: int, update_data: AdminUserUpdate, acting_admin_id: int) -> UserDB:
    """
    Change a user's global role and/or status.
    An admin cannot demote or suspend themselves, so there is always at least one admin left who can undo it.
    """
    user = await get_user_by_id_or_raise(db=db, id=user_id)

    if user_id == acting_admin_id:
        if update_data.role is not None and update_data.role != UserRole.ADMIN:
            raise ValidationError("You cannot remove your own admin role")
        if update_data.status is not None and update_data.status != UserStatus.APPROVED:
            raise ValidationError("You cannot change your own account status")

    changes = update_data.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in changes.items():
        setattr(user, field, value)

    await db.commit()
    await db.refresh(user)
    logger.info(f"Admin user_id={acting_admin_id} updated user_id={user_id}: {changes}")
    return user
