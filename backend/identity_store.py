"""
Identity store: persistence of users, their roles and their cafe binding.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_password_hash, verify_password
from errors import DuplicateIdentity, InvalidRole, MissingTenant, ValidationFailed
from models import User, UserRole

logger = logging.getLogger(__name__)

VALID_ROLES = {role.value for role in UserRole}


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Emails are unique regardless of case"""
    return email.strip().lower() if email else email


def validate_role_binding(role: str, tenant_id: Optional[int]) -> None:
    """A super admin has no cafe; every other role requires one."""
    if role not in VALID_ROLES:
        raise InvalidRole(f"Invalid role '{role}'. Must be one of: {', '.join(sorted(VALID_ROLES))}")
    if role == UserRole.SUPERADMIN.value:
        if tenant_id is not None:
            raise ValidationFailed("A super admin cannot belong to a cafe", code="INVALID_ROLE")
    elif tenant_id is None:
        raise MissingTenant()


async def create_user(
    db: AsyncSession,
    email: str,
    username: str,
    password: str,
    role: str = UserRole.USER.value,
    tenant_id: Optional[int] = None,
    full_name: Optional[str] = None,
    commit: bool = True
) -> User:
    validate_role_binding(role, tenant_id)
    email = normalize_email(email)

    result = await db.execute(
        select(User).where(or_(User.email == email, User.username == username))
    )
    if result.scalars().first():
        raise DuplicateIdentity()

    user = User(
        email=email,
        username=username,
        hashed_password=get_password_hash(password),
        role=role,
        tenant_id=tenant_id,
        full_name=full_name,
        is_active=True
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise DuplicateIdentity()

    if commit:
        await db.commit()
        await db.refresh(user)

    logger.info(f"Created user {user.username} (role={role}, tenant={tenant_id})")
    return user


async def get_user_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def get_user_by_login(db: AsyncSession, login: str) -> Optional[User]:
    """Find a user by email (any case) or username"""
    if "@" in login:
        user = await get_user_by_email(db, login)
        if user:
            return user
    result = await db.execute(select(User).where(User.username == login))
    return result.scalar_one_or_none()


async def verify_user_password(db: AsyncSession, login: str, password: str) -> Optional[User]:
    """Return the active user for these credentials, or None"""
    user = await get_user_by_login(db, login)
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


async def touch_last_login(db: AsyncSession, user: User) -> None:
    user.last_login = datetime.utcnow()
    await db.commit()


async def list_users(db: AsyncSession, tenant_id: Optional[int] = None) -> List[User]:
    query = select(User)
    if tenant_id is not None:
        query = query.where(User.tenant_id == tenant_id)
    result = await db.execute(query.order_by(User.id))
    return list(result.scalars().all())
