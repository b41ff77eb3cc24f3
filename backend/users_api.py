"""
Cafe staff management (feature: users, permission: manage_users).
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, get_password_hash
from config import settings
from database import get_db
from errors import InvalidRole, RoleForbidden, UserNotFound, ValidationFailed, DuplicateIdentity
from identity_store import create_user, list_users, normalize_email
from models import Tenant, User, UserRole
from permissions import Permission, RoleView, get_role_view
from schemas import UserCreate, UserUpdate, UserResponse
from subscription_middleware import (
    require_membership, require_feature, require_permission, get_role_view_for_request
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/cafes/{slug}/users",
    tags=["Users"],
    dependencies=[
        Depends(require_feature("users")),
        Depends(require_permission(Permission.MANAGE_USERS)),
    ]
)


def check_password(password: str) -> None:
    if len(password or "") < settings.MIN_PASSWORD_LENGTH:
        raise ValidationFailed(
            f"Password must be at least {settings.MIN_PASSWORD_LENGTH} characters",
            code="PASSWORD_TOO_SHORT"
        )


def check_cafe_role(role: UserRole) -> None:
    if role == UserRole.SUPERADMIN:
        raise InvalidRole("Cafe users cannot be super admins")


async def check_grantable(db: AsyncSession, tenant_id: int, role: UserRole, caller_view: RoleView) -> None:
    """
    A caller may only hand out roles that are not wider than its own.

    Owner-level roles (user, admin) are assigned by owners and super admins only.
    """
    check_cafe_role(role)
    if caller_view.role in (UserRole.USER.value, UserRole.SUPERADMIN.value):
        return
    granted = await get_role_view(db, tenant_id, role.value)
    if role in (UserRole.USER, UserRole.ADMIN) or not granted.permissions <= caller_view.permissions:
        raise RoleForbidden(f"You cannot assign the role '{role.value}'", role=role.value)


async def check_manageable(db: AsyncSession, tenant_id: int, target: User, current_user: User, caller_view: RoleView) -> None:
    """Accounts holding a role the caller could not grant are off limits"""
    if target.id != current_user.id:
        await check_grantable(db, tenant_id, UserRole(target.role), caller_view)


async def get_cafe_user(db: AsyncSession, tenant_id: int, user_id: int) -> User:
    result = await db.execute(select(User).where(User.id == user_id, User.tenant_id == tenant_id))
    user = result.scalar_one_or_none()
    if not user:
        raise UserNotFound()
    return user


@router.get("", response_model=List[UserResponse])
async def list_cafe_users(
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    return await list_users(db, tenant_id=tenant.id)


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_cafe_user(
    user_data: UserCreate,
    tenant: Tenant = Depends(require_membership),
    current_user: User = Depends(get_current_user),
    caller_view: RoleView = Depends(get_role_view_for_request),
    db: AsyncSession = Depends(get_db)
):
    await check_grantable(db, tenant.id, user_data.role, caller_view)
    check_password(user_data.password)
    user = await create_user(
        db,
        email=user_data.email,
        username=user_data.username,
        password=user_data.password,
        role=user_data.role.value,
        tenant_id=tenant.id,
        full_name=user_data.full_name
    )
    logger.info(f"User {current_user.id} added {user.username} ({user.role}) to cafe {tenant.slug}")
    return user


@router.get("/{user_id}", response_model=UserResponse)
async def read_cafe_user(
    user_id: int,
    tenant: Tenant = Depends(require_membership),
    db: AsyncSession = Depends(get_db)
):
    return await get_cafe_user(db, tenant.id, user_id)


@router.put("/{user_id}", response_model=UserResponse)
async def update_cafe_user(
    user_id: int,
    user_data: UserUpdate,
    tenant: Tenant = Depends(require_membership),
    current_user: User = Depends(get_current_user),
    caller_view: RoleView = Depends(get_role_view_for_request),
    db: AsyncSession = Depends(get_db)
):
    user = await get_cafe_user(db, tenant.id, user_id)
    await check_manageable(db, tenant.id, user, current_user, caller_view)
    changes = user_data.model_dump(exclude_unset=True)

    new_role = changes.get("role")
    if new_role is not None and new_role.value != user.role:
        if user.id == current_user.id:
            raise ValidationFailed("You cannot change your own role", code="SELF_ROLE_CHANGE")
        await check_grantable(db, tenant.id, new_role, caller_view)
        user.role = new_role.value
    email = normalize_email(changes.get("email"))
    if email and email != user.email:
        result = await db.execute(select(User.id).where(User.email == email, User.id != user.id))
        if result.scalar_one_or_none() is not None:
            raise DuplicateIdentity()
        user.email = email
    if "full_name" in changes:
        user.full_name = changes["full_name"]
    if changes.get("is_active") is not None:
        if user.id == current_user.id and not changes["is_active"]:
            raise ValidationFailed("You cannot deactivate your own account", code="SELF_DEACTIVATION")
        user.is_active = changes["is_active"]
    if changes.get("password"):
        check_password(changes["password"])
        user.hashed_password = get_password_hash(changes["password"])

    await db.commit()
    await db.refresh(user)
    return user


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_cafe_user(
    user_id: int,
    tenant: Tenant = Depends(require_membership),
    current_user: User = Depends(get_current_user),
    caller_view: RoleView = Depends(get_role_view_for_request),
    db: AsyncSession = Depends(get_db)
):
    user = await get_cafe_user(db, tenant.id, user_id)
    if user.id == current_user.id:
        raise ValidationFailed("You cannot delete your own account", code="SELF_DELETION")
    await check_manageable(db, tenant.id, user, current_user, caller_view)
    await db.delete(user)
    await db.commit()
    logger.info(f"User {current_user.id} removed user {user_id} from cafe {tenant.slug}")
