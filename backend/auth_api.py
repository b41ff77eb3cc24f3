"""
Authentication routes: staff login, profile and server time.
"""

import logging
import time
from datetime import datetime

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from auth import create_access_token, get_current_user
from database import get_db
from errors import InvalidCredentials, ValidationFailed
from feature_service import resolve_tenant_features
from identity_store import verify_user_password, touch_last_login
from models import User, Tenant
from permissions import get_role_view
from rate_limiter import limiter, AUTH_LIMIT, AUTH_SCOPE
from schemas import LoginRequest, UserResponse, CafeResponse
from subscription_service import resolve_subscription
from config import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Auth"])


@router.post("/auth/login")
@limiter.shared_limit(AUTH_LIMIT, scope=AUTH_SCOPE)
async def login(
    request: Request,
    login_data: LoginRequest,
    db: AsyncSession = Depends(get_db)
):
    """Exchange email (or username) and password for a bearer token"""
    identifier = (login_data.email or login_data.username or "").strip()
    if not identifier or not login_data.password:
        raise ValidationFailed("Email and password are required")

    user = await verify_user_password(db, identifier, login_data.password)
    if not user:
        logger.info(f"Failed login for '{identifier}' from {request.client.host if request.client else 'unknown'}")
        raise InvalidCredentials()

    await touch_last_login(db, user)
    token = create_access_token(user.id)

    return {
        "message": "Login successful",
        "token": token,
        "user": UserResponse.model_validate(user),
    }


@router.get("/auth/profile")
async def get_profile(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Current user with their cafe, subscription, resolved features and role view"""
    response = {
        "user": UserResponse.model_validate(current_user),
        "cafe": None,
        "subscription": None,
        "features": {},
        "roleView": None,
    }

    if current_user.tenant_id is None:
        response["roleView"] = (await get_role_view(db, None, current_user.role)).to_dict()
        return response

    tenant = await db.get(Tenant, current_user.tenant_id)
    if tenant:
        response["cafe"] = CafeResponse.model_validate(tenant)
        response["subscription"] = resolve_subscription(tenant).to_dict()
        response["features"] = await resolve_tenant_features(db, tenant.id)
        response["roleView"] = (await get_role_view(db, tenant.id, current_user.role)).to_dict()
    return response


@router.get("/server/time")
async def server_time():
    now = datetime.utcnow()
    return {
        "serverTime": now.isoformat() + "Z",
        "timezone": settings.APP_TIMEZONE,
        "timestamp": int(time.time()),
    }
