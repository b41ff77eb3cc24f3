from datetime import datetime, timedelta
from typing import Optional
from jose import JWTError, ExpiredSignatureError, jwt
from jose.exceptions import JWTClaimsError
from passlib.context import CryptContext
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import logging

from config import settings
from database import get_db
from errors import AuthenticationError, RoleForbidden
from models import User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS
)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login", auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash"""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password"""
    return pwd_context.hash(password)


def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed JWT carrying the user id"""
    now = datetime.utcnow()
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = {
        "userId": user_id,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Verify a token and return its payload.

    Expiry is checked with TOKEN_CLOCK_SKEW_SECONDS of leeway.

    Raises:
        AuthenticationError: TOKEN_EXPIRED, INVALID_TOKEN or VERIFICATION_FAILED
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            options={"leeway": settings.TOKEN_CLOCK_SKEW_SECONDS}
        )
    except ExpiredSignatureError:
        raise AuthenticationError("Token has expired", code="TOKEN_EXPIRED")
    except JWTClaimsError as e:
        raise AuthenticationError(f"Token verification failed: {e}", code="VERIFICATION_FAILED")
    except JWTError:
        raise AuthenticationError("Invalid token", code="INVALID_TOKEN")

    if not isinstance(payload.get("userId"), int):
        raise AuthenticationError("Token verification failed: missing user", code="VERIFICATION_FAILED")
    return payload


async def get_current_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Resolve the bearer token to an active user and attach it to the request"""
    if not token:
        raise AuthenticationError("Access denied. No token provided.", code="NO_TOKEN")

    payload = decode_access_token(token)

    result = await db.execute(select(User).where(User.id == payload["userId"]))
    user = result.scalar_one_or_none()

    if user is None or not user.is_active:
        raise AuthenticationError("User not found", code="USER_NOT_FOUND")

    request.state.principal = user
    request.state.principal_id = user.id
    return user


async def get_current_super_admin(
    current_user: User = Depends(get_current_user)
) -> User:
    """Require the authenticated principal to be a super admin"""
    if not current_user.is_super_admin:
        logger.warning(f"Non super admin user {current_user.id} attempted a platform action")
        raise RoleForbidden("Super admin privileges required")
    return current_user
