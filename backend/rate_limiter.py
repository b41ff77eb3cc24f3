"""Shared rate limiter instance and the named per-IP quotas used across routers."""

import logging
import time

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from config import settings

logger = logging.getLogger(__name__)

GENERAL_LIMIT = "100 per 15 minutes"
AUTH_LIMIT = "5 per 15 minutes"
UPLOAD_LIMIT = "10 per 60 minutes"
API_LIMIT = "200 per 15 minutes"

AUTH_SCOPE = "auth"
UPLOAD_SCOPE = "upload"
API_SCOPE = "api"

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[GENERAL_LIMIT] if settings.RATE_LIMIT_GENERAL_ENABLED else [],
    enabled=settings.RATE_LIMIT_ENABLED,
)


def rate_limit_headers(request: Request) -> dict:
    """RateLimit-* headers for the limit evaluated on this request, if any"""
    current = getattr(request.state, "view_rate_limit", None)
    if not current:
        return {}
    item, args = current
    reset_at, remaining = limiter.limiter.get_window_stats(item, *args)
    return {
        "RateLimit-Limit": str(item.amount),
        "RateLimit-Remaining": str(max(remaining, 0)),
        "RateLimit-Reset": str(max(int(reset_at - time.time()), 0)),
    }


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 with retryAfter equal to the window length of the limit that was hit"""
    window = exc.limit.limit.get_expiry()
    logger.warning(
        f"Rate limit exceeded for {get_remote_address(request)} on {request.url.path}: {exc.detail}"
    )
    headers = rate_limit_headers(request)
    headers["Retry-After"] = str(window)
    return JSONResponse(
        status_code=429,
        content={
            "error": "Too many requests, please try again later.",
            "code": "RATE_LIMITED",
            "retryAfter": window,
        },
        headers=headers,
    )
