from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime
import logging
import os

from config import settings
from database import init_db, async_session_maker
from errors import AppError
from models import User, UserRole
from rate_limiter import limiter, rate_limit_headers, rate_limit_exceeded_handler
from analytics_scheduler import start_analytics_scheduler

from auth_api import router as auth_router
from customers_api import router as customers_router, public_router as customer_public_router
from menu_api import router as menu_router, categories_router
from inventory_api import router as inventory_router
from orders_api import router as orders_router, invoices_router
from payment_methods_api import router as payment_methods_router
from settings_api import router as settings_router, cafe_router
from users_api import router as users_router
from analytics_api import router as analytics_router
from platform_admin import router as platform_admin_router

app = FastAPI(title=settings.APP_NAME, version="1.0.0")

# Setup logging
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["RateLimit-Limit", "RateLimit-Remaining", "RateLimit-Reset", "Retry-After"],
    max_age=3600,  # Cache preflight responses for 1 hour
)

# ==================== RATE LIMITING ====================

app.state.limiter = limiter
if settings.RATE_LIMIT_GENERAL_ENABLED:
    app.add_middleware(SlowAPIMiddleware)


@app.middleware("http")
async def add_rate_limit_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in rate_limit_headers(request).items():
        response.headers.setdefault(name, value)
    return response


# ==================== CUSTOM EXCEPTION HANDLERS ====================

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    # ids only: the session may already be closed or rolled back
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}",
        extra={
            "code": exc.code,
            "principal_id": getattr(request.state, "principal_id", None),
            "tenant_id": getattr(request.state, "tenant_id", None),
        }
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def custom_http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Framework errors (unknown route, wrong method) in the same envelope as AppError"""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail), "code": f"HTTP_{exc.status_code}"},
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(part) for part in error["loc"][1:]), "message": error["msg"]}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "code": "VALIDATION_ERROR", "details": details}
    )


app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=503,
        content={"error": "Database temporarily unavailable", "code": "DATABASE_ERROR"}
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler for unexpected errors."""
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "code": "INTERNAL_ERROR"}
    )

# ==================== END EXCEPTION HANDLERS ====================

app.include_router(auth_router)
app.include_router(customer_public_router)
app.include_router(customers_router)
app.include_router(menu_router)
app.include_router(categories_router)
app.include_router(inventory_router)
app.include_router(orders_router)
app.include_router(invoices_router)
app.include_router(payment_methods_router)
app.include_router(settings_router)
app.include_router(cafe_router)
app.include_router(users_router)
app.include_router(analytics_router)

# Include platform super admin routes
app.include_router(platform_admin_router)

# Mount static files for uploads
os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")


async def bootstrap_super_admin() -> None:
    """Create the super admin from BOOTSTRAP_SUPER_ADMIN_* when no super admin exists yet"""
    if not settings.BOOTSTRAP_SUPER_ADMIN_EMAIL or not settings.BOOTSTRAP_SUPER_ADMIN_PASSWORD_HASH:
        return

    async with async_session_maker() as db:
        result = await db.execute(select(User.id).where(User.role == UserRole.SUPERADMIN.value).limit(1))
        if result.scalar_one_or_none() is not None:
            return

        db.add(User(
            email=settings.BOOTSTRAP_SUPER_ADMIN_EMAIL.strip().lower(),
            username=settings.BOOTSTRAP_SUPER_ADMIN_USERNAME,
            hashed_password=settings.BOOTSTRAP_SUPER_ADMIN_PASSWORD_HASH,
            full_name="Platform Administrator",
            role=UserRole.SUPERADMIN.value,
            tenant_id=None,
            is_active=True
        ))
        await db.commit()
        logger.info(f"Bootstrap super admin '{settings.BOOTSTRAP_SUPER_ADMIN_USERNAME}' created")


@app.on_event("startup")
async def startup_event():
    """Initialize database on startup"""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    logger.info("=" * 60)
    logger.info("Starting application initialization...")
    logger.info("=" * 60)

    try:
        await init_db()
        logger.info("Database initialization successful!")
    except ConnectionRefusedError as e:
        logger.error("=" * 60)
        logger.error("CRITICAL: Database connection refused!")
        logger.error(f"Error: {e}")
        logger.error("=" * 60)
        raise
    except Exception as e:
        logger.error("=" * 60)
        logger.error(f"CRITICAL: Application startup failed: {e}")
        logger.error("=" * 60)
        raise

    await bootstrap_super_admin()

    if settings.ANALYTICS_SCHEDULER_ENABLED:
        start_analytics_scheduler()


# ==================== HEALTH CHECK ====================

@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers"""
    return {"status": "healthy", "service": "api", "timestamp": datetime.utcnow().isoformat()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
