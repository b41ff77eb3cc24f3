import logging
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy import text
from config import settings
from tenacity import retry, stop_after_attempt, wait_fixed, retry_if_exception_type

try:
    import asyncpg.exceptions
    HAS_ASYNCPG = True
except ImportError:
    HAS_ASYNCPG = False

logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url_async
connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_async_engine(
    DATABASE_URL,
    echo=settings.DATABASE_ECHO,
    future=True,
    connect_args=connect_args
)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def get_db():
    """Dependency for getting async database sessions"""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


class SchemaVersionError(RuntimeError):
    """Raised when the database schema is older than the running code requires"""


# Define exception types to retry on
retry_exceptions = (ConnectionRefusedError, OSError)
if HAS_ASYNCPG:
    retry_exceptions += (asyncpg.exceptions.PostgresError,)


@retry(
    retry=retry_if_exception_type(retry_exceptions),
    stop=stop_after_attempt(12),  # 60 seconds total (12 attempts * 5 seconds)
    wait=wait_fixed(5),
    reraise=True,
    before_sleep=lambda retry_state: logger.warning(
        f"Database connection attempt {retry_state.attempt_number} failed. "
        f"Retrying in 5 seconds... (Error: {retry_state.outcome.exception()})"
    )
)
async def init_db(run_pending: bool = True):
    """
    Connect to the database, apply pending migrations and verify the schema version.

    Retries while the database refuses connections (container start-up ordering).
    Boot is refused when the schema is below REQUIRED_SCHEMA_VERSION.
    """
    logger.info("Attempting to connect to database and run migrations...")

    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
        logger.info("Database connection successful!")

    # Import here to avoid circular imports
    from migrations.runner import run_migrations, get_schema_version, REQUIRED_SCHEMA_VERSION

    if run_pending:
        await run_migrations(engine)

    version = await get_schema_version(engine)
    if version < REQUIRED_SCHEMA_VERSION:
        raise SchemaVersionError(
            f"Database schema version {version} is below required version {REQUIRED_SCHEMA_VERSION}; "
            f"run `python -m migrations.runner` first"
        )

    logger.info(f"Database initialization complete (schema version {version})")
