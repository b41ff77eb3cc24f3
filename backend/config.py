"""
Configuration management for the application.
Loads settings from environment variables using Pydantic Settings.
"""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database Configuration
    # Either a full DATABASE_URL or the discrete DB_* variables
    DATABASE_URL: Optional[str] = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_USER: str = "cafe"
    DB_PASSWORD: str = ""
    DB_NAME: str = "cafe_pos"
    DATABASE_ECHO: bool = False

    @property
    def database_url_async(self) -> str:
        """
        Resolve the configured database to an async driver URL.
        - PostgreSQL: postgresql+asyncpg://...
        - SQLite: sqlite+aiosqlite:///...
        """
        if not self.DATABASE_URL:
            return (
                f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}"
                f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            )
        if self.DATABASE_URL.startswith("postgresql://"):
            return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif self.DATABASE_URL.startswith("postgres://"):
            return self.DATABASE_URL.replace("postgres://", "postgresql+asyncpg://", 1)
        elif self.DATABASE_URL.startswith("sqlite://"):
            return self.DATABASE_URL.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return self.DATABASE_URL

    # Security
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    TOKEN_CLOCK_SKEW_SECONDS: int = 600
    BCRYPT_ROUNDS: int = 12
    MIN_PASSWORD_LENGTH: int = 8

    # Application
    APP_NAME: str = "Cafe POS API"
    DEBUG: bool = False
    PORT: int = 5000
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"
    LOG_LEVEL: str = "INFO"
    UPLOAD_DIR: str = "uploads"
    APP_TIMEZONE: str = "Asia/Kolkata"

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_GENERAL_ENABLED: bool = False

    # Feature resolution cache (0 disables)
    FEATURE_CACHE_TTL_SECONDS: int = 30

    # Nightly analytics aggregation
    ANALYTICS_SCHEDULER_ENABLED: bool = True
    ANALYTICS_JOB_HOUR: int = 2

    # Bootstrap Super Admin Configuration
    BOOTSTRAP_SUPER_ADMIN_EMAIL: str = ""
    BOOTSTRAP_SUPER_ADMIN_USERNAME: str = "superadmin"
    BOOTSTRAP_SUPER_ADMIN_PASSWORD_HASH: str = ""

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


# Singleton instance - import this in other modules
settings = Settings()
