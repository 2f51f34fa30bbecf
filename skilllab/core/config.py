from pydantic_settings import BaseSettings
from pydantic import Field, validator
from typing import List
import secrets


class Settings(BaseSettings):
    # Application settings
    APP_NAME: str = "SkillLab Records"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Session token settings (identity provider hand-off)
    JWT_SECRET_KEY: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    JWT_ALGORITHM: str = "HS256"
    SESSION_TOKEN_EXPIRE_MINUTES: int = 12 * 60

    # CORS settings
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Local cache (synchronous, one file per device)
    LOCAL_DATABASE_URL: str = "sqlite:///./skilllab_cache.db"

    # Shared remote document store (server side)
    REMOTE_DATABASE_URL: str = "sqlite+aiosqlite:///./skilllab_remote.db"
    DATABASE_ECHO: bool = False

    # Remote store client
    REMOTE_BASE_URL: str = "http://localhost:8000"
    REMOTE_TIMEOUT_SECONDS: float = 15.0

    # Sync retry policy
    SYNC_MAX_ATTEMPTS: int = 5
    SYNC_BACKOFF_BASE_SECONDS: float = 1.0
    SYNC_BACKOFF_MAX_SECONDS: float = 60.0

    @validator("ALLOWED_ORIGINS", pre=True)
    def parse_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @validator("LOCAL_DATABASE_URL", "REMOTE_DATABASE_URL")
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("database URL is required")
        return v

    @validator("SYNC_MAX_ATTEMPTS")
    def validate_attempts(cls, v):
        if v < 1:
            raise ValueError("SYNC_MAX_ATTEMPTS must be at least 1")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
