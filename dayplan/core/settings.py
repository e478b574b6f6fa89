from pathlib import Path
from typing import Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Database
    DB_URL: str = "postgresql://postgres:password@db:5432/dayplan"
    DB_ECHO: bool = False  # Set to True for SQL query logging in development
    DB_CREATE_TABLES: bool = True  # Create missing tables on startup

    # Connection Pool Settings
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600

    # Plan parsing (Anthropic Messages API)
    ANTHROPIC_API_KEY: str = ""
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-latest"
    ANTHROPIC_MAX_TOKENS: int = 1024
    LLM_TIMEOUT_SECONDS: float = 60.0

    # Places, photos, directions (Google Maps Platform)
    GOOGLE_MAPS_API_KEY: str = ""
    PLACE_PHOTO_MAX_WIDTH: int = 400
    PLACEHOLDER_IMAGE_URL: str = "https://via.placeholder.com/400x300?text=No+Image+Available"
    MAPS_TIMEOUT_SECONDS: int = 10

    # Scheduling
    DEFAULT_TIMEZONE: str = "UTC"
    DEFAULT_EVENT_MINUTES: int = 60
    SCHEDULE_GRACE_MINUTES: int = 5
    DEFAULT_TRAVEL_MODE: str = "driving"
    MAX_PLAN_TEXT_LENGTH: int = 2000

    # Rate Limiting
    ENABLE_RATE_LIMITING: bool = True
    RATE_LIMIT_PARSE: str = "10/minute"
    RATE_LIMIT_READ: str = "60/minute"
    RATE_LIMIT_UPDATE: str = "30/minute"
    RATE_LIMIT_DELETE: str = "10/minute"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "app.log"  # Empty string disables the file handler

    # CORS
    ALLOWED_ORIGINS: Union[list, str] = ["http://localhost:3000", "http://localhost:5173"]

    @field_validator('ALLOWED_ORIGINS', mode='before')
    @classmethod
    def parse_allowed_origins(cls, v):
        """Parse ALLOWED_ORIGINS from comma-separated string or list"""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @field_validator('DEFAULT_TRAVEL_MODE')
    @classmethod
    def validate_travel_mode(cls, v):
        if v not in ("driving", "transit", "walking", "bicycling"):
            raise ValueError(f"Unsupported travel mode: {v}")
        return v

    # Security
    JWT_SECRET: str = "change_me"
    JWT_REFRESH_SECRET: str = "refresh_change_me"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    REFRESH_TOKEN_EXPIRE_MINUTES: int = 1440  # 24 hours

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
