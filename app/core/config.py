# python
# app/core/config.py
"""Configuration settings for the chat streaming API.

Uses Pydantic BaseSettings for environment variable management.
"""
from enum import Enum

from pydantic import AnyHttpUrl, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvironmentEnum(str, Enum):
    development = "development"
    testing = "testing"
    staging = "staging"
    production = "production"


class LogLevelEnum(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StreamBackendEnum(str, Enum):
    none = "none"
    memory = "memory"
    redis = "redis"


class Settings(BaseSettings):
    # Pydantic v2 settings configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===== Application Settings =====
    app_name: str = Field(default="Chat Streaming API", description="Application name")
    environment: EnvironmentEnum = Field(
        default=EnvironmentEnum.development, description="Environment type"
    )
    debug: bool = Field(default=False, description="Debug mode")
    version: str = Field(default="1.0.0", description="Application version")

    # ===== Database Settings =====
    database_url: str | None = Field(default=None, description="Database connection URL")
    db_pool_size: int = Field(default=20, description="Database connection pool size")
    db_max_overflow: int = Field(default=0, description="Database max overflow connections")

    # Test database URL
    test_database_url: str | None = Field(default=None, description="Test database URL")

    # ===== Authentication (Clerk) =====
    clerk_secret_key: str | None = Field(default=None, description="Clerk secret key")
    clerk_api_url: AnyHttpUrl = Field(default="https://api.clerk.com", description="Clerk API URL")
    jwt_algorithm: str = Field(default="HS256", description="JWT algorithm")
    jwt_verify_signature: bool = Field(
        default=False, description="Verify session token signatures with the Clerk secret key"
    )

    # ===== AI Service (Gemini) =====
    gemini_api_key: str | None = Field(default=None, description="Google Gemini API key")
    gemini_model: str = Field(default="gemini-1.5-flash", description="Model behind 'chat-model'")
    gemini_reasoning_model: str = Field(
        default="gemini-1.5-pro", description="Model behind 'chat-model-reasoning'"
    )
    gemini_max_tokens: int = Field(default=2048, description="Maximum output tokens for Gemini")
    ai_max_retry_attempts: int = Field(default=3, description="Retries when the model is rate limited")
    ai_retry_backoff_factor: float = Field(default=1.0, description="Exponential backoff multiplier")
    ai_retry_min_wait: int = Field(default=1, description="Minimum retry wait in seconds")
    ai_retry_max_wait: int = Field(default=10, description="Maximum retry wait in seconds")

    # ===== Tools =====
    weather_api_url: AnyHttpUrl = Field(
        default="https://api.open-meteo.com/v1/forecast", description="Weather tool endpoint"
    )
    tool_request_timeout: float = Field(default=10.0, description="Tool HTTP timeout in seconds")

    # ===== Resumable Streams =====
    resumable_stream_backend: StreamBackendEnum = Field(
        default=StreamBackendEnum.none, description="Resumable stream transport"
    )
    redis_url: str | None = Field(default=None, description="Redis connection URL")
    stream_ttl_seconds: int = Field(default=3600, description="How long stream buffers are kept")
    resume_staleness_seconds: int = Field(
        default=15, description="Max age of a finished reply that resumption will replay"
    )
    shutdown_grace_seconds: float = Field(
        default=10.0, description="Time to let background generations finish on shutdown"
    )

    # ===== Chat Limits =====
    chat_max_duration_seconds: int = Field(default=60, description="Wall-clock ceiling for one turn")
    chat_max_steps: int = Field(default=5, description="Maximum tool-calling steps per turn")
    chat_history_limit: int = Field(default=50, description="Messages of history sent to the model")
    quota_window_hours: int = Field(default=24, description="Trailing window for message quotas")
    max_message_length: int = Field(default=10000, description="Maximum user message length")

    # ===== CORS Settings =====
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000",
        description="Allowed CORS origins (comma-separated)",
    )

    @property
    def allowed_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        if isinstance(self.allowed_origins, str):
            return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]
        return self.allowed_origins if isinstance(self.allowed_origins, list) else []

    # ===== Monitoring & Logging =====
    log_level: LogLevelEnum = Field(default=LogLevelEnum.INFO, description="Logging level")

    # ===== Server Settings =====
    host: str = Field(default="127.0.0.1", description="Host to bind the server")
    port: int = Field(default=8000, description="Port to bind the server")

    # ===== Computed Properties =====
    @property
    def is_development(self) -> bool:
        return self.environment == EnvironmentEnum.development

    @property
    def is_production(self) -> bool:
        return self.environment == EnvironmentEnum.production

    @property
    def is_testing(self) -> bool:
        return self.environment == EnvironmentEnum.testing

    @property
    def has_ai_enabled(self) -> bool:
        return bool(self.gemini_api_key)

    @property
    def has_resumable_streams(self) -> bool:
        return self.resumable_stream_backend != StreamBackendEnum.none

    # ===== Validation Methods =====
    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v):
        if v and isinstance(v, str):
            lv = v.lower()
            if lv in ["dev", "develop"]:
                return "development"
            if lv in ["prod"]:
                return "production"
        return v

    @field_validator("chat_max_steps")
    @classmethod
    def validate_max_steps(cls, v):
        if v < 1:
            raise ValueError("chat_max_steps must be at least 1")
        return v

    @model_validator(mode="after")
    def set_computed_fields(self):
        if self.resumable_stream_backend == StreamBackendEnum.redis and not self.redis_url:
            self.redis_url = "redis://localhost:6379/0"
        return self


settings = Settings()


class ConfigValidator:
    @staticmethod
    def validate_required_settings():
        errors = []
        if not settings.database_url:
            errors.append("DATABASE_URL is required")
        if settings.jwt_verify_signature and not settings.clerk_secret_key:
            errors.append("CLERK_SECRET_KEY is required when JWT_VERIFY_SIGNATURE is enabled")
        if settings.is_production and not settings.gemini_api_key:
            errors.append("GEMINI_API_KEY is required in production")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

    @staticmethod
    def get_feature_status() -> dict:
        return {
            "ai_enabled": settings.has_ai_enabled,
            "resumable_streams": settings.has_resumable_streams,
            "stream_backend": settings.resumable_stream_backend.value,
            "environment": settings.environment,
        }


__all__ = [
    "settings",
    "Settings",
    "ConfigValidator",
    "EnvironmentEnum",
    "LogLevelEnum",
    "StreamBackendEnum",
]
