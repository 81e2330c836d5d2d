"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly.
"""

import warnings
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_SECRET = "change-me-in-production"
_LOCALHOST_PATTERNS = ("localhost", "127.0.0.1", "0.0.0.0")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite:///./restaurant.db"

    # Redis - optional, used for the token blacklist
    redis_url: Optional[str] = None

    # Security
    secret_key: str = _DEFAULT_SECRET
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 720  # 12 hours, one service shift

    # CORS - comma-separated origins or "*" for development only
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    # Restaurant
    restaurant_name: str = "Marrakech Cafe"
    public_base_url: str = "http://localhost:3000"
    default_tax_rate: float = 15.0

    # Inventory
    expiry_warning_days: int = 7

    # Printers
    printer_timeout_seconds: float = 5.0

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    # Rate limiting
    rate_limit_enabled: bool = True

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if v == _DEFAULT_SECRET:
            warnings.warn(
                "Using default SECRET_KEY is insecure! Set SECRET_KEY environment variable.",
                UserWarning,
                stacklevel=2,
            )
        elif len(v) < 32:
            warnings.warn(
                "SECRET_KEY should be at least 32 characters for security.",
                UserWarning,
                stacklevel=2,
            )
        return v

    @field_validator("default_tax_rate")
    @classmethod
    def validate_tax_rate(cls, v: float) -> float:
        if v < 0 or v > 100:
            raise ValueError("default_tax_rate must be between 0 and 100")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Refuse to start in production mode with an unsafe secret key."""
        if self.debug:
            return self

        if self.secret_key == _DEFAULT_SECRET or len(self.secret_key) < 32:
            raise ValueError(
                "FATAL: Cannot start in production mode without a SECRET_KEY "
                "of at least 32 characters."
            )

        origins = [o.strip() for o in self.cors_origins.split(",")]
        localhost_origins = [o for o in origins if any(p in o for p in _LOCALHOST_PATTERNS)]
        if localhost_origins:
            warnings.warn(
                f"CORS origins contain localhost URLs in production mode: {localhost_origins}",
                UserWarning,
                stacklevel=2,
            )
        return self

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list, filtering localhost in production."""
        if self.cors_origins == "*":
            return ["*"]

        origins = [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]
        if not self.debug:
            origins = [o for o in origins if not any(p in o for p in _LOCALHOST_PATTERNS)]
        return origins


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
