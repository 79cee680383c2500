"""Application settings via Pydantic Settings."""

from functools import lru_cache
import json
from urllib.parse import urlparse

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _asyncpg_connect_args_from_url(database_url: str, timeout: float) -> dict[str, object]:
    """
    Compute asyncpg connect_args based on DATABASE_URL.

    Internal Railway Postgres hostnames reject SSL negotiation, so SSL is
    explicitly disabled for them. Connect and command timeouts always apply.
    """
    host = urlparse(database_url).hostname or ""
    args: dict[str, object] = {"timeout": timeout, "command_timeout": timeout}
    if host.endswith(".railway.internal"):
        args["ssl"] = False
    return args


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    app_name: str = "Factiony API"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8080

    # Relational store (PostgreSQL). Unset disables the relational adapter.
    database_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "SUPABASE_DB_URL"),
    )
    db_pool_size: int = Field(default=5, ge=1, le=100)
    db_max_overflow: int = Field(default=10, ge=0, le=100)

    # Document store (Redis). Unset disables the document adapter.
    redis_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("REDIS_URL", "DOCUMENT_STORE_URL"),
    )

    # Network timeout applied by both store clients
    store_timeout_seconds: float = Field(default=5.0, gt=0)

    # Coordination policy
    cache_ttl_hours: float = Field(default=24.0, ge=0)
    log_archive_days: int = Field(default=90, ge=1)
    like_scan_limit: int = Field(default=1000, ge=1, le=10000)

    @field_validator("database_url", "redis_url", mode="before")
    @classmethod
    def _blank_as_missing(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def relational_configured(self) -> bool:
        return self.database_url is not None

    @property
    def document_configured(self) -> bool:
        return self.redis_url is not None

    @property
    def async_database_url(self) -> str | None:
        """Get database URL with asyncpg driver.

        Hosted Postgres providers hand out postgresql:// URLs; async
        SQLAlchemy needs postgresql+asyncpg://.
        """
        url = self.database_url
        if url and url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url

    @property
    def asyncpg_connect_args(self) -> dict[str, object]:
        """Extra connect args for asyncpg (timeout, Railway SSL quirks)."""
        return _asyncpg_connect_args_from_url(self.async_database_url or "", self.store_timeout_seconds)

    # CORS
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173"],
        validation_alias=AliasChoices("CORS_ORIGINS", "ALLOWED_ORIGINS"),
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v: object) -> list[str]:
        """
        Accept either:
        - JSON array string: '["https://a.com","http://localhost:5173"]'
        - Comma-separated string: "https://a.com,http://localhost:5173"
        - Already-parsed list[str]
        """
        if v is None:
            return []
        if isinstance(v, list):
            return [str(x).strip() for x in v if str(x).strip()]
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return []
            if s.startswith("["):
                try:
                    parsed = json.loads(s)
                except json.JSONDecodeError:
                    # Fall back to comma split if env var isn't valid JSON.
                    parsed = s.split(",")
                if isinstance(parsed, list):
                    return [str(x).strip() for x in parsed if str(x).strip()]
                return [str(parsed).strip()]
            return [part.strip() for part in s.split(",") if part.strip()]
        return [str(v).strip()] if str(v).strip() else []


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
