"""Application configuration management"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Dict, List
from urllib.parse import quote_plus

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode

# Base directory: backend/
_BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Application
    APP_NAME: str = "Library Audit Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # Database
    DATABASE_URL: str = "sqlite:///./library_audit.db"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "library_db"
    POSTGRES_USER: str = "library"
    POSTGRES_PASSWORD: str = "library"
    DATABASE_POOL_SIZE: int = 30
    DATABASE_MAX_OVERFLOW: int = 20

    # Token verification (issuance lives in the identity service)
    SECRET_KEY: str = "dev-secret-key-change-in-production-use-openssl-rand-hex-32"
    ALGORITHM: str = "HS256"
    ADMIN_ROLE: str = "Admin"

    # Audit retention
    AUDIT_CLEANUP_ENABLED: bool = True
    AUDIT_CLEANUP_INTERVAL_HOURS: float = Field(default=24, gt=0)
    AUDIT_CLEANUP_RETRY_DELAY_HOURS: float = Field(default=1, gt=0)
    AUDIT_ARCHIVE_BEFORE_DELETE: bool = False
    AUDIT_ARCHIVE_PATH: str = "archives/audit"
    AUDIT_ARCHIVE_FORMAT: str = "csv"  # csv | json
    AUDIT_ARCHIVE_COMPRESS: bool = False
    AUDIT_DEFAULT_RETENTION_DAYS: int = 180
    AUDIT_RETENTION_POLICY_FILE: str = ""
    AUDIT_RETENTION_POLICIES: Annotated[Dict[str, Any], NoDecode] = Field(default_factory=dict)
    AUDIT_EXPORT_MAX_RECORDS: int = 10000
    RUN_EMBEDDED_CLEANUP: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = ["http://localhost:3000"]

    # Database initialization discipline
    DB_INIT_MODE: str = "migrate"  # migrate | create_all | off
    DB_REQUIRE_HEAD: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, value: Any) -> Any:
        """
        Accept JSON array or comma-separated origins from env.

        Examples:
            CORS_ORIGINS=["http://localhost:3000","http://example.com"]
            CORS_ORIGINS=http://localhost:3000,http://example.com
        """
        if not isinstance(value, str):
            return value

        raw = value.strip()
        if not raw:
            return []

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None

        if isinstance(parsed, str):
            return [parsed]
        if isinstance(parsed, list):
            return [str(origin).strip() for origin in parsed if str(origin).strip()]

        return [origin.strip() for origin in raw.split(",") if origin.strip()]

    @field_validator("AUDIT_RETENTION_POLICIES", mode="before")
    @classmethod
    def _parse_retention_policies(cls, value: Any) -> Any:
        """
        Accept a JSON object or comma-separated PATTERN=DAYS pairs from env.

        Examples:
            AUDIT_RETENTION_POLICIES={"LOGIN": 180, "DEFAULT": 30}
            AUDIT_RETENTION_POLICIES=LOGIN=180,DEFAULT=30
        """
        if not isinstance(value, str):
            return value

        raw = value.strip()
        if not raw:
            return {}

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None

        if isinstance(parsed, dict):
            return parsed

        pairs = {}
        for item in raw.split(","):
            key, sep, days = item.partition("=")
            if sep and key.strip():
                pairs[key.strip()] = days.strip()
        return pairs

    def _resolve_path(self, value: str, default: str) -> str:
        """Resolve path - use absolute if empty or relative"""
        if not value or value.startswith(".."):
            return str(_BASE_DIR.parent / default)
        return value

    def get_archive_dir(self) -> str:
        return self._resolve_path(self.AUDIT_ARCHIVE_PATH, "archives/audit")

    def get_log_file(self) -> str:
        p = self.LOG_FILE
        if not p or p.startswith(".."):
            return str(_BASE_DIR.parent / "logs" / "app.log")
        return p

    def get_database_url(self) -> str:
        """
        Resolve database URL.

        Priority:
          1) Explicit DATABASE_URL
          2) Construct from POSTGRES_* parts with safe URL encoding
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL

        user = quote_plus(self.POSTGRES_USER)
        password = quote_plus(self.POSTGRES_PASSWORD)
        return (
            f"postgresql://{user}:{password}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    def validate_security_settings(self) -> None:
        """
        Validate runtime security defaults in production.

        Raises:
            ValueError: If insecure defaults are detected.
        """
        if self.ENVIRONMENT.lower() != "production":
            return

        insecure_secret_markers = {
            "",
            "dev-secret-key-change-in-production-use-openssl-rand-hex-32",
            "change-me",
        }

        if self.SECRET_KEY in insecure_secret_markers or len(self.SECRET_KEY) < 32:
            raise ValueError(
                "Insecure SECRET_KEY for production. Use a strong key (e.g. `openssl rand -hex 32`)."
            )

        if self.AUDIT_ARCHIVE_FORMAT.lower() not in {"csv", "json"}:
            raise ValueError("AUDIT_ARCHIVE_FORMAT must be 'csv' or 'json'.")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
