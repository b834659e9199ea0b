# vaultshare/app/core/config.py
"""
VaultShare settings, loaded from the environment and ``.env``.

- SECRET_KEY has a development default that is refused in production
- CORS origins come from a comma-separated list; an empty list disables CORS
- DATABASE_URL is rewritten to the async driver for its backend
- KDF_ITERATIONS is part of the stored-key format and has a floor
"""
from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEV_SECRET_KEY = "INSECURE_DEV_KEY_CHANGE_IN_PRODUCTION"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./vaultshare.db"
MIN_KDF_ITERATIONS = 100_000


class Settings(BaseSettings):
    """
    Environment variables win over ``.env``, which wins over the defaults
    below. Defaults are only suitable for local development.
    """

    # ─────────────────────────────────────────────────────────────
    # Service identity
    # ─────────────────────────────────────────────────────────────
    PROJECT_NAME: str = "VaultShare"
    PROJECT_VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    # Share links point at the browser app, not the API
    FRONTEND_URL: str = "http://localhost:3000"

    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # ─────────────────────────────────────────────────────────────
    # Session tokens (JWT in httpOnly cookies)
    # ─────────────────────────────────────────────────────────────
    SECRET_KEY: str = DEV_SECRET_KEY
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    MFA_TOKEN_EXPIRE_MINUTES: int = 5

    # ─────────────────────────────────────────────────────────────
    # Credentials, TOTP and lockout
    # ─────────────────────────────────────────────────────────────
    BCRYPT_ROUNDS: int = 12
    PASSWORD_MIN_LENGTH: int = 8
    MAX_LOGIN_ATTEMPTS: int = 5
    LOCKOUT_DURATION_MINUTES: int = 120
    TOTP_ISSUER: str = "VaultShare"

    # ─────────────────────────────────────────────────────────────
    # Envelope encryption and blob storage
    # Changing KDF_ITERATIONS makes existing wrapped keys unrecoverable
    # ─────────────────────────────────────────────────────────────
    KDF_ITERATIONS: int = MIN_KDF_ITERATIONS
    UPLOAD_DIR: str = "./uploads"
    MAX_UPLOAD_BYTES: int = 50 * 1024 * 1024
    SHARE_DEFAULT_EXPIRY_MINUTES: int = 60
    SHARE_MAX_EXPIRY_MINUTES: int = 60 * 24 * 7

    # ─────────────────────────────────────────────────────────────
    # Audit retention: whichever bound is hit first evicts the oldest
    # ─────────────────────────────────────────────────────────────
    AUDIT_MAX_EVENTS: int = 100_000
    AUDIT_MAX_BYTES: int = 100 * 1024 * 1024

    # ─────────────────────────────────────────────────────────────
    # Record store
    # SQLite for development and tests, PostgreSQL (asyncpg) otherwise.
    # Echo stays off: bound parameters include password hashes.
    # ─────────────────────────────────────────────────────────────
    DATABASE_URL: str = DEFAULT_DATABASE_URL
    DATABASE_ECHO: bool = False

    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """
        postgres://   → postgresql+asyncpg://
        postgresql:// → postgresql+asyncpg://
        sqlite:///    → sqlite+aiosqlite:///
        """
        if not v:
            return DEFAULT_DATABASE_URL

        url = v.strip()
        if url.startswith("postgres://"):
            return "postgresql+asyncpg://" + url[len("postgres://"):]
        if url.startswith("postgresql://"):
            return "postgresql+asyncpg://" + url[len("postgresql://"):]
        if url.startswith("sqlite:///"):
            return "sqlite+aiosqlite:///" + url[len("sqlite:///"):]
        return url

    @field_validator("KDF_ITERATIONS")
    @classmethod
    def check_kdf_iterations(cls, v: int) -> int:
        if v < MIN_KDF_ITERATIONS:
            raise ValueError(f"KDF_ITERATIONS must be at least {MIN_KDF_ITERATIONS}")
        return v

    @model_validator(mode="after")
    def check_consistency(self) -> "Settings":
        if self.is_production and self.SECRET_KEY == DEV_SECRET_KEY:
            raise ValueError("SECRET_KEY must be set in production")
        if not 1 <= self.SHARE_DEFAULT_EXPIRY_MINUTES <= self.SHARE_MAX_EXPIRY_MINUTES:
            raise ValueError("SHARE_DEFAULT_EXPIRY_MINUTES must be between 1 and SHARE_MAX_EXPIRY_MINUTES")
        return self

    @property
    def BACKEND_CORS_ORIGINS(self) -> List[str]:
        # never "*": credentials travel as cookies
        return [origin.strip() for origin in (self.CORS_ORIGINS or "").split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    @property
    def cookie_secure(self) -> bool:
        return self.is_production

    @property
    def upload_path(self) -> Path:
        return Path(self.UPLOAD_DIR).expanduser()


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
