"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for sessionkeeper happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. DEBUG controls whether a missing SECRET_KEY is generated or
      fatal, and whether a bcrypt cost below the production floor is allowed.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing and
       the one-time-code HMAC both rely on key entropy.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. A random key would silently invalidate every
       issued token on restart.

  [M8] BCRYPT_ROUNDS below 12 is refused outside DEBUG. Tests lower the cost
       to keep the suite fast; production never may.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("sessionkeeper.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'sessionkeeper.db'}"

MIN_BCRYPT_ROUNDS = 12


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    # Seconds a SQLite connection waits on a locked database before failing.
    database_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Tokens and credentials
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_seconds: int = 7 * 24 * 3600
    bcrypt_rounds: int = MIN_BCRYPT_ROUNDS

    # ------------------------------------------------------------------
    # One-time codes (password reset)
    # ------------------------------------------------------------------

    one_time_code_ttl_seconds: int = 15 * 60
    one_time_code_max_attempts: int = 5
    # Observed behaviour: the reset path only enforces a length floor, unlike
    # change-password. Kept configurable rather than silently unified.
    reset_password_min_length: int = 6

    # ------------------------------------------------------------------
    # Email (optional -- empty SMTP_HOST means codes are only logged)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from: str = "noreply@example.com"
    smtp_use_tls: bool = True
    smtp_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "testserver", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M6][M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Issued tokens will not survive a restart.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_bcrypt_rounds(self) -> "Settings":
        """Enforce the bcrypt cost floor [M8]. bcrypt itself accepts 4..31."""
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if self.bcrypt_rounds < MIN_BCRYPT_ROUNDS:
            if not self.debug:
                raise ValueError(f"BCRYPT_ROUNDS below {MIN_BCRYPT_ROUNDS} is only allowed with DEBUG=true.")
            logger.warning("BCRYPT_ROUNDS=%d is below the production floor of %d.", self.bcrypt_rounds, MIN_BCRYPT_ROUNDS)
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
