"""
core/config.py -- Centralized configuration for the Auth² identity core.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation once every field is
      resolved. Dev mode (DEBUG=true) generates a signing key with a warning,
      production mode refuses to start without one.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. Session and purpose
  tokens are HS256-signed with it, so a short key weakens every token.

Layer rule: core/ is the kernel. This module may not import from auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authsquared.config")


class Settings(BaseSettings):
    """Settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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
    database_url: str = "sqlite:///auth_squared.db"
    app_base_url: str = "http://localhost:8000"

    # ------------------------------------------------------------------
    # Token lifetimes
    # ------------------------------------------------------------------

    session_ttl_seconds: int = Field(default=14 * 24 * 3600, gt=0)
    password_reset_ttl_seconds: int = Field(default=15 * 60, gt=0)
    verification_token_ttl_seconds: int = Field(default=24 * 3600, gt=0)

    # ------------------------------------------------------------------
    # Verification workflow
    # ------------------------------------------------------------------

    email_token_ttl_seconds: int = Field(default=48 * 3600, gt=0)
    email_rate_limit_seconds: int = Field(default=5 * 60, ge=0)
    phone_code_ttl_seconds: int = Field(default=15 * 60, gt=0)
    phone_rate_limit_seconds: int = Field(default=60, ge=0)
    phone_max_attempts: int = Field(default=3, gt=0)

    # ------------------------------------------------------------------
    # Credential hashing
    # ------------------------------------------------------------------

    # bcrypt-pbkdf rounds for the password digest. Tests lower this to 1.
    hash_rounds: int = Field(default=100, gt=0)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

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


@lru_cache
def get_settings() -> Settings:
    """Return the Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
