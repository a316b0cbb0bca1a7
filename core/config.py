"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly -- import get_settings() instead, or better,
accept a Settings instance as a constructor argument.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. Only the
      composition roots (api/main.py lifespan, main.py CLI) call it; stores,
      token issuers, the cache and the authorizer receive the values they need
      as explicit arguments.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret_key -> JWT_SECRET_KEY).

  @model_validator(mode="after"): cross-field rules that need every value
      resolved first (secret key policy, cache default per environment).

Security notes:
  SECRET_KEY and JWT_SECRET_KEY shorter than 32 chars are rejected outright.
  In production mode a missing SECRET_KEY is a hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
orgs/, authz/, or cache/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("meetup.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'meetup.db'}"

AppEnv = Literal["dev", "test", "prod"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

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

    environment: AppEnv = "prod"
    debug: bool = False
    log_level: str = "INFO"
    # Empty string is the sentinel for "not configured". The validator
    # below either generates a dev key or raises.
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Session tokens (JWT)
    # ------------------------------------------------------------------

    jwt_secret_key: str = ""  # falls back to secret_key
    jwt_issuer: str = "meetup"
    jwt_audience: str = "meetup"
    jwt_access_exp_hours: int = 3

    # ------------------------------------------------------------------
    # Action tokens (activation / password reset)
    # ------------------------------------------------------------------

    activation_token_max_age_seconds: int = 30 * 60
    password_reset_token_max_age_seconds: int = 30 * 60

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    db_pool_size: int = 30
    db_max_overflow: int = 0
    db_pool_recycle_seconds: int = 15 * 60

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    # None means "use the environment default": on everywhere except test.
    cache_enabled: Optional[bool] = None
    redis_url: str = "redis://localhost:6379/0"
    cache_ttl_user_seconds: int = 60 * 60
    cache_ttl_org_seconds: int = 60 * 60

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("environment", mode="before")
    @classmethod
    def fallback_environment(cls, value: object) -> str:
        """Unknown SERVER environments run with production rules."""
        if isinstance(value, str) and value.lower() in ("dev", "test", "prod"):
            return value.lower()
        return "prod"

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the secret key policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode: refuse to start without SECRET_KEY.
        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug or self.environment == "test":
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not survive a restart.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")

        if not self.jwt_secret_key:
            self.jwt_secret_key = self.secret_key
        if len(self.jwt_secret_key) < 32:
            raise ValueError("JWT_SECRET_KEY must be at least 32 characters.")

        if self.cache_enabled is None:
            self.cache_enabled = self.environment != "test"
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
