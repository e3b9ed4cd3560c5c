"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the marketplace API happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field rules that depend on the
      environment -- signing-secret policy and the refresh-token persistence
      default.

Security notes:
  [M6] JWT secrets shorter than 32 chars are rejected outright. HS256 signing
       relies on key entropy -- a short key weakens every issued token.

  [M7] In production a missing JWT_SECRET is a hard startup failure. Outside
       production a random key is generated with a warning; tokens then do not
       survive a restart.

Layer rule: core/ is the kernel. This module may not import from api/, auth/
or mail/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("localmarket.config")


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

    environment: Literal["development", "production", "test"] = "development"
    debug: bool = False
    api_prefix: str = "/api"
    database_url: str = "sqlite:///localmarket.db"
    frontend_url: str = "https://kamnet.pk"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured"; see validate_secrets.
    jwt_secret: str = ""
    jwt_expire_seconds: int = 24 * 60 * 60
    # Falls back to jwt_secret when unset (weaker isolation, warned at startup).
    jwt_refresh_secret: str = ""
    jwt_refresh_expire_seconds: int = 7 * 24 * 60 * 60
    reset_token_expire_seconds: int = 10 * 60
    bcrypt_rounds: int = 12

    # None means "derive from environment": only production mirrors refresh
    # tokens onto the account record.
    persist_refresh_tokens: Optional[bool] = None

    revocation_purge_interval_seconds: int = 5 * 60

    # ------------------------------------------------------------------
    # Federated login
    # ------------------------------------------------------------------

    google_client_id: str = ""

    # ------------------------------------------------------------------
    # Admin bootstrap
    # ------------------------------------------------------------------

    # Read only by `main.py create-admin`; empty means prompt for it.
    admin_password: str = ""

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    email_from: str = "noreply@kamnet.pk"
    email_from_name: str = "Kamnet Marketplace"
    # Empty smtp_host means messages are written to the log instead of sent.
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000", "https://kamnet.pk"]

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"
    forgot_password_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Derived
    # ------------------------------------------------------------------

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing-secret policy [M6][M7].

        Outside production (or with DEBUG=true) a missing JWT_SECRET is
        replaced by a random key. Production refuses to start without one.
        Both secrets must be at least 32 characters when provided.
        """
        if not self.jwt_secret:
            if self.debug or not self.is_production:
                self.jwt_secret = secrets.token_hex(32)
                logger.warning("Using auto-generated JWT_SECRET. Tokens will not survive a restart.")
            else:
                raise ValueError(
                    "JWT_SECRET is required in production. "
                    "Set JWT_SECRET in your environment or .env file."
                )
        if len(self.jwt_secret) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters.")
        if self.jwt_refresh_secret and len(self.jwt_refresh_secret) < 32:
            raise ValueError("JWT_REFRESH_SECRET must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def resolve_refresh_persistence(self) -> "Settings":
        if self.persist_refresh_tokens is None:
            self.persist_refresh_tokens = self.is_production
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
