"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the membership site happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. database_url -> DATABASE_URL). Type coercion and validation are
      built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Production mode refuses to start without
      a bot-verification secret; dev mode runs with verification disabled and
      logs a warning.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/, or membership/.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("membership.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'membership.db'}"

_DAY = 24 * 60 * 60


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file, provided DEBUG=true.
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
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_cookie_name: str = "session"
    # None means "secure unless running in debug mode".
    secure_cookies: Optional[bool] = None
    session_lifetime_seconds: int = 30 * _DAY
    # Sessions used within this window before expiry are extended.
    session_renewal_seconds: int = 15 * _DAY

    # ------------------------------------------------------------------
    # Password hashing (Argon2id)
    # ------------------------------------------------------------------

    argon2_time_cost: int = 2
    argon2_memory_cost: int = 19456  # KiB
    argon2_parallelism: int = 1

    # ------------------------------------------------------------------
    # External services
    # ------------------------------------------------------------------

    # Empty string means bot verification is disabled (dev only).
    turnstile_secret_key: str = ""
    turnstile_verify_url: str = "https://challenges.cloudflare.com/turnstile/v0/siteverify"
    # Empty string means the form relay is disabled.
    formspree_form_id: str = ""
    outbound_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Dev-only admin bootstrap
    # ------------------------------------------------------------------

    admin_bootstrap_secret: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        """Reject configurations that are unsafe to serve.

        Production mode (DEBUG=false or not set): TURNSTILE_SECRET_KEY is
            required. Without it, anonymous access requests would skip bot
            verification entirely.

        Dev mode (DEBUG=true): a missing secret disables verification with a
            warning.

        Both modes: the renewal window must be shorter than the session
            lifetime, otherwise every validation would renew the session.
        """
        if not self.turnstile_secret_key:
            if self.debug:
                logger.warning("TURNSTILE_SECRET_KEY not set -- bot verification is disabled.")
            else:
                raise ValueError(
                    "TURNSTILE_SECRET_KEY is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if self.session_lifetime_seconds <= 0:
            raise ValueError("SESSION_LIFETIME_SECONDS must be positive.")
        if not 0 <= self.session_renewal_seconds < self.session_lifetime_seconds:
            raise ValueError("SESSION_RENEWAL_SECONDS must be shorter than SESSION_LIFETIME_SECONDS.")
        return self

    @property
    def cookie_secure(self) -> bool:
        """Whether the session cookie carries the Secure attribute."""
        if self.secure_cookies is None:
            return not self.debug
        return self.secure_cookies

    @property
    def bot_verification_enabled(self) -> bool:
        return bool(self.turnstile_secret_key)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings()
    directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or construct Settings(...)
    explicitly and pass it to the component under test.
    """
    return Settings()
