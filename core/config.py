"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for SessionKeep happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Cross-field validation once every field is
      resolved. Dev mode generates missing signing secrets with a warning,
      production mode refuses to start without them.

Security notes:
  Access and refresh tokens are signed with DIFFERENT secrets. A leaked access
  secret must not let an attacker mint refresh tokens, so identical values are
  rejected at startup.

  Secrets shorter than 32 chars are rejected outright.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or cache/.
"""

import logging
import re
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("sessionkeep.config")

_DURATION_RE = re.compile(r"(\d+)([smhd])")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: str) -> int:
    """Convert a duration string such as "15m" or "7d" into seconds.

    Returns 0 when the string has no recognizable <number><unit> part.
    """
    match = _DURATION_RE.search(value or "")
    if not match:
        return 0
    return int(match.group(1)) * _UNIT_SECONDS[match.group(2)]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true for the secrets).
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
    environment: str = "development"

    # ------------------------------------------------------------------
    # Token signing
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The validator below
    # either generates dev secrets or raises, so callers never see "".
    access_token_secret: str = ""
    refresh_token_secret: str = ""
    access_token_expires_in: str = "15m"
    refresh_token_expires_in: str = "7d"

    # ------------------------------------------------------------------
    # Session protocol
    # ------------------------------------------------------------------

    refresh_grace_period_days: int = 30
    used_token_ttl_seconds: int = 300
    token_family_cache_ttl_seconds: int = 3600

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = "sqlite+aiosqlite:///./sessionkeep.db"
    redis_url: str = "redis://localhost:6379/0"

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    mobile_client_header: str = "X-Mobile-Client"
    secure_cookies: bool = False
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173", "http://127.0.0.1:5173"]
    # "*" accepts any Host header; list hostnames to enable TrustedHostMiddleware checks.
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Google OAuth (empty string means the provider is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = ""

    # ------------------------------------------------------------------
    # OTP
    # ------------------------------------------------------------------

    otp_expire_minutes: int = 5
    otp_max_requests: int = 5
    otp_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def access_token_ttl(self) -> int:
        """Access token lifetime in seconds."""
        return parse_duration(self.access_token_expires_in)

    @property
    def refresh_token_ttl(self) -> int:
        """Refresh token lifetime in seconds."""
        return parse_duration(self.refresh_token_expires_in)

    @property
    def google_configured(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret and self.google_redirect_uri)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_token_secrets(self) -> "Settings":
        """Enforce the signing-secret policy.

        Dev mode (DEBUG=true): auto-generate any missing secret with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.

        Both modes: reject secrets shorter than 32 characters, identical
            access/refresh secrets, and token lifetimes that parse to zero.
        """
        for field in ("access_token_secret", "refresh_token_secret"):
            if not getattr(self, field):
                if self.debug:
                    setattr(self, field, secrets.token_hex(32))
                    logger.warning(
                        "WARNING: Using auto-generated %s. Sessions will not persist across restarts.",
                        field.upper(),
                    )
                else:
                    raise ValueError(
                        f"{field.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
            if len(getattr(self, field)) < 32:
                raise ValueError(f"{field.upper()} must be at least 32 characters.")
        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ.")
        if self.access_token_ttl <= 0 or self.refresh_token_ttl <= 0:
            raise ValueError("Token lifetimes must look like '15m', '12h' or '7d'.")
        if self.is_production:
            self.secure_cookies = True
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
