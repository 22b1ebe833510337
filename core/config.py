"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Tollgate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_expiration -> ACCESS_TOKEN_EXPIRATION).

  Explicit hand-off: the auth/ services never call get_settings() themselves.
      The lifespan (or a test) constructs them with a Settings instance, so
      there is no ambient mutable configuration inside the grant engine.

Credential lifetimes:
  All three durations are whole seconds and are reported verbatim as
  expires_in / refresh_token_expires_in on freshly issued tokens. The access
  token must always expire strictly before its refresh token; the
  model_validator refuses to start otherwise.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
or auth/.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'tollgate.db'}"


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

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Credential lifetimes (seconds)
    # ------------------------------------------------------------------

    authorization_code_expiration: int = 600
    access_token_expiration: int = 86400
    refresh_token_expiration: int = 2628288

    # Length of generated codes and token strings. 62-symbol alphabet, so
    # 64 characters is roughly 380 bits of entropy.
    token_length: int = 64

    # Background reaper for expired authorization codes. 0 disables it;
    # redemption always re-checks expiry regardless.
    code_purge_interval_seconds: int = 3600

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    token_rate_limit: str = "30/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_lifetimes(self) -> "Settings":
        """Reject lifetimes that would break the token invariants.

        Every duration must be positive, and an access token must expire
        strictly before the refresh token issued alongside it.
        """
        for name in ("authorization_code_expiration", "access_token_expiration", "refresh_token_expiration"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name.upper()} must be a positive number of seconds.")
        if self.access_token_expiration >= self.refresh_token_expiration:
            raise ValueError("ACCESS_TOKEN_EXPIRATION must be shorter than REFRESH_TOKEN_EXPIRATION.")
        if self.token_length < 32:
            raise ValueError("TOKEN_LENGTH must be at least 32 characters.")
        if self.code_purge_interval_seconds < 0:
            raise ValueError("CODE_PURGE_INTERVAL_SECONDS cannot be negative.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
