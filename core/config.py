"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the forum happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. rp_id -> RP_ID). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Used to reject an ORIGIN that could never
      match RP_ID, and TTLs that would make challenges or sessions unusable.

Relying party:
  RP_ID and ORIGIN are optional. When unset, the API layer derives them from
  the incoming request (hostname and scheme://host). Set both in production
  behind a proxy, where the request host is not the browser-visible host.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, cache/, messages/, or storage/.
"""

import logging
from functools import lru_cache
from pathlib import Path
from urllib.parse import urlparse

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("forum.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'forum.db'}"


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

    # ------------------------------------------------------------------
    # WebAuthn relying party
    # ------------------------------------------------------------------

    rp_id: str = ""  # "" = derive from request hostname
    rp_name: str = "Forum"
    origin: str = ""  # "" = derive from request scheme://host
    registration_enabled: bool = True
    # Authenticators that never implement a counter always report 0. Accepting
    # 0 -> 0 is policy, not an accident; switch off to demand counters.
    allow_zero_counters: bool = True

    # ------------------------------------------------------------------
    # Lifetimes (seconds)
    # ------------------------------------------------------------------

    challenge_ttl_seconds: int = 300
    session_ttl_seconds: int = 86400
    admin_session_ttl_seconds: int = 86400
    kv_purge_interval_seconds: int = 3600

    # ------------------------------------------------------------------
    # Admin bootstrap
    # ------------------------------------------------------------------

    # Granted the admin role when this exact username registers and no admin
    # exists yet. Empty string disables the bootstrap.
    bootstrap_admin_username: str = ""

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    ceremony_rate_limit: str = "20/minute"
    cors_origins: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Object storage (optional -- empty endpoint/bucket disables it)
    # ------------------------------------------------------------------

    s3_endpoint: str = ""
    s3_bucket: str = ""
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""
    s3_region: str = "auto"
    s3_public_url: str = ""  # "" = <s3_endpoint>/<s3_bucket>

    @property
    def object_storage_enabled(self) -> bool:
        return bool(self.s3_endpoint and self.s3_bucket)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_relying_party(self) -> "Settings":
        """Reject configurations that would make every ceremony fail.

        The browser binds a credential to RP_ID and reports ORIGIN in the
        signed client data. An ORIGIN host that is neither RP_ID nor a
        subdomain of it can never produce a valid ceremony, so refuse to
        start rather than fail every login.
        """
        for name in ("challenge_ttl_seconds", "session_ttl_seconds", "admin_session_ttl_seconds"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name.upper()} must be a positive number of seconds.")
        if self.origin:
            host = urlparse(self.origin).hostname or ""
            if not host:
                raise ValueError(f"ORIGIN must be an absolute URL, got {self.origin!r}.")
            if self.rp_id and host != self.rp_id and not host.endswith("." + self.rp_id):
                raise ValueError(f"ORIGIN host {host!r} is not RP_ID {self.rp_id!r} or one of its subdomains.")
        if not self.rp_id and not self.origin and not self.debug:
            logger.warning("RP_ID and ORIGIN are unset; deriving them from each request's Host header.")
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
