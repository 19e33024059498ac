"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the school admin service happen here. No
module should call os.getenv() or os.environ.get() directly -- the app
assembly code calls get_settings() once and passes the resulting Settings
object into the token issuer, email sender and sequencers explicitly. Nothing
under auth/ reads configuration on its own.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Used for the DEBUG-conditional SECRET_KEY rule: dev mode
      generates a key with a warning, production refuses to start without one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. Access token
       signing and refresh token HMACs both rely on key entropy.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. Every instance of the fleet must share one key or
       tokens issued by one instance fail on another.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("schooladmin.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. Settings are read-only after
    startup; nothing mutates them once the app is assembled.
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
    database_url: str = "sqlite:///schooladmin.db"

    # ------------------------------------------------------------------
    # Auth lifetimes
    # ------------------------------------------------------------------

    access_token_ttl_seconds: int = 3600
    session_ttl_seconds: int = 7 * 24 * 3600
    reset_token_ttl_seconds: int = 30 * 60
    # The session cookie is not marked Secure by default; flip this in
    # deployments served over HTTPS only.
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost:3000"]
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # SMTP (empty smtp_host means "log instead of send")
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_from: str = ""

    # ------------------------------------------------------------------
    # Initial administrator, provisioned at startup if no admin exists
    # ------------------------------------------------------------------

    admin_name: str = "Administrator"
    admin_email: str = "admin@localhost"
    admin_password: str = ""
    admin_phone: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive a restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
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
    def validate_lifetimes(self) -> "Settings":
        for name in ("access_token_ttl_seconds", "session_ttl_seconds", "reset_token_ttl_seconds"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name.upper()} must be a positive number of seconds.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Only the app assembly code (api/main.py lifespan, main.py CLI) calls this.
    In tests: construct Settings(...) directly or call
    get_settings.cache_clear() between test cases.
    """
    return Settings()
