"""
core/config.py -- Centralized bridge configuration via pydantic-settings.

All environment variable reads for the bridge happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  Explicit hand-off: the Settings object is resolved once at application
      startup (api/main.py lifespan) and passed into every component
      constructor. Components (verifier, reconciler, stores, bridge) never call
      get_settings() from inside their methods.

  BaseSettings (pydantic-settings): Reads values from STYTCH_* environment
      variables and an optional .env file automatically. Field names map to
      env var names (e.g. project_id -> STYTCH_PROJECT_ID).

  @model_validator(mode="after"): cross-field validation once all fields are
      resolved -- project credentials, session secret policy, identifier safety.

Security notes:
  [M6] STYTCH_SESSION_SECRET_KEY shorter than 32 chars is rejected outright.
       The session cookie that carries the cached authentication snapshot is
       signed with it; a short key weakens that signature.

  [M7] Outside debug mode a missing session secret is a hard startup failure.
       A random key in production would log every user out on restart.

  Column and table names are interpolated into DDL by SQLAlchemy Core, so they
  are restricted to plain identifiers here.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or cache/.
"""

import logging
import re
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.models import TenancyMode

logger = logging.getLogger("stytchbridge.config")

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'stytchbridge.db'}"

# Accepted spellings for the tenancy mode. b2c / b2b are the provider's own names.
_MODE_ALIASES = {
    "consumer": TenancyMode.CONSUMER,
    "b2c": TenancyMode.CONSUMER,
    "business": TenancyMode.BUSINESS,
    "b2b": TenancyMode.BUSINESS,
}


class Settings(BaseSettings):
    """Bridge settings loaded from STYTCH_* environment variables and .env.

    Every field except the project credentials has a default so tests can build
    Settings(project_id=..., secret=...) directly without an environment.
    """

    model_config = SettingsConfigDict(
        env_prefix="STYTCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Provider credentials and transport
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured"; the validator rejects it.
    project_id: str = ""
    secret: str = ""
    api_url: Optional[str] = None  # custom API domain; None = derive from project id
    timeout: float = 600

    # ------------------------------------------------------------------
    # Credential carriers
    # ------------------------------------------------------------------

    session_cookie_name: str = "stytch_session"
    jwt_cookie_name: str = "stytch_session_jwt"

    # ------------------------------------------------------------------
    # Local user store
    # ------------------------------------------------------------------

    user_store: str = "auth.store:UserStore"
    user_table: str = "users"
    user_id_column: str = "id"
    email_column: str = "email"
    user_id_external_column: str = "stytch_user_id"
    name_column: str = "name"

    # ------------------------------------------------------------------
    # Tenancy and session cache
    # ------------------------------------------------------------------

    default_auth_method: TenancyMode = TenancyMode.CONSUMER
    session_timeout: int = 3600

    # ------------------------------------------------------------------
    # Organizations (business mode only)
    # ------------------------------------------------------------------

    organization_enabled: bool = True
    organization_store: str = "auth.store:OrganizationStore"
    organization_table: str = "organizations"
    organization_id_column: str = "stytch_organization_id"
    organization_name_column: str = "name"

    # ------------------------------------------------------------------
    # Application wiring
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    debug: bool = False
    session_secret_key: str = ""
    secure_cookies: bool = False
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("default_auth_method", mode="before")
    @classmethod
    def normalize_auth_method(cls, value):
        """Accept consumer / business as well as the provider's b2c / b2b names."""
        if isinstance(value, TenancyMode):
            return value
        mode = _MODE_ALIASES.get(str(value).strip().lower())
        if mode is None:
            raise ValueError(f"Unknown auth method {value!r}; expected consumer, business, b2c or b2b.")
        return mode

    @field_validator(
        "user_table",
        "user_id_column",
        "email_column",
        "user_id_external_column",
        "name_column",
        "organization_table",
        "organization_id_column",
        "organization_name_column",
    )
    @classmethod
    def validate_identifier(cls, value: str) -> str:
        if not _IDENTIFIER_RE.match(value):
            raise ValueError(f"{value!r} is not a plain SQL identifier.")
        return value

    @model_validator(mode="after")
    def validate_credentials(self) -> "Settings":
        """Enforce the credential policy at startup.

        Project id and secret are always required -- without them every
        request would silently resolve to anonymous, which hides the
        misconfiguration instead of surfacing it.

        Session secret [M7]: debug mode generates one with a warning; any other
        mode refuses to start without it. Both modes reject short keys [M6].
        """
        if not self.project_id or not self.secret:
            raise ValueError(
                "STYTCH_PROJECT_ID and STYTCH_SECRET are required. "
                "Find them in the Stytch dashboard under API keys."
            )
        if self.timeout <= 0:
            raise ValueError("STYTCH_TIMEOUT must be a positive number of seconds.")
        if self.session_timeout <= 0:
            raise ValueError("STYTCH_SESSION_TIMEOUT must be a positive number of seconds.")
        if not self.session_secret_key:
            if self.debug:
                self.session_secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated STYTCH_SESSION_SECRET_KEY. "
                    "Cached sessions will not survive a restart."
                )
            else:
                raise ValueError(
                    "STYTCH_SESSION_SECRET_KEY is required outside debug mode. "
                    "To run in development mode, set STYTCH_DEBUG=true."
                )
        if len(self.session_secret_key) < 32:
            raise ValueError("STYTCH_SESSION_SECRET_KEY must be at least 32 characters.")
        return self

    @property
    def base_url(self) -> str:
        """Provider API root without a trailing slash.

        Test-environment project ids (project-test-...) talk to the test API
        host; everything else goes to the live host unless api_url overrides it.
        """
        if self.api_url:
            return self.api_url.rstrip("/")
        if self.project_id.startswith("project-test-"):
            return "https://test.stytch.com"
        return "https://api.stytch.com"

    def links_organizations(self, mode: TenancyMode) -> bool:
        """True when members authenticated under mode are linked to local organizations."""
        return mode is TenancyMode.BUSINESS and self.organization_enabled


@lru_cache
def get_settings() -> Settings:
    """Return the bridge Settings singleton.

    Called once by the application lifespan; the result is handed to every
    component constructor from there.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
