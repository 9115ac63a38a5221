"""
core/config.py -- AuditBoard settings (pydantic-settings).

Every environment read happens here. Other modules call get_settings(),
never os.getenv().

get_settings() is lru_cached, so Settings is built once per process; tests
that change the environment call get_settings.cache_clear().

Field names map to env vars (client_id -> CLIENT_ID, list_id -> LIST_ID)
and may also come from a .env file.

SECRET_KEY signs the session cookie, which carries the login-attempt flag
and the pending auth-code flow. With DEBUG=true a random key is generated;
otherwise a missing key stops startup.

core/ does not import from api/, web/, auth/ or lists/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.models import DEFAULT_FIELD_MAP

logger = logging.getLogger("auditboard.config")

_DEFAULT_STORAGE_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auditboard_storage.db'}"


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


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
    secure_cookies: bool = False
    # Comma-separated Host header allow-list for TrustedHostMiddleware.
    allowed_hosts: str = "localhost,127.0.0.1,*.localhost"

    # ------------------------------------------------------------------
    # Identity provider (Microsoft Entra ID)
    # ------------------------------------------------------------------

    client_id: str = ""
    tenant_id: str = "organizations"
    # Empty secret -> public client (PKCE only), as registered for SPA platforms.
    client_secret: str = ""
    redirect_uri: str = "http://localhost:8000/"
    post_logout_redirect_uri: str = "http://localhost:8000/"
    # Comma-separated; kept as str so pydantic-settings does not try to JSON-decode it.
    login_scopes: str = "User.Read"

    # ------------------------------------------------------------------
    # Record source (SharePoint list via Microsoft Graph)
    # ------------------------------------------------------------------

    list_hostname: str = ""
    list_site_path: str = ""
    list_id: str = ""
    list_scopes: str = "Sites.Read.All"
    list_page_size: int = 200
    list_max_pages: int = 20
    # JSON object in the environment, e.g. LIST_FIELD_MAP='{"Sub Area": "field_1"}'
    list_field_map: dict[str, str] = dict(DEFAULT_FIELD_MAP)

    # ------------------------------------------------------------------
    # Storage and views
    # ------------------------------------------------------------------

    storage_db_url: str = _DEFAULT_STORAGE_DB_URL
    top_n: int = 8

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}"

    @property
    def allowed_host_list(self) -> list[str]:
        return _split_csv(self.allowed_hosts)

    @property
    def login_scope_list(self) -> list[str]:
        return _split_csv(self.login_scopes)

    @property
    def list_scope_list(self) -> list[str]:
        return _split_csv(self.list_scopes)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """DEBUG=true generates a throwaway key; otherwise SECRET_KEY must be set. Minimum 32 chars either way."""
        if not self.secret_key:
            if not self.debug:
                raise ValueError(
                    "SECRET_KEY is required when DEBUG is off. "
                    "Set it in the environment or .env, or set DEBUG=true for local development."
                )
            self.secret_key = secrets.token_hex(32)
            logger.warning("No SECRET_KEY set; generated one. Sign-in sessions end when the process restarts.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_list_paging(self) -> "Settings":
        if self.list_page_size < 1 or self.list_max_pages < 1:
            raise ValueError("LIST_PAGE_SIZE and LIST_MAX_PAGES must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
