import logging
from functools import lru_cache
from urllib.parse import urljoin

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="BREACHWATCH_", case_sensitive=False)

    # Public origin of this service; every redirect is anchored against it
    SERVER_URL: str = "http://localhost:6060"

    # Signed session cookie
    SESSION_SECRET: str = "dev-only-insecure-session-secret"
    SESSION_COOKIE_NAME: str = "breachwatch_session"
    SESSION_MAX_AGE: int = 14 * 24 * 3600
    SESSION_HTTPS_ONLY: bool = False

    # Identity provider (OAuth 2.0 authorization code flow)
    OAUTH_CLIENT_ID: str = ""
    OAUTH_CLIENT_SECRET: str = ""
    OAUTH_AUTHORIZATION_URL: str = "https://accounts.firefox.com/authorization"
    OAUTH_TOKEN_URL: str = "https://oauth.accounts.firefox.com/v1/token"
    OAUTH_PROFILE_URL: str = "https://profile.accounts.firefox.com/v1/profile"
    OAUTH_SCOPES: str = "profile"
    OAUTH_REDIRECT_URI: str = ""

    DATABASE_URL: str = "sqlite+aiosqlite:///./breachwatch.db"

    # Post-auth routes
    DASHBOARD_PATH: str = "/user/dashboard"
    REMOVE_LOGGED_IN_DEFAULT_ROUTE: str = "/user/remove-data"

    # File of SHA-256 email digests, one per line
    PILOT_HASH_FILE: str = ""

    # Breach data
    HIBP_API_ROOT: str = "https://haveibeenpwned.com/api/v3"
    HIBP_KANON_API_ROOT: str = "https://api.haveibeenpwned.com/range"
    HIBP_KANON_API_TOKEN: str = ""
    LOAD_BREACHES_ON_STARTUP: bool = True

    # Transactional email HTTP API; empty URL means dry-run (log only)
    EMAIL_API_URL: str = ""
    EMAIL_API_KEY: str = ""
    EMAIL_FROM: str = "Breachwatch <no-reply@breachwatch.example>"

    HTTP_CLIENT_TIMEOUT: float = 10.0

    @property
    def oauth_redirect_uri(self) -> str:
        return self.OAUTH_REDIRECT_URI or urljoin(self.SERVER_URL, "/oauth/confirmed")

    def validate_oauth(self) -> list[str]:
        """Return the names of missing identity-provider settings."""
        missing = []
        if not self.OAUTH_CLIENT_ID:
            missing.append("BREACHWATCH_OAUTH_CLIENT_ID")
        if not self.OAUTH_CLIENT_SECRET:
            missing.append("BREACHWATCH_OAUTH_CLIENT_SECRET")
        return missing


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    missing = settings.validate_oauth()
    if missing:
        logger.warning(
            "Identity provider credentials not configured",
            extra={"meta": {"missing": missing}},
        )
    return settings
