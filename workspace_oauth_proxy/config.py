"""Application configuration using pydantic-settings.

Two values decide which OAuth client the proxy speaks for:
- WORKSPACE_CLIENT_ID (or CLIENT_ID): OAuth client ID
- WORKSPACE_CLOUD_FUNCTION_URL (or REDIRECT_URI): public URL of this proxy,
  registered with Google as the OAuth redirect URI

Both are optional. Unset or empty values fall back to the defaults bundled
with the extension, independently of each other.

The client secret is never part of the configuration. It lives in Secret
Manager and is read per request (see secret_accessor.py).
"""

from dataclasses import dataclass
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from workspace_oauth_proxy.secret_accessor import SecretReference
from workspace_oauth_proxy.token_client import GOOGLE_TOKEN_URI

DEFAULT_CLIENT_ID = "338689075775-o75k922vn5fdl18qergr96rp8g63e4d7.apps.googleusercontent.com"
DEFAULT_REDIRECT_URI = "https://google-workspace-extension.geminicli.com"

DEFAULT_SECRET_NAME = "workspace-oauth-client-secret"

DEFAULT_RATE_LIMIT = "30/minute"


@dataclass(frozen=True)
class OAuthConfig:
    """OAuth client identity used for every exchange in this process."""

    client_id: str
    redirect_uri: str


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Nothing here is required. A bare deployment serves the default client and
    reads the secret named `workspace-oauth-client-secret` from the project of
    the runtime's Application Default Credentials.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars not defined in Settings
    )

    # Server
    port: int = 8080
    environment: str = "development"
    log_level: str = "INFO"

    # OAuth client overrides (empty means "use the bundled default").
    # The WORKSPACE_* names take precedence; CLIENT_ID / REDIRECT_URI are the
    # names the deployment script sets.
    workspace_client_id: str = ""
    client_id: str = ""
    workspace_cloud_function_url: str = ""
    redirect_uri: str = ""

    # Secret Manager
    # Either a bare secret id or a full "projects/P/secrets/S/versions/V" path
    google_cloud_project: str = ""
    secret_name: str = DEFAULT_SECRET_NAME
    secret_version: str = "latest"
    secret_timeout: float = 10.0
    secret_retry_attempts: int = 3

    # Identity provider
    token_uri: str = GOOGLE_TOKEN_URI
    token_timeout: float = 15.0

    # Per-client limit on the OAuth endpoints (slowapi syntax)
    rate_limit: str = DEFAULT_RATE_LIMIT

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    def secret_reference(self) -> SecretReference:
        """Build the reference to the client secret in Secret Manager."""
        return SecretReference.parse(self.secret_name, default_version=self.secret_version)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is a known value."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of: {allowed}")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a known value."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of: {allowed}")
        return v_upper

    @field_validator("secret_timeout", "token_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Outbound calls must carry a bounded, positive timeout."""
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v

    @field_validator("secret_retry_attempts")
    @classmethod
    def validate_retry_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("secret_retry_attempts must be at least 1")
        return v


def _first_override(*values: str, default: str) -> str:
    for value in values:
        if value.strip():
            return value.strip()
    return default


def resolve_oauth_config(settings: Settings) -> OAuthConfig:
    """Resolve the OAuth client ID and redirect URI.

    Each field uses the first non-blank of its overrides, else the bundled
    default. A blank WORKSPACE_* value does not hide the deployment name.
    Never fails.
    """
    return OAuthConfig(
        client_id=_first_override(
            settings.workspace_client_id, settings.client_id, default=DEFAULT_CLIENT_ID
        ),
        redirect_uri=_first_override(
            settings.workspace_cloud_function_url,
            settings.redirect_uri,
            default=DEFAULT_REDIRECT_URI,
        ),
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Settings are loaded once and cached for the lifetime of the application.
    """
    return Settings()
