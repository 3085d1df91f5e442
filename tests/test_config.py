"""Tests for configuration resolution."""

import os

import pytest
from pydantic import ValidationError

from workspace_oauth_proxy.config import (
    DEFAULT_CLIENT_ID,
    DEFAULT_REDIRECT_URI,
    OAuthConfig,
    Settings,
    get_settings,
    resolve_oauth_config,
)


def _settings() -> Settings:
    return Settings(_env_file=None)


class TestResolveOAuthConfig:
    """Tests for resolve_oauth_config."""

    def test_defaults_when_no_overrides(self) -> None:
        """No overrides yields the exact bundled defaults."""
        config = resolve_oauth_config(_settings())

        assert config.client_id == (
            "338689075775-o75k922vn5fdl18qergr96rp8g63e4d7.apps.googleusercontent.com"
        )
        assert config.redirect_uri == "https://google-workspace-extension.geminicli.com"

    def test_both_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Both overrides are used when set."""
        monkeypatch.setenv("WORKSPACE_CLIENT_ID", "custom-client-id")
        monkeypatch.setenv("WORKSPACE_CLOUD_FUNCTION_URL", "https://custom.example.com")

        config = resolve_oauth_config(_settings())

        assert config == OAuthConfig(
            client_id="custom-client-id", redirect_uri="https://custom.example.com"
        )

    def test_client_id_override_only(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A client ID override does not leak into the redirect URI."""
        monkeypatch.setenv("WORKSPACE_CLIENT_ID", "X")

        config = resolve_oauth_config(_settings())

        assert config.client_id == "X"
        assert config.redirect_uri == DEFAULT_REDIRECT_URI

    def test_redirect_override_only(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A redirect URI override does not leak into the client ID."""
        monkeypatch.setenv("WORKSPACE_CLOUD_FUNCTION_URL", "https://staging.example.com")

        config = resolve_oauth_config(_settings())

        assert config.client_id == DEFAULT_CLIENT_ID
        assert config.redirect_uri == "https://staging.example.com"

    @pytest.mark.parametrize("value", ["", "   "])
    def test_empty_override_falls_back(self, monkeypatch: pytest.MonkeyPatch, value: str) -> None:
        """Empty or blank overrides count as absent."""
        monkeypatch.setenv("WORKSPACE_CLIENT_ID", value)
        monkeypatch.setenv("WORKSPACE_CLOUD_FUNCTION_URL", value)

        config = resolve_oauth_config(_settings())

        assert config.client_id == DEFAULT_CLIENT_ID
        assert config.redirect_uri == DEFAULT_REDIRECT_URI

    def test_deployment_env_names_accepted(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """CLIENT_ID / REDIRECT_URI set by the deployment are honored too."""
        monkeypatch.setenv("CLIENT_ID", "deployed-client")
        monkeypatch.setenv("REDIRECT_URI", "https://fn.example.run.app")

        config = resolve_oauth_config(_settings())

        assert config.client_id == "deployed-client"
        assert config.redirect_uri == "https://fn.example.run.app"

    def test_blank_workspace_name_does_not_hide_deployment_name(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("WORKSPACE_CLIENT_ID", "")
        monkeypatch.setenv("CLIENT_ID", "deployed-client")
        monkeypatch.setenv("WORKSPACE_CLOUD_FUNCTION_URL", " ")
        monkeypatch.setenv("REDIRECT_URI", "https://fn.example.run.app")

        config = resolve_oauth_config(_settings())

        assert config.client_id == "deployed-client"
        assert config.redirect_uri == "https://fn.example.run.app"

    def test_workspace_names_take_precedence(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("WORKSPACE_CLIENT_ID", "workspace-client")
        monkeypatch.setenv("CLIENT_ID", "deployed-client")
        monkeypatch.setenv("WORKSPACE_CLOUD_FUNCTION_URL", "https://proxy.example.com")
        monkeypatch.setenv("REDIRECT_URI", "https://fn.example.run.app")

        config = resolve_oauth_config(_settings())

        assert config.client_id == "workspace-client"
        assert config.redirect_uri == "https://proxy.example.com"

    def test_config_is_immutable(self) -> None:
        """Resolved config cannot be mutated."""
        config = resolve_oauth_config(_settings())

        with pytest.raises(AttributeError):
            config.client_id = "other"  # type: ignore[misc]


class TestSettings:
    """Tests for Settings validation and helpers."""

    def test_secret_reference_defaults(self) -> None:
        """Default secret is the bare id at the latest version."""
        ref = _settings().secret_reference()

        assert ref.logical_name == "workspace-oauth-client-secret"
        assert ref.version == "latest"

    def test_secret_reference_from_full_path(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A full resource path carries its own version."""
        monkeypatch.setenv("SECRET_NAME", "projects/my-proj/secrets/oauth/versions/7")

        ref = _settings().secret_reference()

        assert ref.logical_name == "projects/my-proj/secrets/oauth"
        assert ref.version == "7"

    def test_secret_version_setting(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """SECRET_VERSION applies to names without a version."""
        monkeypatch.setenv("SECRET_VERSION", "3")

        assert _settings().secret_reference().version == "3"

    def test_invalid_environment_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ENVIRONMENT", "qa")

        with pytest.raises(ValidationError):
            _settings()

    def test_log_level_normalized(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOG_LEVEL", "debug")

        assert _settings().log_level == "DEBUG"

    def test_non_positive_timeout_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Outbound calls must have a bounded timeout."""
        monkeypatch.setenv("TOKEN_TIMEOUT", "0")

        with pytest.raises(ValidationError):
            _settings()

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()

    def test_tests_start_without_setting_overrides(self) -> None:
        """No setting can leak in from the environment the suite runs in."""
        leaked = [name for name in os.environ if name.lower() in Settings.model_fields]

        assert leaked == []
        assert _settings().model_dump() == Settings.model_construct().model_dump()
