"""Shared test fixtures."""

import os

import pytest

from workspace_oauth_proxy.config import Settings, get_settings
from workspace_oauth_proxy.rate_limit import limiter


def settings_env_vars() -> list[str]:
    """Env vars that would feed a Settings field (names are case-insensitive)."""
    return [name for name in os.environ if name.lower() in Settings.model_fields]


@pytest.fixture(autouse=True)
def _isolate_process_state(monkeypatch: pytest.MonkeyPatch):
    """Each test starts with no overrides, fresh settings and empty rate limits."""
    for name in settings_env_vars():
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    limiter.reset()
    yield
    get_settings.cache_clear()
