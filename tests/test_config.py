from __future__ import annotations

import pytest

from pyripple.config import RippleConfig
from pyripple.exceptions import RippleConfigError


def test_defaults_retry_without_limit() -> None:
    config = RippleConfig()
    assert config.max_retries is None
    assert config.retry_backoff == 0.0
    assert config.api_trace_enabled is False


def test_from_env_reads_ripple_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RIPPLE_DATABASE_URL", "https://demo.example.com/")
    monkeypatch.setenv("RIPPLE_AUTH_TOKEN", "secret-token")
    monkeypatch.setenv("RIPPLE_REQUEST_TIMEOUT", "5")
    monkeypatch.setenv("RIPPLE_MAX_RETRIES", "3")
    monkeypatch.setenv("RIPPLE_RETRY_BACKOFF", "0.1")
    monkeypatch.setenv("RIPPLE_API_TRACE_ENABLED", "yes")

    config = RippleConfig.from_env()

    assert config.base_url == "https://demo.example.com"
    assert config.auth_token == "secret-token"
    assert config.request_timeout == 5.0
    assert config.max_retries == 3
    assert config.retry_backoff == 0.1
    assert config.api_trace_enabled is True


def test_from_env_unbounded_retries_and_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RIPPLE_MAX_RETRIES", "unbounded")
    monkeypatch.setenv("RIPPLE_DATABASE_URL", "https://env.example.com")

    config = RippleConfig.from_env(database_url="https://override.example.com")

    assert config.max_retries is None
    assert config.database_url == "https://override.example.com"


def test_invalid_values_raise_config_error() -> None:
    with pytest.raises(RippleConfigError):
        RippleConfig(max_retries=-1)
    with pytest.raises(RippleConfigError):
        RippleConfig(request_timeout=0)
    with pytest.raises(RippleConfigError):
        RippleConfig().require_database_url()
