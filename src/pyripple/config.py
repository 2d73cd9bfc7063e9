"""Client configuration for pyripple."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pyripple.exceptions import RippleConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_optional_int(value: str | None) -> int | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized in {"", "none", "unbounded", "inf"}:
        return None
    return int(normalized)


@dataclasses.dataclass(frozen=True)
class RippleConfig:
    """Client configuration.

    Parameters
    ----------
    database_url : str
        Root URL of the realtime database (e.g.
        ``"https://my-app-default-rtdb.firebaseio.com"``).  Only the REST
        store needs it; the in-memory store ignores it.
    auth_token : str or None
        Database secret or ID token, sent as the ``auth`` query parameter.
    request_timeout : float
        Total timeout in seconds for one-shot REST requests.  Streaming
        subscriptions are not subject to it.
    max_retries : int or None
        Conflict limit for transactional counters.  ``None`` (the default)
        retries without limit, matching the behaviour of the hosted
        store's own transaction primitive.
    retry_backoff : float
        Initial delay in seconds between transaction retries.  ``0``
        retries immediately.
    retry_backoff_max : float
        Upper bound for the doubling retry delay.
    api_trace_enabled : bool
        Log every REST request/response (redacted) at DEBUG level.
    """

    database_url: str = ""
    auth_token: str | None = None
    request_timeout: float = 30.0
    max_retries: int | None = None
    retry_backoff: float = 0.0
    retry_backoff_max: float = 2.0
    api_trace_enabled: bool = False

    def __post_init__(self) -> None:
        if self.max_retries is not None and self.max_retries < 0:
            raise RippleConfigError("max_retries must be >= 0 or None")
        if self.retry_backoff < 0 or self.retry_backoff_max < 0:
            raise RippleConfigError("retry backoff values must be >= 0")
        if self.request_timeout <= 0:
            raise RippleConfigError("request_timeout must be > 0")

    @property
    def base_url(self) -> str:
        """Database URL without a trailing slash."""
        return self.database_url.rstrip("/")

    def require_database_url(self) -> str:
        if not self.database_url.strip():
            raise RippleConfigError("database_url is required (set RIPPLE_DATABASE_URL)")
        return self.base_url

    @classmethod
    def from_env(cls, **overrides: Any) -> RippleConfig:
        """Create configuration from environment variables.

        Reads ``RIPPLE_DATABASE_URL``, ``RIPPLE_AUTH_TOKEN`` and the optional
        ``RIPPLE_*`` tuning variables.  Explicit keyword arguments override
        environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        RippleConfig
            Populated configuration.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        _ENV_CONFIG_MAP = {
            "RIPPLE_DATABASE_URL": "database_url",
            "RIPPLE_AUTH_TOKEN": "auth_token",
        }
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        timeout_env = env.get("RIPPLE_REQUEST_TIMEOUT")
        if timeout_env is not None and "request_timeout" not in overrides:
            config_kwargs["request_timeout"] = float(timeout_env)

        retries_env = env.get("RIPPLE_MAX_RETRIES")
        if retries_env is not None and "max_retries" not in overrides:
            config_kwargs["max_retries"] = _env_optional_int(retries_env)

        backoff_env = env.get("RIPPLE_RETRY_BACKOFF")
        if backoff_env is not None and "retry_backoff" not in overrides:
            config_kwargs["retry_backoff"] = float(backoff_env)

        backoff_max_env = env.get("RIPPLE_RETRY_BACKOFF_MAX")
        if backoff_max_env is not None and "retry_backoff_max" not in overrides:
            config_kwargs["retry_backoff_max"] = float(backoff_max_env)

        if "api_trace_enabled" not in overrides:
            config_kwargs["api_trace_enabled"] = _env_bool(
                env.get("RIPPLE_API_TRACE_ENABLED"),
                False,
            )

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
