"""Helpers for safe debug logging.

Store requests carry auth tokens in query strings and headers, and record
payloads may carry user content.  This module redacts sensitive fields
before emitting DEBUG logs.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

_REDACTED = "<redacted>"
_MAX_DEPTH = 20

# Compared after lowercasing and dropping "-" / "_".
_SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "auth",
        "authorization",
        "password",
        "secret",
        "token",
        "idtoken",
        "accesstoken",
        "refreshtoken",
        "apikey",
        "cookie",
        "setcookie",
    }
)

_AUTH_QUERY_RE = re.compile(r"([?&](?:auth|access_token)=)[^&#]*", re.IGNORECASE)


def _is_sensitive(key: object) -> bool:
    return str(key).lower().replace("-", "").replace("_", "") in _SENSITIVE_KEYS


def redact_url(url: str) -> str:
    """Mask ``auth=``/``access_token=`` query values in *url*."""
    return _AUTH_QUERY_RE.sub(rf"\1{_REDACTED}", url)


def _redact_str(value: str, max_string: int) -> str:
    if "=" in value:
        value = redact_url(value)
    if len(value) <= max_string:
        return value
    return f"{value[:max_string]}…<truncated>"


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a copy of *value* that is safe to put in a DEBUG log line.

    Mapping entries under sensitive keys are replaced, strings that embed an
    ``auth=`` query parameter are masked and long strings are truncated.
    Objects that are not plain JSON-like data are logged by ``repr``.
    """
    if _depth > _MAX_DEPTH:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return _redact_str(value, max_string)
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    depth = _depth + 1
    if isinstance(value, Mapping):
        return {
            str(k): _REDACTED if _is_sensitive(k) else redact_for_log(v, max_string=max_string, _depth=depth)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple, set, frozenset)):
        return [redact_for_log(v, max_string=max_string, _depth=depth) for v in value]
    return repr(value)
