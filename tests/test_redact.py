from __future__ import annotations

from pyripple._redact import redact_for_log, redact_url


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "content": "hello",
        "auth": "db-secret",
        "headers": {"Authorization": "Bearer abc", "user-agent": "pyripple"},
        "idToken": "jwt",
        "nested": [{"api_key": "k", "name": "x"}],
    }

    redacted = redact_for_log(payload)
    assert redacted["content"] == "hello"
    assert redacted["auth"] == "<redacted>"
    assert redacted["headers"]["Authorization"] == "<redacted>"
    assert redacted["headers"]["user-agent"] == "pyripple"
    assert redacted["idToken"] == "<redacted>"
    assert redacted["nested"][0]["api_key"] == "<redacted>"
    assert redacted["nested"][0]["name"] == "x"


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"code": long_value}, max_string=10)
    assert redacted["code"].startswith("x" * 10)
    assert "<truncated>" in redacted["code"]


def test_redact_url_masks_auth_query() -> None:
    url = "https://demo.example.com/groups.json?auth=SECRET&print=silent"
    assert redact_url(url) == "https://demo.example.com/groups.json?auth=<redacted>&print=silent"


def test_redact_for_log_masks_urls_inside_strings_and_reprs_objects() -> None:
    redacted = redact_for_log({"url": "https://x.example.com/a.json?auth=abc", "obj": object()})
    assert redacted["url"] == "https://x.example.com/a.json?auth=<redacted>"
    assert redacted["obj"].startswith("<object object")
