"""Tests for log redaction."""

from jobtrail.core.logging import redact_sensitive_data, redact_string


def test_redact_sensitive_fields():
    redacted = redact_sensitive_data(None, "info", {"event": "login", "password": "hunter2", "refresh_token": "x"})
    assert redacted["password"] == "***REDACTED***"
    assert redacted["refresh_token"] == "***REDACTED***"
    assert redacted["event"] == "login"


def test_redact_email():
    assert redact_string("jane@example.com") == "j***@example.com"
    assert redact_string("short text") == "short text"
