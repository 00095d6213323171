"""
Store Rating - Logging Tests

Run with: pytest tests/test_logging.py -v
"""

from store_rating.logging import REDACTED, _redact_secrets


def test_credentials_redacted():
    event = {
        "event": "auth.login",
        "password": "hunter2",
        "refresh_token": "eyJ...",
        "Authorization": "Bearer eyJ...",
        "jwt_secret": "s3cret",
        "user_id": "42",
    }

    result = _redact_secrets(None, "info", event)

    assert result["password"] == REDACTED
    assert result["refresh_token"] == REDACTED
    assert result["Authorization"] == REDACTED
    assert result["jwt_secret"] == REDACTED
    assert result["user_id"] == "42"
    assert result["event"] == "auth.login"
