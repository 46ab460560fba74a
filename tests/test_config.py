"""Unit tests for core/config.py -- SECRET_KEY policy and defaults.

Settings are built directly with _env_file=None so a developer's .env file
cannot leak into the assertions.
"""

import pytest

from core.config import Settings


def test_production_requires_secret_key() -> None:
    with pytest.raises(ValueError, match="SECRET_KEY is required"):
        Settings(_env_file=None, debug=False, secret_key="")


def test_short_secret_key_rejected() -> None:
    with pytest.raises(ValueError, match="at least 32 characters"):
        Settings(_env_file=None, debug=True, secret_key="short")


def test_debug_generates_secret_key() -> None:
    settings = Settings(_env_file=None, debug=True, secret_key="")
    assert len(settings.secret_key) == 64


def test_lifetime_defaults() -> None:
    settings = Settings(_env_file=None, debug=False, secret_key="k" * 32)
    assert settings.session_ttl_seconds == 14 * 24 * 3600
    assert settings.password_reset_ttl_seconds == 15 * 60
    assert settings.email_token_ttl_seconds == 48 * 3600
    assert settings.email_rate_limit_seconds == 5 * 60
    assert settings.phone_code_ttl_seconds == 15 * 60
    assert settings.phone_rate_limit_seconds == 60
    assert settings.phone_max_attempts == 3
