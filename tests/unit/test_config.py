"""Tests for configuration validation."""

from unittest.mock import patch

import pytest

from boardsync.core.config import Constants, Settings, get_credential


def test_require_credential_with_valid_value() -> None:
    """Test require_credential returns value when credential is set."""
    settings = Settings(asana_access_token="1/abc:def")

    result = settings.require_credential("asana_access_token", "Asana")

    assert result == "1/abc:def"


def test_require_credential_with_none_raises_error() -> None:
    """Test require_credential raises ValueError when credential is None."""
    settings = Settings(asana_access_token=None)

    with pytest.raises(ValueError, match="Asana credential not configured"):
        settings.require_credential("asana_access_token", "Asana")


def test_require_credential_with_empty_string_raises_error() -> None:
    """Test require_credential raises ValueError when credential is empty."""
    settings = Settings(asana_access_token="")

    with pytest.raises(ValueError, match="ASANA_ACCESS_TOKEN"):
        settings.require_credential("asana_access_token", "Asana")


def test_settings_read_from_environment(monkeypatch) -> None:
    """Test settings are loaded from environment variables."""
    monkeypatch.setenv("ASANA_ACCESS_TOKEN", "env-token")
    monkeypatch.setenv("RETRY_MAX_ATTEMPTS", "2")
    monkeypatch.setenv("INCLUDE_COMPLETED_TASKS", "true")

    settings = Settings(_env_file=None)

    assert settings.asana_access_token == "env-token"
    assert settings.retry_max_attempts == 2
    assert settings.include_completed_tasks is True


def test_defaults() -> None:
    """Test defaults target the public Asana API."""
    settings = Settings(_env_file=None)

    assert settings.asana_base_url == "https://app.asana.com/api/1.0"
    assert settings.page_limit <= Constants.MAX_PAGE_LIMIT
    assert settings.request_timeout_seconds > 0


def test_get_credential_reads_global_settings() -> None:
    """Test the credential provider used by the API client."""
    with patch("boardsync.core.config.settings", Settings(_env_file=None, asana_access_token="from-settings")):
        assert get_credential() == "from-settings"
