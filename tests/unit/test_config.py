"""Tests for configuration loading and validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from authclient.config import DEFAULT_MESSAGES, TokenStorage, get_settings


class TestAuthSettings:
    def test_defaults(self) -> None:
        settings = get_settings()
        assert settings.providers == ["local"]
        assert settings.retry.max_attempts == 3
        assert settings.retry.retryable_status_codes == frozenset({408, 429, 500, 502, 503, 504})
        assert settings.timeouts.token_refresh == 10.0
        assert settings.circuit_breaker.threshold == 5
        assert settings.rate_limiting.rules["login"].max_requests == 5
        assert settings.rate_limiting.rules["login"].window_seconds == 300
        assert settings.security.refresh_buffer == 60.0
        assert settings.allow_anonymous is False

    def test_default_provider_must_be_listed(self) -> None:
        with pytest.raises(ValidationError, match="not in providers list"):
            get_settings(providers=["local"], default_provider="google")

    def test_providers_required(self) -> None:
        with pytest.raises(ValidationError):
            get_settings(providers=[])

    def test_providers_from_comma_separated_string(self) -> None:
        settings = get_settings(
            providers="local, google", google={"client_id": "cid"}
        )
        assert settings.providers == ["local", "google"]

    def test_supabase_requires_credentials(self) -> None:
        with pytest.raises(ValidationError, match="Supabase"):
            get_settings(providers=["local", "supabase"])
        settings = get_settings(
            providers=["local", "supabase"],
            supabase={"url": "https://p.supabase.co", "anon_key": "key"},
        )
        assert settings.supabase.anon_key == "key"

    def test_google_requires_client_id(self) -> None:
        with pytest.raises(ValidationError, match="client_id"):
            get_settings(providers=["local", "google"])

    def test_local_token_storage_downgraded(self) -> None:
        with pytest.warns(UserWarning, match="not permitted"):
            settings = get_settings(security={"token_storage": "local"})
        assert settings.security.token_storage == TokenStorage.SESSION

    def test_messages_merge_with_defaults(self) -> None:
        settings = get_settings(messages={"TIMEOUT": "Slow down there."})
        assert settings.get_error_message("TIMEOUT") == "Slow down there."
        assert settings.get_error_message("RATE_LIMIT") == DEFAULT_MESSAGES["RATE_LIMIT"]

    def test_error_message_fallbacks(self) -> None:
        settings = get_settings()
        assert settings.get_error_message("NOPE", "custom") == "custom"
        assert settings.get_error_message("NOPE") == DEFAULT_MESSAGES["UNKNOWN_ERROR"]

    def test_environment_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUTH_ALLOW_ANONYMOUS", "true")
        monkeypatch.setenv("AUTH_RETRY__MAX_ATTEMPTS", "5")
        monkeypatch.setenv("AUTH_LOG_LEVEL", "debug")
        settings = get_settings()
        assert settings.allow_anonymous is True
        assert settings.retry.max_attempts == 5
        assert settings.log_level == "DEBUG"
