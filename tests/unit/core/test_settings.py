"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from smartfhir.core.settings import (
    DEFAULT_PRIVATE_KEYS_FILE,
    DEFAULT_SCOPE,
    FhirSettings,
    LogSettings,
)


class TestFhirSettings:
    """Tests for FHIR client settings."""

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FHIR_URL", "https://fhir.example/r4/")
        monkeypatch.setenv("SMART_SYS_APP_CLIENT_ID", "client-1")
        monkeypatch.setenv("SMART_SYS_APP_PRIVATE_KEYS_FILE", "/etc/keys.json")
        monkeypatch.setenv("SMART_SYS_APP_VERBOSE", "true")
        settings = FhirSettings()
        assert settings.fhir_url == "https://fhir.example/r4/"
        assert settings.base_url == "https://fhir.example/r4"
        assert settings.client_id == "client-1"
        assert settings.private_keys_file == "/etc/keys.json"
        assert settings.verbose is True

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("SMART_SYS_APP_PRIVATE_KEYS_FILE", raising=False)
        monkeypatch.delenv("SMART_SYS_APP_VERBOSE", raising=False)
        settings = FhirSettings()
        assert settings.private_keys_file == DEFAULT_PRIVATE_KEYS_FILE
        assert settings.scope == DEFAULT_SCOPE
        assert settings.max_pages == 1
        assert settings.verbose is False
        assert settings.cache_discovery is False

    def test_constructor_arguments(self) -> None:
        settings = FhirSettings(fhir_url="https://x/fhir", client_id="c", http_timeout=2.5)
        assert settings.base_url == "https://x/fhir"
        assert settings.http_timeout == 2.5

    def test_max_pages_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            FhirSettings(max_pages=0)

    def test_default_scope_is_system_read(self) -> None:
        scopes = DEFAULT_SCOPE.split()
        assert "system/Patient.read" in scopes
        assert "system/Encounter.read" in scopes
        assert all(s.startswith("system/") and s.endswith(".read") for s in scopes)


class TestLogSettings:
    """Tests for logging settings."""

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SMARTFHIR_LOG_FORMAT", "json")
        monkeypatch.setenv("SMARTFHIR_LOG_LEVEL", "DEBUG")
        settings = LogSettings()
        assert settings.format == "json"
        assert settings.level == "DEBUG"
