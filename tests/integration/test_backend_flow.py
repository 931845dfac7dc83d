"""Integration test: backend services authorization and FHIR searches."""

import asyncio
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from conftest import TOKEN_URL, FakeFhirServer
from smartfhir.core.errors import ConfigError, ResourceQueryError, TokenExchangeError
from smartfhir.core.settings import FhirSettings
from smartfhir.oauth.token_cache import STATE_EMPTY
from smartfhir.services import FhirServices

pytestmark = [pytest.mark.integration, pytest.mark.usefixtures("_fhir_env")]

JANE = {
    "resourceType": "Patient",
    "id": "42",
    "name": [{"text": "Jane Doe", "given": ["Jane"], "family": "Doe"}],
}


@pytest.fixture
async def services(
    fhir_server: FakeFhirServer, _fhir_env: None
) -> AsyncIterator[FhirServices]:
    async with FhirServices.from_settings(transport=fhir_server.transport) as svc:
        yield svc


class TestTokenLifecycle:
    """Token acquisition, caching and failure handling."""

    async def test_token_cached_with_server_lifetime(
        self, services: FhirServices, fhir_server: FakeFhirServer
    ) -> None:
        fhir_server.discovery = (200, {"token_endpoint": TOKEN_URL})
        fhir_server.add_page("Patient", 200, {"resourceType": "Bundle", "entry": [{"resource": JANE}]})

        before = datetime.now(UTC)
        await services.patient_search("name", "Jane")
        token = services.access_token

        assert token is not None
        assert token.access_token == "abc123"
        assert before + timedelta(seconds=599) <= token.expires_at
        assert token.expires_at <= datetime.now(UTC) + timedelta(seconds=600)
        request = fhir_server.resource_requests("Patient")[0]
        assert request.headers["Authorization"] == "Bearer abc123"

    async def test_exchange_failure_leaves_cache_empty(
        self, services: FhirServices, fhir_server: FakeFhirServer
    ) -> None:
        fhir_server.token = (400, {"error": "invalid_client"})
        with pytest.raises(TokenExchangeError) as exc_info:
            await services.get_access_token()
        assert exc_info.value.status_code == 400
        assert services.token_cache.state == STATE_EMPTY
        assert not services.has_access_token()

    async def test_concurrent_callers_single_exchange(
        self, services: FhirServices, fhir_server: FakeFhirServer
    ) -> None:
        fhir_server.token_delay = 0.02
        tokens = await asyncio.gather(*(services.get_access_token() for _ in range(8)))
        assert len(fhir_server.token_requests()) == 1
        assert len(fhir_server.discovery_requests()) == 1
        assert all(t is tokens[0] for t in tokens)

    async def test_session_export_and_restore(
        self, fhir_server: FakeFhirServer, services: FhirServices
    ) -> None:
        await services.get_access_token()
        persisted = services.access_token.model_dump(mode="json")

        async with FhirServices.from_settings(transport=fhir_server.transport) as other:
            assert other.restore_access_token(persisted)
            token = await other.get_access_token()
        assert token.access_token == "abc123"
        assert len(fhir_server.token_requests()) == 1

    async def test_expired_session_token_is_replaced(
        self, fhir_server: FakeFhirServer, services: FhirServices
    ) -> None:
        stale = {
            "access_token": "old-token",
            "scope": "system/Patient.read",
            "expires_at": (datetime.now(UTC) - timedelta(seconds=1)).isoformat(),
        }
        assert services.restore_access_token(stale) is False
        token = await services.get_access_token()
        assert token.access_token == "abc123"
        assert len(fhir_server.token_requests()) == 1

    @pytest.mark.parametrize(
        "persisted",
        [{"scope": "system/Patient.read"}, {"access_token": "x", "expires_at": "soon"}],
    )
    async def test_malformed_session_token_is_ignored(
        self, services: FhirServices, persisted: dict
    ) -> None:
        assert services.restore_access_token(persisted) is False
        assert not services.has_access_token()


class TestSearches:
    """Searches through the facade."""

    async def test_patient_summary(
        self, services: FhirServices, fhir_server: FakeFhirServer
    ) -> None:
        fhir_server.add_page("Patient", 200, {"resourceType": "Bundle", "entry": [{"resource": JANE}]})
        records = await services.patient_search("name", "Jane")
        summary = records[0].summary
        assert summary.id == "42"
        assert summary.name == "Jane Doe"
        assert summary.given == "Jane"
        assert summary.family == "Doe"

    async def test_retry_after_401_mints_new_token(
        self, services: FhirServices, fhir_server: FakeFhirServer
    ) -> None:
        fhir_server.add_page("Encounter", 401, {"resourceType": "OperationOutcome"})
        fhir_server.add_page("Encounter", 200, {"resourceType": "Bundle"})
        with pytest.raises(ResourceQueryError):
            await services.encounter_search("42")
        assert await services.encounter_search("42") == []
        assert len(fhir_server.token_requests()) == 2


class TestStartup:
    """Startup configuration failures."""

    def test_missing_key_file_is_fatal(self, tmp_path: Path) -> None:
        settings = FhirSettings(private_keys_file=str(tmp_path / "missing.json"))
        with pytest.raises(ConfigError):
            FhirServices.from_settings(settings)
