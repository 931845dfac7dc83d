"""Facade wiring the key store, token pipeline and FHIR searches together."""

from collections.abc import Mapping
from types import TracebackType
from typing import Any

import httpx
from pydantic import ValidationError

from smartfhir.core.logging import get_logger
from smartfhir.core.settings import FhirSettings
from smartfhir.crypto.assertion import AssertionMinter
from smartfhir.crypto.keys import KeyStore
from smartfhir.fhir.client import ResourceClient, Timeout
from smartfhir.fhir.summaries import (
    AllergyIntoleranceSummary,
    EncounterSummary,
    PatientSummary,
    ResourceRecord,
)
from smartfhir.oauth.token_cache import TokenCache
from smartfhir.oauth.token_client import AuthorizationClient
from smartfhir.oauth.types import AccessToken

logger = get_logger(__name__)


class FhirServices:
    """Access to the FHIR server on behalf of one backend client.

    The access token lives in memory only. Callers that need it across
    processes or requests export it with :attr:`access_token` and hand it
    back with :meth:`restore_access_token`.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        settings: FhirSettings,
        key_store: KeyStore,
        token_cache: TokenCache | None = None,
        minter: AssertionMinter | None = None,
    ) -> None:
        self._http = http
        self.settings = settings
        self.token_cache = token_cache or TokenCache()
        self.authorizer = AuthorizationClient(
            http,
            fhir_url=settings.base_url,
            client_id=settings.client_id,
            key_store=key_store,
            minter=minter,
            cache_discovery=settings.cache_discovery,
            verbose=settings.verbose,
        )
        self.resources = ResourceClient(
            http,
            fhir_url=settings.base_url,
            token_cache=self.token_cache,
            authorizer=self.authorizer,
            scope=settings.scope,
            max_pages=settings.max_pages,
            verbose=settings.verbose,
        )

    @classmethod
    def from_settings(
        cls,
        settings: FhirSettings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "FhirServices":
        """Build the services, loading the signing keys up front.

        Raises:
            ConfigError: The private key set is missing, malformed or empty.
        """
        settings = settings or FhirSettings()
        key_store = KeyStore(settings.private_keys_file)
        key_store.reload()
        http = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.http_timeout),
            transport=transport,
        )
        return cls(http, settings=settings, key_store=key_store)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "FhirServices":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    @property
    def access_token(self) -> AccessToken | None:
        """The cached token, for the caller to persist."""
        return self.token_cache.peek()

    def has_access_token(self) -> bool:
        return self.token_cache.peek() is not None

    def restore_access_token(
        self, token: AccessToken | Mapping[str, Any] | None
    ) -> bool:
        """Load a token persisted by the caller.

        Expired or malformed tokens are dropped and False is returned.
        """
        if token is None:
            return False
        if not isinstance(token, AccessToken):
            try:
                token = AccessToken.model_validate(token)
            except ValidationError as exc:
                logger.warning(
                    "smartfhir.services.restore_rejected", errors=exc.error_count()
                )
                return False
        return self.token_cache.restore(token)

    async def get_access_token(self) -> AccessToken:
        return await self.resources.access_token()

    async def patient_search(
        self, search_by: str, term: str, *, timeout: Timeout = None
    ) -> list[ResourceRecord[PatientSummary]]:
        return await self.resources.patient_search(search_by, term, timeout=timeout)

    async def allergy_intolerance_search(
        self, patient_id: str, *, timeout: Timeout = None
    ) -> list[ResourceRecord[AllergyIntoleranceSummary]]:
        return await self.resources.allergy_intolerance_search(
            patient_id, timeout=timeout
        )

    async def encounter_search(
        self, patient_id: str, *, timeout: Timeout = None
    ) -> list[ResourceRecord[EncounterSummary]]:
        return await self.resources.encounter_search(patient_id, timeout=timeout)
