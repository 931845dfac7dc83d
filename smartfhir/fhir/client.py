"""Authenticated FHIR search client."""

from collections.abc import Mapping
from typing import Any

import httpx

from smartfhir.core.errors import ResourceQueryError
from smartfhir.core.logging import get_logger
from smartfhir.fhir.summaries import (
    AllergyIntoleranceSummary,
    EncounterSummary,
    PatientSummary,
    ResourceRecord,
    summarize_allergy_intolerance,
    summarize_encounter,
    summarize_patient,
)
from smartfhir.oauth.token_cache import TokenCache
from smartfhir.oauth.token_client import AuthorizationClient
from smartfhir.oauth.types import AccessToken

logger = get_logger(__name__)

HTTP_OK = 200
NEXT_RELATION = "next"

Timeout = float | httpx.Timeout | None


def _same_origin(url: str, base_url: str) -> bool:
    target = httpx.URL(url)
    base = httpx.URL(base_url)
    return (target.scheme, target.host, target.port) == (base.scheme, base.host, base.port)


def _next_link(bundle: Mapping[str, Any]) -> str | None:
    links = bundle.get("link")
    if not isinstance(links, list):
        return None
    for link in links:
        if isinstance(link, dict) and link.get("relation") == NEXT_RELATION:
            url = link.get("url")
            return url if isinstance(url, str) else None
    return None


class ResourceClient:
    """Runs FHIR searches with a bearer token from the token cache.

    On a 401 or 403 the rejected token is invalidated before the error is
    raised, so a retry by the caller mints a fresh token. Next links are
    followed only when they share the scheme, host and port of the FHIR base
    URL, so the bearer token never leaves that origin.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        fhir_url: str,
        token_cache: TokenCache,
        authorizer: AuthorizationClient,
        scope: str,
        max_pages: int = 1,
        verbose: bool = False,
    ) -> None:
        self._http = http
        self._base_url = fhir_url.rstrip("/")
        self._token_cache = token_cache
        self._authorizer = authorizer
        self._scope = scope
        self._max_pages = max_pages
        self._verbose = verbose

    async def access_token(self) -> AccessToken:
        """Return a valid token, fetching one through the authorizer if needed."""
        return await self._token_cache.get_token(
            lambda: self._authorizer.fetch_token(self._scope)
        )

    async def _get_page(
        self,
        resource_type: str,
        url: str,
        params: Mapping[str, str] | None,
        timeout: Timeout,
    ) -> dict[str, Any]:
        token = await self.access_token()
        if self._verbose:
            logger.info(
                "smartfhir.fhir.search_request",
                url=url,
                params=dict(params or {}),
                token=token.safe_to_log()["access_token"],
            )

        request_kwargs: dict[str, Any] = {}
        if timeout is not None:
            request_kwargs["timeout"] = timeout
        try:
            response = await self._http.get(
                url,
                params=params,
                headers={
                    "Accept": "application/json",
                    "Authorization": token.authorization_header,
                },
                **request_kwargs,
            )
        except httpx.HTTPError as exc:
            raise ResourceQueryError(
                resource_type, f"{resource_type} search call failed: {exc!r}"
            ) from exc

        if self._verbose:
            logger.info(
                "smartfhir.fhir.search_response",
                resource_type=resource_type,
                status_code=response.status_code,
            )
        if response.status_code != HTTP_OK:
            error = ResourceQueryError(
                resource_type,
                f"{resource_type} search call failed with status "
                f"{response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
            if error.auth_failure:
                logger.warning(
                    "smartfhir.fhir.token_rejected",
                    resource_type=resource_type,
                    status_code=response.status_code,
                )
                self._token_cache.invalidate(token)
            raise error

        try:
            bundle = response.json()
        except ValueError as exc:
            raise ResourceQueryError(
                resource_type,
                f"{resource_type} search returned a body that is not JSON",
                status_code=response.status_code,
                body=response.text,
            ) from exc
        if not isinstance(bundle, dict):
            raise ResourceQueryError(
                resource_type,
                f"{resource_type} search returned a body that is not a Bundle",
                status_code=response.status_code,
                body=response.text,
            )
        return bundle

    def _resources(
        self, resource_type: str, bundle: Mapping[str, Any]
    ) -> list[dict[str, Any]]:
        entries = bundle.get("entry") or []
        if not isinstance(entries, list):
            return []
        resources = []
        for entry in entries:
            resource = entry.get("resource") if isinstance(entry, dict) else None
            if not isinstance(resource, dict):
                logger.warning(
                    "smartfhir.fhir.entry_without_resource",
                    resource_type=resource_type,
                )
                continue
            found_type = resource.get("resourceType")
            if found_type is not None and found_type != resource_type:
                logger.warning(
                    "smartfhir.fhir.entry_skipped",
                    resource_type=resource_type,
                    found_type=found_type,
                )
                continue
            resources.append(resource)
        return resources

    async def search(
        self,
        resource_type: str,
        params: Mapping[str, str] | None = None,
        *,
        timeout: Timeout = None,
    ) -> list[dict[str, Any]]:
        """Search a resource type and return the raw resources of the Bundle."""
        url: str | None = f"{self._base_url}/{resource_type}"
        page_params = params
        resources: list[dict[str, Any]] = []
        pages = 0
        while url is not None and pages < self._max_pages:
            bundle = await self._get_page(resource_type, url, page_params, timeout)
            resources.extend(self._resources(resource_type, bundle))
            pages += 1
            url = _next_link(bundle)
            page_params = None
            if url is not None and not _same_origin(url, self._base_url):
                logger.warning(
                    "smartfhir.fhir.next_link_foreign_origin",
                    resource_type=resource_type,
                    url=url,
                )
                url = None

        logger.debug(
            "smartfhir.fhir.search_done",
            resource_type=resource_type,
            pages=pages,
            count=len(resources),
        )
        return resources

    async def patient_search(
        self, search_by: str, term: str, *, timeout: Timeout = None
    ) -> list[ResourceRecord[PatientSummary]]:
        """Search patients, e.g. ``patient_search("name", "Smith")``."""
        resources = await self.search("Patient", {search_by: term}, timeout=timeout)
        return [
            ResourceRecord[PatientSummary](raw=r, summary=summarize_patient(r))
            for r in resources
        ]

    async def allergy_intolerance_search(
        self, patient_id: str, *, timeout: Timeout = None
    ) -> list[ResourceRecord[AllergyIntoleranceSummary]]:
        resources = await self.search(
            "AllergyIntolerance", {"patient": patient_id}, timeout=timeout
        )
        return [
            ResourceRecord[AllergyIntoleranceSummary](
                raw=r, summary=summarize_allergy_intolerance(r, patient_id)
            )
            for r in resources
        ]

    async def encounter_search(
        self, patient_id: str, *, timeout: Timeout = None
    ) -> list[ResourceRecord[EncounterSummary]]:
        resources = await self.search(
            "Encounter", {"patient": patient_id}, timeout=timeout
        )
        return [
            ResourceRecord[EncounterSummary](
                raw=r, summary=summarize_encounter(r, patient_id)
            )
            for r in resources
        ]
