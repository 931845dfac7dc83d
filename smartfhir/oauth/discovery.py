"""SMART configuration discovery (.well-known/smart-configuration)."""

import httpx
from pydantic import ValidationError

from smartfhir.core.errors import DiscoveryError
from smartfhir.core.logging import get_logger
from smartfhir.oauth.types import AuthServerConfig

logger = get_logger(__name__)

WELL_KNOWN_PATH = ".well-known/smart-configuration"
HTTP_OK = 200


def smart_configuration_url(base_url: str) -> str:
    """Build the discovery URL for a FHIR base URL."""
    return f"{base_url.rstrip('/')}/{WELL_KNOWN_PATH}"


async def discover(
    http: httpx.AsyncClient, base_url: str, *, verbose: bool = False
) -> AuthServerConfig:
    """Fetch the authorization server endpoints advertised by a FHIR server."""
    url = smart_configuration_url(base_url)
    try:
        response = await http.get(url, headers={"Accept": "application/json"})
    except httpx.HTTPError as exc:
        raise DiscoveryError(
            f"well-known/smart-configuration call failed: {exc!r}",
            details={"url": url},
        ) from exc

    if verbose:
        logger.info(
            "smartfhir.discovery.response",
            url=url,
            status_code=response.status_code,
            body=response.text,
        )
    if response.status_code != HTTP_OK:
        raise DiscoveryError(
            "well-known/smart-configuration call failed with status "
            f"{response.status_code}",
            status_code=response.status_code,
            body=response.text,
        )

    try:
        config = AuthServerConfig.model_validate(response.json())
    except (ValueError, ValidationError) as exc:
        raise DiscoveryError(
            "well-known/smart-configuration returned a malformed document",
            status_code=response.status_code,
            body=response.text,
        ) from exc

    logger.debug(
        "smartfhir.discovery.loaded",
        token_endpoint=config.token_endpoint,
        jwks_uri=config.jwks_uri,
    )
    return config
