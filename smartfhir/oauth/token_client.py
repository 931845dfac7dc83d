"""Client-credentials token exchange with a JWT-bearer client assertion.

See https://hl7.org/fhir/uv/bulkdata/authorization/index.html for the
protocol. A full exchange makes two outbound calls: discovery and the token
POST. Both are safe to repeat.
"""

from collections.abc import Callable
from datetime import UTC, datetime

import httpx
from pydantic import ValidationError

from smartfhir.core.errors import TokenExchangeError
from smartfhir.core.logging import get_logger
from smartfhir.crypto.assertion import AssertionMinter
from smartfhir.crypto.keys import KeyStore
from smartfhir.oauth.discovery import discover
from smartfhir.oauth.types import AccessToken, AuthServerConfig, TokenResponse

logger = get_logger(__name__)

GRANT_TYPE = "client_credentials"
CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def build_token_request(scope: str, assertion: str) -> dict[str, str]:
    """Form body for the client-credentials token request."""
    return {
        "scope": scope,
        "grant_type": GRANT_TYPE,
        "client_assertion_type": CLIENT_ASSERTION_TYPE,
        "client_assertion": assertion,
    }


class AuthorizationClient:
    """Obtains access tokens from the FHIR server's authorization server."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        fhir_url: str,
        client_id: str,
        key_store: KeyStore,
        minter: AssertionMinter | None = None,
        cache_discovery: bool = False,
        verbose: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._http = http
        self._fhir_url = fhir_url
        self._client_id = client_id
        self._key_store = key_store
        self._minter = minter or AssertionMinter()
        self._cache_discovery = cache_discovery
        self._verbose = verbose
        self._clock = clock
        self._config: AuthServerConfig | None = None

    async def discover(self) -> AuthServerConfig:
        """Discover the token endpoint, reusing it if discovery caching is on."""
        if self._cache_discovery and self._config is not None:
            return self._config
        config = await discover(self._http, self._fhir_url, verbose=self._verbose)
        if self._cache_discovery:
            self._config = config
        return config

    async def exchange(
        self, scope: str, config: AuthServerConfig, assertion: str
    ) -> AccessToken:
        """POST the signed assertion to the token endpoint."""
        url = config.token_endpoint
        if self._verbose:
            logger.info("smartfhir.oauth.token_request", url=url, scope=scope)
        try:
            response = await self._http.post(
                url,
                data=build_token_request(scope, assertion),
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise TokenExchangeError(
                f"Token endpoint call failed: {exc!r}", details={"url": url}
            ) from exc

        if self._verbose:
            logger.info(
                "smartfhir.oauth.token_response",
                url=url,
                status_code=response.status_code,
            )
        if not response.is_success:
            raise TokenExchangeError(
                f"Token endpoint call failed with status {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            parsed = TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise TokenExchangeError(
                "Token endpoint returned a malformed token response",
                status_code=response.status_code,
                body=response.text,
            ) from exc

        token = AccessToken.from_response(parsed, scope, self._clock())
        logger.debug("smartfhir.oauth.token_acquired", **token.safe_to_log())
        return token

    async def fetch_token(self, scope: str) -> AccessToken:
        """Run the full pipeline: discover, mint an assertion, exchange it."""
        config = await self.discover()
        signing_key = self._key_store.signing_key()

        advertised = config.token_endpoint_auth_signing_alg_values_supported
        if advertised and signing_key.algorithm not in advertised:
            logger.warning(
                "smartfhir.oauth.algorithm_not_advertised",
                alg=signing_key.algorithm,
                supported=advertised,
            )

        assertion, jti = self._minter.mint(
            self._client_id, config.token_endpoint, signing_key
        )
        logger.debug("smartfhir.oauth.assertion_minted", jti=jti, kid=signing_key.kid)
        return await self.exchange(scope, config, assertion)
