"""Client assertion (authentication JWT) minting for SMART backend services."""

import secrets
from collections.abc import Callable
from datetime import UTC, datetime

import jwt

from smartfhir.core.errors import SigningError
from smartfhir.crypto.types import AssertionClaims, SigningKey

ASSERTION_TTL_SECONDS = 300
JTI_BYTES = 16


def generate_jti() -> str:
    """Generate a cryptographically random URL-safe nonce."""
    return secrets.token_urlsafe(JTI_BYTES)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AssertionMinter:
    """Builds and signs short-lived client assertions.

    The ``jti`` is unique per assertion; the authorization server is the
    party that rejects a reused one. Nothing here remembers issued values.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = _utcnow,
        nonce_factory: Callable[[], str] = generate_jti,
    ) -> None:
        self._clock = clock
        self._nonce_factory = nonce_factory

    def build_claims(self, issuer: str, audience: str) -> AssertionClaims:
        """Build fresh claims; ``iss`` and ``sub`` are both the client id."""
        now = self._clock()
        return AssertionClaims(
            iss=issuer,
            sub=issuer,
            aud=audience,
            exp=int(now.timestamp()) + ASSERTION_TTL_SECONDS,
            jti=self._nonce_factory(),
        )

    def mint(
        self, issuer: str, audience: str, signing_key: SigningKey
    ) -> tuple[str, str]:
        """Sign a new assertion. Returns ``(assertion, jti)``."""
        claims = self.build_claims(issuer, audience)
        try:
            token = jwt.encode(
                claims.model_dump(),
                signing_key.key,
                algorithm=signing_key.algorithm,
                headers={"kid": signing_key.kid, "typ": "JWT"},
            )
        except (jwt.PyJWTError, ValueError, TypeError, NotImplementedError) as exc:
            raise SigningError(
                f"Could not sign client assertion with key {signing_key.kid}: {exc}",
                {"kid": signing_key.kid, "alg": signing_key.algorithm},
            ) from exc
        return token, claims.jti
