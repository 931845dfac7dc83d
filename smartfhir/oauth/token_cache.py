"""In-memory access token cache with expiry-based refresh."""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from smartfhir.core.logging import get_logger
from smartfhir.oauth.types import AccessToken

logger = get_logger(__name__)

STATE_EMPTY = "empty"
STATE_VALID = "valid"

TokenFetcher = Callable[[], Awaitable[AccessToken]]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TokenCache:
    """Holds at most one access token.

    The cache is either empty or holds a token. ``get_token`` returns the
    held token while ``now < expires_at`` and otherwise fetches a new one.
    Check, fetch and store run under one lock, so concurrent callers that
    find the cache empty share a single fetch.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._token: AccessToken | None = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> str:
        return STATE_EMPTY if self._token is None else STATE_VALID

    def peek(self) -> AccessToken | None:
        """Return the held token without checking expiry or fetching."""
        return self._token

    def _valid_token(self) -> AccessToken | None:
        token = self._token
        if token is None:
            return None
        if token.is_expired(self._clock()):
            logger.debug(
                "smartfhir.token_cache.expired",
                expired_at=token.expires_at.isoformat(),
            )
            self._token = None
            return None
        return token

    async def get_token(self, fetch: TokenFetcher) -> AccessToken:
        """Return a valid token, fetching a new one on a miss."""
        token = self._valid_token()
        if token is not None:
            return token

        async with self._lock:
            token = self._valid_token()
            if token is not None:
                return token
            token = await fetch()
            self._token = token
            logger.debug("smartfhir.token_cache.stored", **token.safe_to_log())
            return token

    def invalidate(self, token: AccessToken | None = None) -> None:
        """Drop the held token so the next ``get_token`` fetches a new one.

        When ``token`` is given, the cache is cleared only if it still holds
        that token; a newer token stored by another caller is kept.
        """
        if token is not None and self._token is not token:
            return
        if self._token is not None:
            logger.debug("smartfhir.token_cache.invalidated")
        self._token = None

    def restore(self, token: AccessToken) -> bool:
        """Reinject a previously exported token.

        Returns False, leaving the cache empty, when the token has already
        expired.
        """
        if token.is_expired(self._clock()):
            logger.debug("smartfhir.token_cache.restore_skipped_expired")
            self._token = None
            return False
        self._token = token
        logger.debug("smartfhir.token_cache.restored", **token.safe_to_log())
        return True
