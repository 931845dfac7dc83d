"""Error taxonomy for the SMART backend client.

Every failure surfaced to callers is one of the classes below. Transport
errors raised by httpx are wrapped into the error of the stage that was
running, so callers never have to catch httpx exceptions directly.
"""

from typing import Any

BODY_PREVIEW_LIMIT = 500
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403


def _preview(body: str | None) -> str | None:
    if body is None or len(body) <= BODY_PREVIEW_LIMIT:
        return body
    return body[:BODY_PREVIEW_LIMIT] + "..."


class SmartFhirError(Exception):
    """Base exception for all client errors.

    Attributes:
        message: Human-readable error message.
        details: Additional context for logging and debugging.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize to ``{error, message, details}``."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigError(SmartFhirError):
    """Signing key material is missing, malformed, or empty."""


class SigningError(SmartFhirError):
    """The client assertion could not be signed with the selected key."""


class HTTPStageError(SmartFhirError):
    """An outbound call answered with an unexpected status or body.

    ``status_code`` is None when no response was received at all
    (timeout, refused connection, DNS failure).
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        self.body = _preview(body)
        super().__init__(
            message,
            details={"status_code": status_code, "body": self.body, **(details or {})},
        )


class DiscoveryError(HTTPStageError):
    """The .well-known/smart-configuration call failed."""


class TokenExchangeError(HTTPStageError):
    """The token endpoint did not return a usable access token."""


class ResourceQueryError(HTTPStageError):
    """A FHIR resource search failed."""

    def __init__(
        self,
        resource_type: str,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        self.resource_type = resource_type
        super().__init__(
            message,
            status_code=status_code,
            body=body,
            details={"resource_type": resource_type},
        )

    @property
    def auth_failure(self) -> bool:
        """True when the server rejected the bearer token."""
        return self.status_code in (HTTP_UNAUTHORIZED, HTTP_FORBIDDEN)
