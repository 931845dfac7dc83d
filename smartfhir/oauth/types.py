"""Type definitions for SMART discovery and token operations."""

from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_EXPIRES_IN = 300
SAFE_TOKEN_PREFIX = 6


class AuthServerConfig(BaseModel):
    """Subset of a .well-known/smart-configuration document."""

    model_config = ConfigDict(extra="ignore")

    token_endpoint: str
    authorization_endpoint: str | None = None
    jwks_uri: str | None = None
    grant_types_supported: list[str] | None = None
    token_endpoint_auth_methods_supported: list[str] | None = None
    token_endpoint_auth_signing_alg_values_supported: list[str] | None = None
    scopes_supported: list[str] | None = None


class TokenResponse(BaseModel):
    """OAuth token endpoint response."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(min_length=1)
    token_type: str = "Bearer"
    expires_in: int | None = None
    scope: str | None = None


class AccessToken(BaseModel):
    """A bearer token with its computed expiry instant."""

    access_token: str
    token_type: str = "Bearer"
    scope: str = ""
    expires_at: datetime

    @field_validator("expires_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @classmethod
    def from_response(
        cls, response: TokenResponse, requested_scope: str, now: datetime
    ) -> "AccessToken":
        """Compute ``expires_at`` from ``expires_in`` (default 300s)."""
        lifetime = (
            response.expires_in
            if response.expires_in is not None
            else DEFAULT_EXPIRES_IN
        )
        return cls(
            access_token=response.access_token,
            token_type=response.token_type or "Bearer",
            scope=response.scope or requested_scope,
            expires_at=now + timedelta(seconds=lifetime),
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        """True from the expiry instant onwards."""
        now = now or datetime.now(UTC)
        return now >= self.expires_at

    @property
    def authorization_header(self) -> str:
        return f"Bearer {self.access_token}"

    def safe_to_log(self) -> dict[str, Any]:
        """Copy of the token with the secret truncated."""
        data = self.model_dump(mode="json")
        data["access_token"] = f"{self.access_token[:SAFE_TOKEN_PREFIX]}..."
        return data
