"""Type definitions for signing keys and client assertions."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SigningKey(BaseModel):
    """A private key loaded from a JWK, ready for JWT signing."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kid: str
    algorithm: str
    key: Any = Field(repr=False)


class KeySet(BaseModel):
    """Ordered signing keys; the last entry is the newest."""

    model_config = ConfigDict(frozen=True)

    keys: tuple[SigningKey, ...] = Field(min_length=1)

    def newest(self) -> SigningKey:
        """Return the most recently added key."""
        return self.keys[-1]


class AssertionClaims(BaseModel):
    """Claims of a SMART backend services authentication JWT."""

    iss: str
    sub: str
    aud: str
    exp: int
    jti: str
