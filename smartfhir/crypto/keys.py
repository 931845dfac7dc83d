"""Private JWKS loading, signing key selection, and key generation.

The private key set lives in a JSON file of the form ``{"keys": [...]}``.
Keys are kept in file order and the last one is used for signing, so
rotating means appending a new key and publishing its public half to the
authorization server before older keys are removed.
"""

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import jwt
import uuid_utils
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from jwt.algorithms import get_default_algorithms

from smartfhir.core.errors import ConfigError
from smartfhir.core.logging import get_logger
from smartfhir.crypto.types import KeySet, SigningKey

logger = get_logger(__name__)

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537
DEFAULT_ALGORITHM = "RS384"

_RSA_ALGORITHMS = frozenset({"RS256", "RS384", "RS512", "PS256", "PS384", "PS512"})
_EC_CURVES: dict[str, ec.EllipticCurve] = {
    "ES256": ec.SECP256R1(),
    "ES384": ec.SECP384R1(),
    "ES512": ec.SECP521R1(),
}

KeySource = str | Path | Mapping[str, Any]


def _read_jwks(path: Path) -> Any:
    try:
        with path.open(encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(
            f"Private key set file not found: {path}", {"path": str(path)}
        ) from exc
    except OSError as exc:
        raise ConfigError(
            f"Private key set file unreadable: {path}", {"path": str(path)}
        ) from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(
            f"Private key set file is not valid JSON: {path}", {"path": str(path)}
        ) from exc


def _parse_key(raw: Any, index: int) -> SigningKey:
    """Convert one private JWK dict into a SigningKey."""
    if not isinstance(raw, Mapping):
        raise ConfigError(f"JWK #{index} is not an object", {"index": index})
    if "d" not in raw:
        raise ConfigError(
            f"JWK #{index} is a public key; a private signing key is required",
            {"index": index, "kid": raw.get("kid")},
        )
    try:
        jwk = jwt.PyJWK(dict(raw))
    except (jwt.PyJWTError, ValueError, TypeError, KeyError) as exc:
        raise ConfigError(
            f"JWK #{index} could not be parsed: {exc}", {"index": index}
        ) from exc
    if not jwk.key_id:
        raise ConfigError(f"JWK #{index} has no kid", {"index": index})
    return SigningKey(kid=jwk.key_id, algorithm=jwk.algorithm_name, key=jwk.key)


def load_key_set(source: KeySource) -> KeySet:
    """Load a private JWKS from a file path or an already-parsed mapping."""
    data = source if isinstance(source, Mapping) else _read_jwks(Path(source))
    if not isinstance(data, Mapping):
        raise ConfigError("Private key set must be a JSON object")
    raw_keys = data.get("keys")
    if not isinstance(raw_keys, list):
        raise ConfigError("Private key set has no 'keys' list")
    if not raw_keys:
        raise ConfigError("No JWK signing key was found")

    keys = tuple(_parse_key(raw, i) for i, raw in enumerate(raw_keys))
    return KeySet(keys=keys)


def select_signing_key(key_set: KeySet) -> SigningKey:
    """Pick the key used to sign assertions: always the newest one."""
    return key_set.newest()


def public_jwk(signing_key: SigningKey) -> dict[str, Any]:
    """Return the public half of a signing key as a JWK dict."""
    algorithm = get_default_algorithms()[signing_key.algorithm]
    entry = algorithm.to_jwk(signing_key.key.public_key(), as_dict=True)
    entry.update({"kid": signing_key.kid, "alg": signing_key.algorithm, "use": "sig"})
    return entry


def public_jwks(key_set: KeySet) -> dict[str, list[dict[str, Any]]]:
    """Build the public JWKS to register with the authorization server."""
    return {"keys": [public_jwk(k) for k in key_set.keys]}


def generate_signing_jwk(algorithm: str = DEFAULT_ALGORITHM) -> dict[str, Any]:
    """Generate a new private JWK with a UUIDv7 kid."""
    if algorithm in _RSA_ALGORITHMS:
        private_key: Any = rsa.generate_private_key(
            public_exponent=RSA_PUBLIC_EXPONENT,
            key_size=RSA_KEY_SIZE,
        )
    elif algorithm in _EC_CURVES:
        private_key = ec.generate_private_key(_EC_CURVES[algorithm])
    else:
        raise ConfigError(f"Unsupported signing algorithm: {algorithm}")

    entry = get_default_algorithms()[algorithm].to_jwk(private_key, as_dict=True)
    entry.update({"kid": str(uuid_utils.uuid7()), "alg": algorithm, "use": "sig"})
    return entry


def append_signing_key(
    path: str | Path, algorithm: str = DEFAULT_ALGORITHM
) -> dict[str, Any]:
    """Append a freshly generated key to a private JWKS file.

    The file is created when missing. Returns the new key's public JWK.
    """
    path = Path(path)
    data: dict[str, Any] = {"keys": []}
    if path.exists():
        data = _read_jwks(path)
        if not isinstance(data, dict) or not isinstance(data.get("keys"), list):
            raise ConfigError(f"Private key set file is malformed: {path}")

    entry = generate_signing_jwk(algorithm)
    data["keys"].append(entry)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    added = load_key_set(data).newest()
    logger.info(
        "smartfhir.keys.key_appended",
        path=str(path),
        kid=added.kid,
        alg=added.algorithm,
        key_count=len(data["keys"]),
    )
    return public_jwk(added)


class KeyStore:
    """Holds the private key set loaded from a credential source."""

    def __init__(self, source: KeySource) -> None:
        self._source = source
        self._key_set: KeySet | None = None

    @property
    def key_set(self) -> KeySet:
        """The loaded key set; read from the source on first access."""
        if self._key_set is None:
            self.reload()
        assert self._key_set is not None
        return self._key_set

    def reload(self) -> KeySet:
        """Re-read the key set from its source."""
        self._key_set = load_key_set(self._source)
        logger.debug(
            "smartfhir.keys.loaded",
            key_count=len(self._key_set.keys),
            newest_kid=self._key_set.newest().kid,
        )
        return self._key_set

    def signing_key(self) -> SigningKey:
        """Return the key to sign the next assertion with."""
        return select_signing_key(self.key_set)
