#!/usr/bin/env python3
"""
Append a new signing key to the private JWKS file and print the public JWKS.

The newest key is the one used to sign client assertions, so register the
printed public JWKS with the authorization server before the new key is used.

Usage:
    ./add_signing_key.py                                  # Use SMART_SYS_APP_PRIVATE_KEYS_FILE
    ./add_signing_key.py --file config/auth_private_jwks.json
    ./add_signing_key.py --alg ES384
"""

import argparse
import json
import sys

from smartfhir.core.errors import ConfigError
from smartfhir.core.logging import configure_logging
from smartfhir.core.settings import FhirSettings, LogSettings
from smartfhir.crypto.keys import (
    DEFAULT_ALGORITHM,
    append_signing_key,
    load_key_set,
    public_jwks,
)


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--file", help="Private JWKS file to append to")
    parser.add_argument("--alg", default=DEFAULT_ALGORITHM, help="Signing algorithm")
    args = parser.parse_args()
    configure_logging(LogSettings(level="WARNING"), force=True)

    path = args.file or FhirSettings().private_keys_file
    try:
        append_signing_key(path, args.alg)
        key_set = load_key_set(path)
    except ConfigError as exc:
        print(f"FAILED: {exc.message}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(public_jwks(key_set), indent=2))


if __name__ == "__main__":
    main()
