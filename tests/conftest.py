"""Shared test fixtures for smartfhir."""

import asyncio
import json
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest

from smartfhir.crypto.keys import KeyStore, generate_signing_jwk

FHIR_URL = "https://fhir.example/r4"
TOKEN_URL = "https://auth.example/token"
CLIENT_ID = "backend-client"


def _response(status: int, body: Any) -> httpx.Response:
    if isinstance(body, dict | list):
        return httpx.Response(status, json=body)
    return httpx.Response(status, text=body or "")


class FakeFhirServer:
    """In-process FHIR + authorization server behind httpx.MockTransport.

    Resource pages are queued per path and served in order; the last page
    is repeated once the queue runs dry.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.discovery: tuple[int, Any] = (
            200,
            {
                "token_endpoint": TOKEN_URL,
                "authorization_endpoint": "https://auth.example/authorize",
                "jwks_uri": "https://auth.example/jwks",
            },
        )
        self.token: tuple[int, Any] = (200, {"access_token": "abc123", "expires_in": 600})
        self.token_delay = 0.0
        self.pages: dict[str, list[tuple[int, Any]]] = {}

    def add_page(self, resource_type: str, status: int, body: Any) -> None:
        self.pages.setdefault(f"/r4/{resource_type}", []).append((status, body))

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/.well-known/smart-configuration"):
            return _response(*self.discovery)
        if str(request.url) == TOKEN_URL:
            if self.token_delay:
                await asyncio.sleep(self.token_delay)
            return _response(*self.token)
        queue = self.pages.get(request.url.path)
        if not queue:
            return httpx.Response(404, json={"resourceType": "OperationOutcome"})
        page = queue.pop(0) if len(queue) > 1 else queue[0]
        return _response(*page)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def token_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == TOKEN_URL]

    def discovery_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("smart-configuration")]

    def resource_requests(self, resource_type: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == f"/r4/{resource_type}"]

    @staticmethod
    def form(request: httpx.Request) -> dict[str, str]:
        parsed = parse_qs(request.content.decode())
        return {k: v[0] for k, v in parsed.items()}


@pytest.fixture(scope="session")
def rsa_jwk() -> dict[str, Any]:
    """A private RS384 JWK, generated once per test session."""
    return generate_signing_jwk("RS384")


@pytest.fixture
def jwks_file(tmp_path: Path, rsa_jwk: dict[str, Any]) -> Path:
    path = tmp_path / "auth_private_jwks.json"
    path.write_text(json.dumps({"keys": [rsa_jwk]}), encoding="utf-8")
    return path


@pytest.fixture
def key_store(jwks_file: Path) -> KeyStore:
    return KeyStore(jwks_file)


@pytest.fixture
def fhir_server() -> FakeFhirServer:
    return FakeFhirServer()


@pytest.fixture
def _fhir_env(monkeypatch: pytest.MonkeyPatch, jwks_file: Path) -> None:
    """Environment as the surrounding application would provide it."""
    monkeypatch.setenv("FHIR_URL", FHIR_URL)
    monkeypatch.setenv("SMART_SYS_APP_CLIENT_ID", CLIENT_ID)
    monkeypatch.setenv("SMART_SYS_APP_PRIVATE_KEYS_FILE", str(jwks_file))
