"""
Test configuration and fixtures for pytest.

This module provides shared fixtures used across all tests:
- Signed-in users and Firebase ID tokens signed with a test RSA key
- API0 candidate payloads in their flat wire format
- httpx.MockTransport recorders for the intent service and backends
- FastAPI TestClient with an isolated session manager
"""

import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient
from jose import jwk, jwt

from app.core import security
from app.core.config import settings
from app.core.security import FirebaseKeySet
from app.environments.api0 import API0Client
from app.main import app
from app.monitoring import command_monitor
from app.routers.command import get_session_manager
from app.schemas.user import SignedInUser
from app.services.command_session import CommandSessionManager
from app.services.cv_command_service import CVCommandService


API0_URL = "http://api0.test"
BACKEND_URL = "http://backend.test/api"


# ---------------------------------------------------------------------------
# USERS AND TOKENS
# ---------------------------------------------------------------------------

TEST_PROJECT_ID = "cvenom-test"
TEST_KEY_ID = "test-key-1"


def generate_rsa_pem() -> bytes:
    """Fresh RSA private key in PEM form."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return private_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


def public_jwk(private_pem: bytes, kid: str) -> Dict[str, Any]:
    """Public half of a key, as Google publishes it in its JWK set."""
    key = jwk.construct(private_pem, "RS256").public_key().to_dict()
    key.update({"kid": kid, "use": "sig"})
    return key


# Stands in for Google's signing key
TEST_PRIVATE_PEM = generate_rsa_pem()
TEST_JWKS = {"keys": [public_jwk(TEST_PRIVATE_PEM, TEST_KEY_ID)]}


def make_id_token(
    uid: str = "user-123",
    key: bytes = TEST_PRIVATE_PEM,
    kid: str = TEST_KEY_ID,
    **claims: Any,
) -> str:
    """
    Firebase-shaped ID token signed with the test key.

    Claims passed as None are left out of the token.
    """
    payload = {
        "iss": f"https://securetoken.google.com/{TEST_PROJECT_ID}",
        "aud": TEST_PROJECT_ID,
        "sub": uid,
        "user_id": uid,
        "email": f"{uid}@example.com",
        "iat": 1700000000,
        "exp": 4102444800,
    }
    payload.update(claims)
    payload = {k: v for k, v in payload.items() if v is not None}
    return jwt.encode(payload, key, algorithm="RS256", headers={"kid": kid})


def jwks_transport(jwks: Optional[Dict[str, Any]] = None, status_code: int = 200) -> "RecordingTransport":
    """Google's JWK endpoint, serving `jwks` (the test key by default)."""
    return RecordingTransport(lambda r: httpx.Response(
        status_code,
        json=jwks if jwks is not None else TEST_JWKS,
        headers={"cache-control": "public, max-age=3600"},
    ))


@pytest.fixture(autouse=True)
def firebase_project(monkeypatch):
    """Trust the test key for the test project, without network access."""
    monkeypatch.setattr(settings, "FIREBASE_PROJECT_ID", TEST_PROJECT_ID)
    keys = FirebaseKeySet("https://keys.test/jwks", transport=jwks_transport().mock)
    monkeypatch.setattr(security, "firebase_keys", keys)
    return keys


@pytest.fixture
def signed_in_user() -> SignedInUser:
    return SignedInUser(uid="user-123", email="user-123@example.com", id_token="id-token-abc")


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_id_token()}"}


# ---------------------------------------------------------------------------
# API0 PAYLOADS
# ---------------------------------------------------------------------------

def make_candidate(
    intent: int = 0,
    endpoint_id: str = "generate_cv",
    endpoint_name: str = "Generate CV",
    api_group_id: str = "cv_operations",
    verb: str = "POST",
    path: str = "/generate",
    percent: float = 100,
    missing_required: Optional[List[str]] = None,
    parameters: Optional[List[Dict[str, Any]]] = None,
    user_prompt: str = "",
    json_output: str = "",
    conversation_id: Optional[str] = "conv-1",
) -> Dict[str, Any]:
    """One analysis candidate as API0 sends it (flat fields)."""
    return {
        "intent": intent,
        "api_group_id": api_group_id,
        "api_group_name": api_group_id.replace("_", " ").title(),
        "endpoint_id": endpoint_id,
        "endpoint_name": endpoint_name,
        "endpoint_description": f"{endpoint_name} endpoint",
        "base": BACKEND_URL,
        "path": path,
        "verb": verb,
        "essential_path": path,
        "matching_info": {
            "completion_percentage": percent,
            "missing_required_fields": missing_required or [],
            "missing_optional_fields": [],
        },
        "parameters": parameters or [],
        "user_prompt": user_prompt,
        "json_output": json_output,
        "conversation_id": conversation_id,
    }


def param(name: str, value: Optional[str] = None, semantic: Optional[str] = None) -> Dict[str, Any]:
    return {"name": name, "description": "", "value": value, "semantic_value": semantic}


# ---------------------------------------------------------------------------
# HTTP MOCKS
# ---------------------------------------------------------------------------

class RecordingTransport:
    """
    Route requests to a handler and remember them.

    Usage:
        transport = RecordingTransport(handler)
        client = API0Client(API0_URL, "key", transport=transport.mock)
        ...
        assert transport.paths == ["/api/analyze/start", "/api/analyze"]
    """

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: List[httpx.Request] = []
        self._handler = handler
        self.mock = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._handler(request)

    @property
    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]

    def json_bodies(self, path: str) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.url.path == path]

    def to_host(self, host: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.host == host]


def api0_handler(
    candidates: List[Dict[str, Any]],
    backend: Optional[Callable[[httpx.Request], httpx.Response]] = None,
    conversation_id: str = "conv-1",
) -> Callable[[httpx.Request], httpx.Response]:
    """Intent service that always resolves to `candidates`, plus an optional backend."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == API0Client.START_PATH:
            return httpx.Response(200, json={"conversation_id": conversation_id, "success": True})
        if request.url.path == API0Client.ANALYZE_PATH:
            return httpx.Response(200, json=candidates)
        if backend is not None:
            return backend(request)
        return httpx.Response(404, text="not found")

    return handler


def make_service(
    transport: RecordingTransport,
    user: Optional[SignedInUser] = None,
) -> CVCommandService:
    client = API0Client(API0_URL, "api0-key", transport=transport.mock)
    return CVCommandService(client, user=user)


# ---------------------------------------------------------------------------
# APP FIXTURES
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def reset_monitor():
    """Metrics are process-wide; start every test from zero."""
    command_monitor.reset()
    yield
    command_monitor.reset()


@pytest.fixture
def session_manager_factory():
    """
    Build a CommandSessionManager whose services talk to a mock transport
    and install it into the app.
    """
    def factory(transport: RecordingTransport) -> CommandSessionManager:
        manager = CommandSessionManager(
            ttl_seconds=60,
            service_factory=lambda user: make_service(transport, user),
        )
        app.dependency_overrides[get_session_manager] = lambda: manager
        return manager

    yield factory
    app.dependency_overrides.clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)
