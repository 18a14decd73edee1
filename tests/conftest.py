"""Shared fixtures: RSA signing keys, ID token minting and a fake back channel.

No test talks to a real provider unless ``--integration`` is given.
"""

from __future__ import annotations

import json
import threading
from types import SimpleNamespace
from typing import Any, Callable

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from oidc_rp.core.clock import FrozenClock
from oidc_rp.core.models import ProviderConfig

NOW = 1_700_000_000
BASE_URL = "http://sso"
REALM = "test_realm"
ISSUER = f"{BASE_URL}/realms/{REALM}"
CLIENT_ID = "test_client"
REDIRECT_URI = "http://localhost:8081/callback"
KID = "key-1"


# --------------------------------------------------------------------------- #
# Integration opt-in                                                          #
# --------------------------------------------------------------------------- #
def pytest_addoption(parser):
    """Add integration option to pytest."""
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="run integration tests against a live provider",
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless explicitly requested."""
    if config.getoption("--integration"):
        return
    skip_integration = pytest.mark.skip(reason="Need --integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


# --------------------------------------------------------------------------- #
# Fake back channel                                                           #
# --------------------------------------------------------------------------- #
def make_response(status: int = 200, payload: Any = None) -> SimpleNamespace:
    """Minimal stand-in for :class:`requests.Response`."""

    def _json() -> Any:
        if payload is None:
            raise ValueError("No JSON object could be decoded")
        return payload

    resp = SimpleNamespace()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    resp.text = json.dumps(payload) if payload is not None else "<html>oops</html>"
    resp.json = _json
    return resp


class FakeHttp:
    """Records calls and replays scripted results (responses or exceptions)."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.post_results: list[Any] = []
        self.get_handlers: dict[str, Callable[[], Any]] = {}
        self.closed = False
        self._lock = threading.Lock()

    def _record(self, method: str, url: str, kwargs: dict[str, Any]) -> None:
        with self._lock:
            self.calls.append((method, url, kwargs))

    def calls_to(self, url: str) -> list[tuple[str, str, dict[str, Any]]]:
        with self._lock:
            return [c for c in self.calls if c[1] == url]

    def post(self, url: str, **kwargs: Any) -> Any:
        self._record("POST", url, kwargs)
        with self._lock:
            result = self.post_results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result

    def get(self, url: str, **kwargs: Any) -> Any:
        self._record("GET", url, kwargs)
        result = self.get_handlers[url]()
        if isinstance(result, BaseException):
            raise result
        return result

    def close(self) -> None:
        self.closed = True


# --------------------------------------------------------------------------- #
# Keys & tokens                                                               #
# --------------------------------------------------------------------------- #
def public_jwk(private_key: rsa.RSAPrivateKey, kid: str) -> dict[str, Any]:
    jwk = json.loads(RSAAlgorithm.to_jwk(private_key.public_key()))
    jwk.update({"kid": kid, "use": "sig", "alg": "RS256"})
    return jwk


@pytest.fixture(scope="session")
def signing_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rogue_key() -> rsa.RSAPrivateKey:
    """A key the provider never published."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture()
def jwks_document(signing_key) -> dict[str, Any]:
    return {"keys": [public_jwk(signing_key, KID)]}


@pytest.fixture()
def mint(signing_key) -> Callable[..., str]:
    """Return ``mint(key=..., kid=..., **claims)`` producing a signed ID token.

    Claims default to a valid token for ``test_client``; pass ``claim=None``
    to drop a claim.
    """

    def _mint(*, key: Any = None, kid: str | None = KID, alg: str = "RS256", **overrides: Any) -> str:
        claims: dict[str, Any] = {
            "iss": ISSUER,
            "aud": CLIENT_ID,
            "sub": "user1-subject",
            "iat": NOW,
            "exp": NOW + 300,
            "preferred_username": "user1",
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        headers = {"kid": kid} if kid is not None else {}
        return jwt.encode(claims, key or signing_key, algorithm=alg, headers=headers)

    return _mint


# --------------------------------------------------------------------------- #
# Provider wiring                                                             #
# --------------------------------------------------------------------------- #
@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture()
def provider_config() -> ProviderConfig:
    return ProviderConfig.for_realm(BASE_URL, REALM, client_id=CLIENT_ID)


@pytest.fixture()
def fake_http(provider_config, jwks_document) -> FakeHttp:
    http = FakeHttp()
    http.get_handlers[provider_config.jwks_uri] = lambda: make_response(200, jwks_document)
    return http


@pytest.fixture()
def token_response(mint) -> Callable[..., SimpleNamespace]:
    """Return a factory for successful token endpoint responses."""

    def _factory(**overrides: Any) -> SimpleNamespace:
        body = {
            "access_token": "access-xyz",
            "id_token": mint(),
            "refresh_token": "refresh-xyz",
            "expires_in": 300,
            "token_type": "Bearer",
        }
        body.update(overrides)
        return make_response(200, {k: v for k, v in body.items() if v is not None})

    return _factory
