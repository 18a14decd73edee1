"""
Unit tests for TokenExchanger.

Coverage:
* Successful code exchange (form contents, expiry arithmetic)
* State redemption before any network traffic (unknown / replayed state)
* Provider rejections are surfaced without retry
* Transport failures are retried with backoff, then reported
* Client authentication methods
* Refresh grant
"""

from __future__ import annotations

import pytest
import requests

from conftest import BASE_URL, CLIENT_ID, NOW, REALM, REDIRECT_URI, make_response
from oidc_rp.core.errors import ConfigError, InvalidState, TokenEndpointError, TransportError
from oidc_rp.core.exchanger import TokenExchanger, exchange_code, refresh_tokens
from oidc_rp.core.models import ProviderConfig, TokenSet
from oidc_rp.core.request_builder import build_authorization_request
from oidc_rp.core.state import new_state_nonce
from oidc_rp.core.store import MemoryStateStore


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture()
def store(clock) -> MemoryStateStore:
    return MemoryStateStore(clock=clock)


@pytest.fixture()
def sleeper() -> SleepRecorder:
    return SleepRecorder()


def _exchanger(config, store, fake_http, clock, sleeper, **kwargs) -> TokenExchanger:
    return TokenExchanger(config, store, http=fake_http, clock=clock, sleep=sleeper, **kwargs)


def _pending(config, store, clock):
    _, state = build_authorization_request(config, REDIRECT_URI, store=store, clock=clock)
    return state


# --------------------------------------------------------------------------- #
# Happy path                                                                  #
# --------------------------------------------------------------------------- #
def test_exchange_code_success(provider_config, store, fake_http, clock, sleeper, token_response) -> None:
    state = _pending(provider_config, store, clock)
    fake_http.post_results.append(token_response())

    tokens = _exchanger(provider_config, store, fake_http, clock, sleeper).exchange_code(
        "auth-code-1", state.state_nonce
    )

    assert tokens.access_token == "access-xyz"
    assert tokens.refresh_token == "refresh-xyz"
    assert tokens.obtained_at == NOW
    assert tokens.expires_at == NOW + 300

    (method, url, kwargs), = fake_http.calls
    assert (method, url) == ("POST", provider_config.token_endpoint)
    form = kwargs["data"]
    assert form["grant_type"] == "authorization_code"
    assert form["code"] == "auth-code-1"
    assert form["redirect_uri"] == REDIRECT_URI
    assert form["client_id"] == CLIENT_ID
    assert form["code_verifier"] == state.code_verifier
    assert "client_secret" not in form
    assert kwargs["allow_redirects"] is False
    assert kwargs["auth"] is None


def test_missing_expires_in_defaults_to_five_minutes(
    provider_config, store, fake_http, clock, sleeper, token_response
) -> None:
    state = _pending(provider_config, store, clock)
    fake_http.post_results.append(token_response(expires_in=None))

    tokens = _exchanger(provider_config, store, fake_http, clock, sleeper).exchange_code(
        "code", state.state_nonce
    )
    assert tokens.expires_at == NOW + 300


def test_functional_facade(provider_config, store, fake_http, clock, token_response) -> None:
    state = _pending(provider_config, store, clock)
    fake_http.post_results.append(token_response(expires_in=60))

    tokens = exchange_code(
        provider_config, "code", state.state_nonce, store=store, http=fake_http, clock=clock
    )
    assert tokens.ttl == 60


# --------------------------------------------------------------------------- #
# State redemption                                                            #
# --------------------------------------------------------------------------- #
def test_unknown_state_makes_no_http_call(provider_config, store, fake_http, clock, sleeper) -> None:
    with pytest.raises(InvalidState):
        _exchanger(provider_config, store, fake_http, clock, sleeper).exchange_code(
            "code", new_state_nonce()
        )
    assert fake_http.calls == []


@pytest.mark.parametrize("state", ["", "short", "has spaces in it and more text", "../../etc/passwd"])
def test_malformed_state_is_invalid_state(provider_config, store, fake_http, clock, sleeper, state) -> None:
    with pytest.raises(InvalidState):
        _exchanger(provider_config, store, fake_http, clock, sleeper).exchange_code("code", state)
    assert fake_http.calls == []


def test_replayed_state_is_rejected(provider_config, store, fake_http, clock, sleeper, token_response) -> None:
    state = _pending(provider_config, store, clock)
    fake_http.post_results.append(token_response())
    exchanger = _exchanger(provider_config, store, fake_http, clock, sleeper)

    exchanger.exchange_code("code", state.state_nonce)
    with pytest.raises(InvalidState):
        exchanger.exchange_code("code", state.state_nonce)
    assert len(fake_http.calls) == 1


def test_expired_state_is_rejected(provider_config, store, fake_http, clock, sleeper) -> None:
    state = _pending(provider_config, store, clock)
    clock.advance(601)
    with pytest.raises(InvalidState):
        _exchanger(provider_config, store, fake_http, clock, sleeper).exchange_code(
            "code", state.state_nonce
        )
    assert fake_http.calls == []


def test_exchange_without_store_is_config_error(provider_config, fake_http) -> None:
    with pytest.raises(ConfigError):
        TokenExchanger(provider_config, http=fake_http).exchange_code("code", new_state_nonce())


# --------------------------------------------------------------------------- #
# Provider rejections                                                         #
# --------------------------------------------------------------------------- #
def test_invalid_grant_is_not_retried(provider_config, store, fake_http, clock, sleeper) -> None:
    state = _pending(provider_config, store, clock)
    fake_http.post_results.append(
        make_response(400, {"error": "invalid_grant", "error_description": "Code not valid"})
    )

    with pytest.raises(TokenEndpointError) as exc_info:
        _exchanger(provider_config, store, fake_http, clock, sleeper).exchange_code(
            "code", state.state_nonce
        )

    assert exc_info.value.status == 400
    assert exc_info.value.provider_error_code == "invalid_grant"
    assert len(fake_http.calls) == 1
    assert sleeper.delays == []


def test_non_json_error_body(provider_config, store, fake_http, clock, sleeper) -> None:
    state = _pending(provider_config, store, clock)
    fake_http.post_results.append(make_response(502, None))

    with pytest.raises(TokenEndpointError) as exc_info:
        _exchanger(provider_config, store, fake_http, clock, sleeper).exchange_code(
            "code", state.state_nonce
        )
    assert exc_info.value.status == 502
    assert exc_info.value.provider_error_code == "unknown_error"


@pytest.mark.parametrize(
    "overrides",
    [
        {"access_token": None},
        {"id_token": None},
        {"token_type": "mac"},
        {"expires_in": "soon"},
    ],
)
def test_unusable_success_body(provider_config, store, fake_http, clock, sleeper, token_response, overrides) -> None:
    state = _pending(provider_config, store, clock)
    fake_http.post_results.append(token_response(**overrides))

    with pytest.raises(TokenEndpointError) as exc_info:
        _exchanger(provider_config, store, fake_http, clock, sleeper).exchange_code(
            "code", state.state_nonce
        )
    assert exc_info.value.provider_error_code == "invalid_token_response"


# --------------------------------------------------------------------------- #
# Transport retries                                                           #
# --------------------------------------------------------------------------- #
def test_transport_error_is_retried_then_succeeds(
    provider_config, store, fake_http, clock, sleeper, token_response
) -> None:
    state = _pending(provider_config, store, clock)
    fake_http.post_results.extend(
        [requests.ConnectionError("reset"), requests.Timeout("slow"), token_response()]
    )

    tokens = _exchanger(provider_config, store, fake_http, clock, sleeper).exchange_code(
        "code", state.state_nonce
    )

    assert tokens.access_token == "access-xyz"
    assert len(fake_http.calls) == 3
    assert sleeper.delays == [0.5, 1.0]


def test_transport_error_after_max_attempts(provider_config, store, fake_http, clock, sleeper) -> None:
    state = _pending(provider_config, store, clock)
    fake_http.post_results.extend([requests.ConnectionError("down")] * 3)

    with pytest.raises(TransportError) as exc_info:
        _exchanger(provider_config, store, fake_http, clock, sleeper).exchange_code(
            "code", state.state_nonce
        )

    assert exc_info.value.attempts == 3
    assert len(fake_http.calls) == 3
    assert sleeper.delays == [0.5, 1.0]


def test_backoff_is_capped(provider_config, store, fake_http, clock, sleeper) -> None:
    exchanger = _exchanger(provider_config, store, fake_http, clock, sleeper, backoff_max=2.0)
    assert [exchanger._backoff(n) for n in range(1, 6)] == [0.5, 1.0, 2.0, 2.0, 2.0]


# --------------------------------------------------------------------------- #
# Client authentication                                                       #
# --------------------------------------------------------------------------- #
def test_client_secret_post(store, fake_http, clock, sleeper, token_response) -> None:
    config = ProviderConfig.for_realm(BASE_URL, REALM, client_id=CLIENT_ID, client_secret="s3cret")
    state = _pending(config, store, clock)
    fake_http.post_results.append(token_response())

    _exchanger(config, store, fake_http, clock, sleeper).exchange_code("code", state.state_nonce)

    kwargs = fake_http.calls[0][2]
    assert kwargs["data"]["client_secret"] == "s3cret"
    assert "code_verifier" not in kwargs["data"]
    assert kwargs["auth"] is None


def test_client_secret_basic_is_form_encoded(store, fake_http, clock, sleeper, token_response) -> None:
    config = ProviderConfig.for_realm(
        BASE_URL,
        REALM,
        client_id=CLIENT_ID,
        client_secret="p@ss word",
        token_endpoint_auth_method="client_secret_basic",
    )
    state = _pending(config, store, clock)
    fake_http.post_results.append(token_response())

    _exchanger(config, store, fake_http, clock, sleeper).exchange_code("code", state.state_nonce)

    kwargs = fake_http.calls[0][2]
    assert "client_secret" not in kwargs["data"]
    assert kwargs["auth"] == (CLIENT_ID, "p%40ss%20word")


# --------------------------------------------------------------------------- #
# Refresh                                                                     #
# --------------------------------------------------------------------------- #
def _token_set(**overrides) -> TokenSet:
    values = dict(
        access_token="old-access",
        id_token="old-id",
        refresh_token="old-refresh",
        obtained_at=NOW - 600,
        expires_at=NOW - 300,
    )
    values.update(overrides)
    return TokenSet(**values)


def test_refresh_returns_new_token_set(provider_config, fake_http, clock) -> None:
    fake_http.post_results.append(
        make_response(200, {"access_token": "new-access", "expires_in": 120, "token_type": "bearer"})
    )
    old = _token_set()

    new = refresh_tokens(provider_config, old, http=fake_http, clock=clock)

    assert new is not old
    assert new.access_token == "new-access"
    assert new.expires_at == NOW + 120
    # provider omitted them, so they carry over
    assert new.id_token == "old-id"
    assert new.refresh_token == "old-refresh"
    assert old.access_token == "old-access"

    form = fake_http.calls[0][2]["data"]
    assert form == {"grant_type": "refresh_token", "refresh_token": "old-refresh", "client_id": CLIENT_ID}


def test_refresh_without_refresh_token(provider_config, fake_http, clock) -> None:
    with pytest.raises(TokenEndpointError) as exc_info:
        refresh_tokens(provider_config, _token_set(refresh_token=None), http=fake_http, clock=clock)
    assert exc_info.value.provider_error_code == "no_refresh_token"
    assert fake_http.calls == []
