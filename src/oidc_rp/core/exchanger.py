"""Token exchange against the provider's token endpoint.

The exchanger redeems the single-use state **before** any network traffic,
then POSTs a form-encoded request on the private back channel.  Only the
POST step is retried, with exponential backoff and a bounded number of
attempts, and only for transport-level failures.  Provider rejections
(non-2xx) are surfaced immediately.

Authorization codes, client secrets and tokens are never logged.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping
from urllib.parse import quote

import requests

from oidc_rp.core.clock import Clock, default_clock
from oidc_rp.core.errors import ConfigError, InvalidState, TokenEndpointError, TransportError
from oidc_rp.core.http import DEFAULT_TIMEOUT, Timeout, new_http_session
from oidc_rp.core.log_utils import mask_sensitive
from oidc_rp.core.models import ProviderConfig, TokenSet
from oidc_rp.core.state import is_well_formed_nonce
from oidc_rp.core.store import StateStore

_LOG = logging.getLogger("oidc-rp.core.exchanger")

#: Lifetime assumed when the provider omits ``expires_in``.
DEFAULT_EXPIRES_IN = 300


class TokenExchanger:
    """Trade authorization codes (and refresh tokens) for a :class:`TokenSet`."""

    def __init__(
        self,
        config: ProviderConfig,
        state_store: StateStore | None = None,
        *,
        http: requests.Session | None = None,
        timeout: Timeout = DEFAULT_TIMEOUT,
        max_attempts: int = 3,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Clock = default_clock,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.config = config
        self.state_store = state_store
        self.http = http or new_http_session()
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._sleep = sleep
        self._clock = clock

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #
    def exchange_code(self, code: str, state_nonce: str) -> TokenSet:
        """Redeem *state_nonce* and exchange *code* for tokens.

        Raises
        ------
        InvalidState
            Unknown, expired or replayed state; no request is sent.
        TokenEndpointError
            The provider rejected the request or answered an unusable body.
        TransportError
            The POST kept failing at the network level.
        """
        if self.state_store is None:
            raise ConfigError("exchanging a code requires a state store")
        pending = None
        if is_well_formed_nonce(state_nonce):
            pending = self.state_store.consume(state_nonce)
        if pending is None:
            _LOG.warning(
                "Rejected callback with unknown or replayed state=%s",
                mask_sensitive(state_nonce, 6),
            )
            raise InvalidState()
        if not code:
            raise TokenEndpointError(0, "missing_code")

        form: dict[str, str] = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": pending.redirect_uri,
            "client_id": self.config.client_id,
        }
        if pending.code_verifier:
            form["code_verifier"] = pending.code_verifier

        token_set = self._request_tokens(form)
        _LOG.info(
            "Exchanged authorization code state=%s (expires in %ss)",
            mask_sensitive(state_nonce, 6),
            token_set.ttl,
        )
        return token_set

    def refresh(self, token_set: TokenSet) -> TokenSet:
        """Return a **new** :class:`TokenSet` obtained with the refresh token."""
        if not token_set.refresh_token:
            raise TokenEndpointError(0, "no_refresh_token")
        form = {
            "grant_type": "refresh_token",
            "refresh_token": token_set.refresh_token,
            "client_id": self.config.client_id,
        }
        refreshed = self._request_tokens(form, previous=token_set)
        _LOG.info("Refreshed tokens (expires in %ss)", refreshed.ttl)
        return refreshed

    # ------------------------------------------------------------------ #
    # internal helpers                                                   #
    # ------------------------------------------------------------------ #
    def _client_auth(self, form: dict[str, str]) -> tuple[str, str] | None:
        method = self.config.auth_method
        if method == "client_secret_post":
            form["client_secret"] = self.config.client_secret or ""  # noqa: S105
        elif method == "client_secret_basic":
            # RFC 6749 §2.3.1: form-urlencode id and secret before Basic auth
            return (
                quote(self.config.client_id, safe=""),
                quote(self.config.client_secret or "", safe=""),
            )
        return None

    def _backoff(self, attempt: int) -> float:
        return min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))

    def _post(self, form: Mapping[str, str], auth: tuple[str, str] | None) -> requests.Response:
        """POST with bounded retries on transport failures only."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return self.http.post(
                    self.config.token_endpoint,
                    data=dict(form),
                    auth=auth,
                    timeout=self.timeout,
                    allow_redirects=False,
                )
            except requests.RequestException as exc:
                if attempt >= self.max_attempts:
                    _LOG.error(
                        "Token endpoint unreachable after %d attempt(s): %s",
                        attempt,
                        type(exc).__name__,
                    )
                    raise TransportError(
                        f"token request failed: {type(exc).__name__}",
                        attempts=attempt,
                    ) from exc
                delay = self._backoff(attempt)
                _LOG.warning(
                    "Token request attempt %d/%d failed (%s); retrying in %.2fs",
                    attempt,
                    self.max_attempts,
                    type(exc).__name__,
                    delay,
                )
                self._sleep(delay)

    def _request_tokens(
        self, form: dict[str, str], *, previous: TokenSet | None = None
    ) -> TokenSet:
        auth = self._client_auth(form)
        resp = self._post(form, auth)
        received_at = int(self._clock())

        if not 200 <= resp.status_code < 300:
            error_code, description = _provider_error(resp)
            _LOG.warning(
                "Token endpoint rejected %s grant: HTTP %s error=%s",
                form["grant_type"],
                resp.status_code,
                error_code,
            )
            raise TokenEndpointError(resp.status_code, error_code, description)

        try:
            data = resp.json()
        except ValueError:
            raise TokenEndpointError(resp.status_code, "invalid_token_response") from None
        if not isinstance(data, dict):
            raise TokenEndpointError(resp.status_code, "invalid_token_response")
        return _parse_token_response(data, resp.status_code, received_at, previous)


def _provider_error(resp: requests.Response) -> tuple[str, str | None]:
    try:
        body: Any = resp.json()
    except ValueError:
        return "unknown_error", None
    if not isinstance(body, dict):
        return "unknown_error", None
    error_code = body.get("error")
    description = body.get("error_description")
    return (
        str(error_code) if error_code else "unknown_error",
        str(description)[:200] if description else None,
    )


def _parse_token_response(
    data: dict[str, Any],
    status: int,
    received_at: int,
    previous: TokenSet | None,
) -> TokenSet:
    access_token = data.get("access_token")
    id_token = data.get("id_token") or (previous.id_token if previous else None)
    if not access_token or not id_token:
        raise TokenEndpointError(status, "invalid_token_response", "missing access_token or id_token")

    token_type = str(data.get("token_type") or "Bearer")
    if token_type.lower() != "bearer":
        raise TokenEndpointError(status, "invalid_token_response", "unsupported token_type")

    try:
        expires_in = int(data.get("expires_in", DEFAULT_EXPIRES_IN))
    except (TypeError, ValueError):
        raise TokenEndpointError(status, "invalid_token_response", "bad expires_in") from None

    refresh_token = data.get("refresh_token") or (previous.refresh_token if previous else None)
    return TokenSet(
        access_token=str(access_token),
        id_token=str(id_token),
        refresh_token=str(refresh_token) if refresh_token else None,
        obtained_at=received_at,
        expires_at=received_at + max(expires_in, 0),
        token_type="Bearer",
        scope=data.get("scope"),
    )


# --------------------------------------------------------------------------- #
# Functional façade                                                           #
# --------------------------------------------------------------------------- #
def exchange_code(
    config: ProviderConfig,
    code: str,
    state_nonce: str,
    *,
    store: StateStore,
    **kwargs: Any,
) -> TokenSet:
    """One-shot wrapper around :meth:`TokenExchanger.exchange_code`."""
    return TokenExchanger(config, store, **kwargs).exchange_code(code, state_nonce)


def refresh_tokens(config: ProviderConfig, token_set: TokenSet, **kwargs: Any) -> TokenSet:
    """One-shot wrapper around :meth:`TokenExchanger.refresh`."""
    return TokenExchanger(config, **kwargs).refresh(token_set)
