"""Authorization request construction (front-channel half of the flow)."""

from __future__ import annotations

import logging
from urllib.parse import urlencode, urlparse

from oidc_rp.core.clock import Clock, default_clock
from oidc_rp.core.errors import ConfigError
from oidc_rp.core.log_utils import mask_sensitive
from oidc_rp.core.models import DEFAULT_STATE_TTL, AuthRequestState, ProviderConfig
from oidc_rp.core.pkce import CODE_CHALLENGE_METHOD, code_challenge_s256, generate_code_verifier
from oidc_rp.core.state import new_state_nonce
from oidc_rp.core.store import StateStore

_LOG = logging.getLogger("oidc-rp.core.request_builder")

DEFAULT_SCOPE = "openid"


def _normalise_scope(scope: str | None) -> str:
    parts = (scope or DEFAULT_SCOPE).split()
    if "openid" not in parts:
        parts.insert(0, "openid")
    # keep the caller's order, drop duplicates
    return " ".join(dict.fromkeys(parts))


def _check_redirect_uri(redirect_uri: str | None) -> str:
    if not redirect_uri:
        raise ConfigError("redirect_uri is required")
    parsed = urlparse(redirect_uri)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError("redirect_uri must be an absolute http(s) URL")
    if parsed.fragment:
        raise ConfigError("redirect_uri must not contain a fragment")
    return redirect_uri


def build_authorization_request(
    config: ProviderConfig,
    redirect_uri: str | None,
    *,
    store: StateStore,
    scope: str | None = None,
    use_pkce: bool | None = None,
    ttl_seconds: int = DEFAULT_STATE_TTL,
    clock: Clock = default_clock,
) -> tuple[str, AuthRequestState]:
    """Return the provider authorization URL and the pending request state.

    The :class:`AuthRequestState` is persisted in *store* under its nonce
    before the URL is returned; no network call is made.

    Parameters
    ----------
    config:
        Provider configuration; validated before use.
    redirect_uri:
        Callback URL registered with the provider.
    store:
        Pending-request store that will later redeem the nonce.
    scope:
        Space separated scopes; ``openid`` is always included.
    use_pkce:
        Force PKCE on or off.  ``None`` enables it for public clients.

    Raises
    ------
    ConfigError
        If *redirect_uri* is missing or *config* is incomplete.
    """
    config.validate()
    redirect_uri = _check_redirect_uri(redirect_uri)
    if use_pkce is None:
        use_pkce = config.is_public

    code_verifier = generate_code_verifier() if use_pkce else None
    state = AuthRequestState(
        state_nonce=new_state_nonce(),
        redirect_uri=redirect_uri,
        code_verifier=code_verifier,
        created_at=clock(),
        ttl_seconds=ttl_seconds,
    )

    query_params: dict[str, str] = {
        "response_type": "code",
        "client_id": config.client_id,
        "state": state.state_nonce,
        "redirect_uri": redirect_uri,
        "scope": _normalise_scope(scope),
    }
    if code_verifier is not None:
        query_params["code_challenge"] = code_challenge_s256(code_verifier)
        query_params["code_challenge_method"] = CODE_CHALLENGE_METHOD

    separator = "&" if urlparse(config.authorization_endpoint).query else "?"
    url = f"{config.authorization_endpoint}{separator}{urlencode(query_params)}"

    store.put(state)
    _LOG.debug(
        "Built authorization request state=%s pkce=%s",
        mask_sensitive(state.state_nonce, 6),
        use_pkce,
    )
    return url, state
