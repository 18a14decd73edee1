"""OpenID Provider metadata discovery.

Fetches ``{issuer}/.well-known/openid-configuration`` once at startup and
turns it into an immutable :class:`~oidc_rp.core.models.ProviderConfig`.
The document must name the same issuer that was asked for; anything else is
a configuration error.
"""

from __future__ import annotations

import logging
from typing import Final

import requests

from oidc_rp.core.errors import ConfigError, TransportError
from oidc_rp.core.http import DEFAULT_TIMEOUT, Timeout, get_json, new_http_session
from oidc_rp.core.models import ProviderConfig, TokenEndpointAuthMethod

_LOG = logging.getLogger("oidc-rp.core.discovery")

WELL_KNOWN_PATH: Final[str] = "/.well-known/openid-configuration"


def discovery_url(issuer: str) -> str:
    return f"{issuer.rstrip('/')}{WELL_KNOWN_PATH}"


def discover_provider_config(
    issuer: str,
    *,
    client_id: str,
    client_secret: str | None = None,
    token_endpoint_auth_method: TokenEndpointAuthMethod | None = None,
    http: requests.Session | None = None,
    timeout: Timeout = DEFAULT_TIMEOUT,
) -> ProviderConfig:
    """Build a :class:`ProviderConfig` from the provider's metadata document.

    Raises
    ------
    ConfigError
        The document is unreachable, incomplete or names another issuer.
    """
    if not issuer:
        raise ConfigError("issuer is required for discovery")
    http = http or new_http_session()
    try:
        metadata = get_json(http, discovery_url(issuer), timeout=timeout, what="discovery")
    except TransportError as exc:
        raise ConfigError(f"provider discovery failed: {exc}") from exc

    # exact match, trailing slash included
    if metadata.get("issuer") != issuer:
        raise ConfigError("discovery document names a different issuer")

    supported = metadata.get("token_endpoint_auth_methods_supported")
    if token_endpoint_auth_method and isinstance(supported, list):
        if token_endpoint_auth_method not in supported:
            raise ConfigError(
                f"provider does not support '{token_endpoint_auth_method}' client authentication"
            )

    config = ProviderConfig(
        issuer=metadata["issuer"],
        authorization_endpoint=metadata.get("authorization_endpoint", ""),
        token_endpoint=metadata.get("token_endpoint", ""),
        jwks_uri=metadata.get("jwks_uri", ""),
        client_id=client_id,
        client_secret=client_secret,
        token_endpoint_auth_method=token_endpoint_auth_method,
    ).validate()
    _LOG.info("Discovered provider metadata for issuer=%s", config.issuer)
    return config
