"""Environment-driven settings for the relying-party application.

All values are read once at process start by :meth:`RelyingPartySettings.from_env`
and then passed explicitly; nothing in the core reads the environment.

Provider resolution (highest → lowest):
  1. ``OIDC_DISCOVERY`` truthy → fetch metadata for ``OIDC_ISSUER`` (or the
     issuer derived from ``OIDC_BASE_URL`` + ``OIDC_REALM``).
  2. ``OIDC_BASE_URL`` + ``OIDC_REALM`` → Keycloak-style static endpoints.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Final, Mapping

import requests

from oidc_rp.core.discovery import discover_provider_config
from oidc_rp.core.errors import ConfigError
from oidc_rp.core.http import Timeout
from oidc_rp.core.models import DEFAULT_STATE_TTL, ProviderConfig
from oidc_rp.core.validator import DEFAULT_CLOCK_SKEW

logger = logging.getLogger("oidc-rp.config")

_TRUTHY: Final[tuple[str, ...]] = ("true", "1", "yes", "y", "on")

DEFAULT_APP_PORT: Final[int] = 8081


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def _get(env: Mapping[str, str], key: str) -> str | None:
    value = env.get(key)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _number(env: Mapping[str, str], key: str, default: float, *, cast: type = float):
    raw = _get(env, key)
    if raw is None:
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from None
    if value < 0:
        raise ConfigError(f"{key} must not be negative")
    return value


@dataclass(frozen=True)
class RelyingPartySettings:
    """Process-wide settings; construct with :meth:`from_env`."""

    client_id: str
    redirect_uri: str
    client_secret: str | None = field(default=None, repr=False)
    token_auth_method: str | None = None
    base_url: str | None = None
    realm: str | None = None
    issuer: str | None = None
    discovery: bool = False
    scope: str = "openid"
    request_timeout: float = 20.0
    clock_skew: int = DEFAULT_CLOCK_SKEW
    state_ttl: int = DEFAULT_STATE_TTL
    state_store_dir: str | None = None
    jwks_min_refresh: float = 30.0
    post_login_url: str = "/"
    session_cookie: str = "oidc_rp_session"
    host: str = "127.0.0.1"
    port: int = DEFAULT_APP_PORT

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RelyingPartySettings:
        """Read settings from *environ* (defaults to :data:`os.environ`).

        Raises
        ------
        ConfigError
            When a required variable is missing or a value is malformed.
        """
        env = os.environ if environ is None else environ
        client_id = _get(env, "OIDC_CLIENT_ID")
        if not client_id:
            raise ConfigError("OIDC_CLIENT_ID is required")

        port = int(_number(env, "APP_PORT", DEFAULT_APP_PORT, cast=int))
        redirect_uri = _get(env, "OIDC_REDIRECT_URI") or f"http://localhost:{port}/callback"

        settings = cls(
            client_id=client_id,
            client_secret=_get(env, "OIDC_CLIENT_SECRET"),
            token_auth_method=_get(env, "OIDC_TOKEN_AUTH_METHOD"),
            redirect_uri=redirect_uri,
            base_url=_get(env, "OIDC_BASE_URL"),
            realm=_get(env, "OIDC_REALM"),
            issuer=_get(env, "OIDC_ISSUER"),
            discovery=_truthy(env.get("OIDC_DISCOVERY")),
            scope=_get(env, "OIDC_SCOPE") or "openid",
            request_timeout=float(_number(env, "OIDC_REQUEST_TIMEOUT", 20.0)),
            clock_skew=int(_number(env, "OIDC_CLOCK_SKEW", DEFAULT_CLOCK_SKEW, cast=int)),
            state_ttl=int(_number(env, "OIDC_STATE_TTL", DEFAULT_STATE_TTL, cast=int)),
            state_store_dir=_get(env, "OIDC_STATE_STORE_DIR"),
            jwks_min_refresh=float(_number(env, "OIDC_JWKS_MIN_REFRESH", 30.0)),
            post_login_url=_get(env, "OIDC_POST_LOGIN_URL") or "/",
            session_cookie=_get(env, "OIDC_SESSION_COOKIE") or "oidc_rp_session",
            host=_get(env, "APP_HOST") or "127.0.0.1",
            port=port,
        )
        if not settings.discovery and not (settings.base_url and settings.realm):
            raise ConfigError("set OIDC_BASE_URL and OIDC_REALM, or enable OIDC_DISCOVERY")
        if settings.discovery and not (settings.issuer or (settings.base_url and settings.realm)):
            raise ConfigError("OIDC_DISCOVERY needs OIDC_ISSUER or OIDC_BASE_URL + OIDC_REALM")
        if settings.state_ttl == 0:
            raise ConfigError("OIDC_STATE_TTL must be positive")
        if settings.request_timeout == 0:
            raise ConfigError("OIDC_REQUEST_TIMEOUT must be positive")
        return settings

    @property
    def timeout(self) -> Timeout:
        """``(connect, read)`` timeout for provider calls."""
        return (min(5.0, self.request_timeout), self.request_timeout)

    def provider_config(self, *, http: requests.Session | None = None) -> ProviderConfig:
        """Resolve the immutable :class:`ProviderConfig` (may hit the network)."""
        if self.discovery:
            issuer = self.issuer or f"{(self.base_url or '').rstrip('/')}/realms/{self.realm}"
            return discover_provider_config(
                issuer,
                client_id=self.client_id,
                client_secret=self.client_secret,
                token_endpoint_auth_method=self.token_auth_method,  # type: ignore[arg-type]
                http=http,
                timeout=self.timeout,
            )
        config = ProviderConfig.for_realm(
            self.base_url or "",
            self.realm or "",
            client_id=self.client_id,
            client_secret=self.client_secret,
            token_endpoint_auth_method=self.token_auth_method,  # type: ignore[arg-type]
        )
        logger.info("Using static endpoints for issuer=%s", config.issuer)
        return config
