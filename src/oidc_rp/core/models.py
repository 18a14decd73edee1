"""Typed, immutable records used by the relying-party core.

Token and secret fields are declared with ``repr=False`` so that records can
be logged or shown in tracebacks without exposing credentials.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Final, Literal, Mapping
from urllib.parse import urlparse

from oidc_rp.core.clock import Clock, default_clock
from oidc_rp.core.errors import ConfigError

TokenEndpointAuthMethod = Literal["client_secret_post", "client_secret_basic", "none"]

_AUTH_METHODS: Final[tuple[str, ...]] = (
    "client_secret_post",
    "client_secret_basic",
    "none",
)

#: Default lifetime of a pending authorization request.
DEFAULT_STATE_TTL: Final[int] = 600


def _is_absolute_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    """Static description of the identity provider and of this client."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str
    client_id: str
    client_secret: str | None = field(default=None, repr=False)
    token_endpoint_auth_method: TokenEndpointAuthMethod | None = None

    @property
    def is_public(self) -> bool:
        """Public clients hold no secret and must use PKCE."""
        return not self.client_secret

    @property
    def auth_method(self) -> TokenEndpointAuthMethod:
        """Effective client authentication method at the token endpoint."""
        if self.token_endpoint_auth_method:
            return self.token_endpoint_auth_method
        return "none" if self.is_public else "client_secret_post"

    def validate(self) -> ProviderConfig:
        """Raise :class:`ConfigError` unless every required field is usable."""
        for name in ("issuer", "authorization_endpoint", "token_endpoint", "jwks_uri"):
            value = getattr(self, name)
            if not value:
                raise ConfigError(f"provider config is missing '{name}'")
            if not _is_absolute_http_url(value):
                raise ConfigError(f"provider '{name}' must be an absolute http(s) URL")
        if not self.client_id:
            raise ConfigError("provider config is missing 'client_id'")
        method = self.token_endpoint_auth_method
        if method is not None and method not in _AUTH_METHODS:
            raise ConfigError(f"unsupported token endpoint auth method '{method}'")
        if method in ("client_secret_post", "client_secret_basic") and self.is_public:
            raise ConfigError(f"'{method}' requires a client secret")
        return self

    @classmethod
    def for_realm(
        cls,
        base_url: str,
        realm: str,
        *,
        client_id: str,
        client_secret: str | None = None,
        token_endpoint_auth_method: TokenEndpointAuthMethod | None = None,
    ) -> ProviderConfig:
        """Derive endpoints for a Keycloak-style ``realms/<realm>`` provider.

        ``base_url`` may carry a legacy ``/auth`` context path, e.g.
        ``http://sso:8080/auth``.
        """
        if not base_url or not realm:
            raise ConfigError("base URL and realm are required")
        issuer = f"{base_url.rstrip('/')}/realms/{realm}"
        oidc = f"{issuer}/protocol/openid-connect"
        return cls(
            issuer=issuer,
            authorization_endpoint=f"{oidc}/auth",
            token_endpoint=f"{oidc}/token",
            jwks_uri=f"{oidc}/certs",
            client_id=client_id,
            client_secret=client_secret,
            token_endpoint_auth_method=token_endpoint_auth_method,
        ).validate()


@dataclass(frozen=True, slots=True)
class AuthRequestState:
    """Pending authorization request, keyed by its single-use state nonce."""

    state_nonce: str = field(repr=False)
    redirect_uri: str
    code_verifier: str | None = field(default=None, repr=False)
    created_at: float = field(default_factory=default_clock)
    ttl_seconds: int = DEFAULT_STATE_TTL

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl_seconds

    def is_expired(self, *, clock: Clock = default_clock) -> bool:
        """Return *True* once the request outlived its TTL."""
        return clock() >= self.expires_at


@dataclass(frozen=True, slots=True)
class TokenSet:
    """Tokens returned by the provider's token endpoint."""

    access_token: str = field(repr=False)
    id_token: str = field(repr=False)
    expires_at: int
    obtained_at: int
    refresh_token: str | None = field(default=None, repr=False)
    token_type: str = "Bearer"
    scope: str | None = None

    @property
    def ttl(self) -> int:
        """Seconds between *obtained_at* and *expires_at*."""
        return self.expires_at - self.obtained_at

    def is_expired(self, *, clock: Clock = default_clock, leeway: int = 0) -> bool:
        return clock() + leeway >= self.expires_at


@dataclass(frozen=True, slots=True)
class ValidatedClaims:
    """ID token claims that passed signature and claim checks."""

    subject: str
    issuer: str
    audience: tuple[str, ...]
    expiry: int
    issued_at: int
    raw_claims: Mapping[str, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "raw_claims", MappingProxyType(dict(self.raw_claims)))


@dataclass(frozen=True, slots=True)
class SessionRecord:
    """What the session store keeps for a signed-in user."""

    session_id: str = field(repr=False)
    subject: str
    token_set: TokenSet
    expires_at: int
    created_at: int

    def is_expired(self, *, clock: Clock = default_clock) -> bool:
        return clock() >= self.expires_at


@dataclass(frozen=True, slots=True)
class SessionHandle:
    """Returned to the web layer; ``session_id`` goes into the cookie."""

    session_id: str = field(repr=False)
    subject: str
    expires_at: int
