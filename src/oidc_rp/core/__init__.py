"""Relying-party core package.

This namespace hosts the **HTTP-framework-agnostic** building blocks of an
OpenID Connect authorization-code client.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
pkce
    Proof-Key for Code Exchange helpers.
state
    Single-use ``state`` nonce generation and validation.
models
    Immutable dataclasses for provider config, pending requests, tokens,
    claims and sessions.
errors
    Exception taxonomy of the login flow.
store
    Pending-request and session stores.
request_builder
    Authorization redirect construction.
exchanger
    Code/refresh-token exchange on the back channel.
jwks / validator
    JWKS caching and ID token verification.
sessions
    Session binding.
discovery
    Provider metadata discovery.
service
    Flow orchestration used by the web layer.
log_utils
    Structured logging helpers (thin wrapper around :mod:`logging`).

All public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .clock import Clock, FrozenClock, default_clock  # noqa: F401
from .discovery import discover_provider_config  # noqa: F401
from .errors import (  # noqa: F401
    ClaimInvalid,
    ConfigError,
    FlowFailed,
    InvalidState,
    OIDCError,
    SignatureInvalid,
    TokenEndpointError,
    TransportError,
    UnknownSigningKey,
)
from .exchanger import TokenExchanger, exchange_code, refresh_tokens  # noqa: F401
from .jwks import JWKSCache  # noqa: F401
from .log_utils import get_auth_logger, mask_sensitive  # noqa: F401
from .models import (  # noqa: F401
    AuthRequestState,
    ProviderConfig,
    SessionHandle,
    SessionRecord,
    TokenSet,
    ValidatedClaims,
)
from .pkce import code_challenge_s256, generate_code_verifier  # noqa: F401
from .request_builder import build_authorization_request  # noqa: F401
from .service import FlowStage, LoginFlow, RelyingPartyService  # noqa: F401
from .sessions import SessionBinder, bind_session  # noqa: F401
from .state import new_state_nonce  # noqa: F401
from .store import (  # noqa: F401
    DiskStateStore,
    MemorySessionStore,
    MemoryStateStore,
    SessionStore,
    StateStore,
)
from .validator import TokenValidator, validate_id_token  # noqa: F401

__all__ = [
    # clock
    "Clock",
    "FrozenClock",
    "default_clock",
    # errors
    "OIDCError",
    "ConfigError",
    "InvalidState",
    "TransportError",
    "TokenEndpointError",
    "UnknownSigningKey",
    "SignatureInvalid",
    "ClaimInvalid",
    "FlowFailed",
    # models
    "ProviderConfig",
    "AuthRequestState",
    "TokenSet",
    "ValidatedClaims",
    "SessionRecord",
    "SessionHandle",
    # pkce / state
    "generate_code_verifier",
    "code_challenge_s256",
    "new_state_nonce",
    # stores
    "StateStore",
    "SessionStore",
    "MemoryStateStore",
    "DiskStateStore",
    "MemorySessionStore",
    # operations
    "build_authorization_request",
    "TokenExchanger",
    "exchange_code",
    "refresh_tokens",
    "JWKSCache",
    "TokenValidator",
    "validate_id_token",
    "SessionBinder",
    "bind_session",
    "discover_provider_config",
    "RelyingPartyService",
    "LoginFlow",
    "FlowStage",
    # logging helpers
    "get_auth_logger",
    "mask_sensitive",
]
