"""RelyingPartyService – login flow orchestration.

Handlers in :mod:`oidc_rp.servers.auth` call the thin façade methods below.
A flow moves through::

    Idle -> PendingCallback -> Exchanged -> Validated -> Bound

and any failure moves it to the terminal ``Failed`` stage.  No session is
ever bound from a failed flow: the session binder is the last step and only
runs once the ID token passed verification.

Internal error detail is logged here; callers receive a :class:`FlowFailed`
that carries only the failure reason and stage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Final

from oidc_rp.core.clock import Clock, default_clock
from oidc_rp.core.errors import FlowFailed, OIDCError
from oidc_rp.core.exchanger import TokenExchanger
from oidc_rp.core.jwks import JWKSCache
from oidc_rp.core.log_utils import get_auth_logger
from oidc_rp.core.models import DEFAULT_STATE_TTL, ProviderConfig, SessionHandle, SessionRecord
from oidc_rp.core.request_builder import build_authorization_request
from oidc_rp.core.sessions import SessionBinder
from oidc_rp.core.store import SessionStore, StateStore
from oidc_rp.core.validator import DEFAULT_CLOCK_SKEW, TokenValidator

_LOGGER_NAME: Final[str] = "oidc-rp.core.service"
_LOG = logging.getLogger(_LOGGER_NAME)


class FlowStage(str, Enum):
    IDLE = "idle"
    PENDING_CALLBACK = "pending_callback"
    EXCHANGED = "exchanged"
    VALIDATED = "validated"
    BOUND = "bound"
    FAILED = "failed"


_TRANSITIONS: Final[dict[FlowStage, frozenset[FlowStage]]] = {
    FlowStage.IDLE: frozenset({FlowStage.PENDING_CALLBACK}),
    FlowStage.PENDING_CALLBACK: frozenset({FlowStage.EXCHANGED}),
    FlowStage.EXCHANGED: frozenset({FlowStage.VALIDATED}),
    FlowStage.VALIDATED: frozenset({FlowStage.BOUND}),
    FlowStage.BOUND: frozenset(),
    FlowStage.FAILED: frozenset(),
}


@dataclass
class LoginFlow:
    """Stage tracker for one login attempt."""

    stage: FlowStage = FlowStage.IDLE
    failure_reason: str | None = None
    history: list[FlowStage] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.stage in (FlowStage.BOUND, FlowStage.FAILED)

    def advance(self, stage: FlowStage) -> None:
        if stage not in _TRANSITIONS[self.stage]:
            raise RuntimeError(f"illegal flow transition {self.stage.value} -> {stage.value}")
        self.history.append(self.stage)
        self.stage = stage

    def fail(self, reason: str) -> None:
        if self.is_terminal:
            raise RuntimeError(f"flow already finished in stage {self.stage.value}")
        self.history.append(self.stage)
        self.stage = FlowStage.FAILED
        self.failure_reason = reason


class RelyingPartyService:
    """Application service wiring builder, exchanger, validator and binder."""

    def __init__(
        self,
        config: ProviderConfig,
        *,
        state_store: StateStore,
        session_store: SessionStore,
        jwks_cache: JWKSCache | None = None,
        exchanger: TokenExchanger | None = None,
        scope: str | None = None,
        state_ttl: int = DEFAULT_STATE_TTL,
        clock_skew: int = DEFAULT_CLOCK_SKEW,
        clock: Clock = default_clock,
    ) -> None:
        self.config = config.validate()
        self.state_store = state_store
        self.scope = scope
        self.state_ttl = state_ttl
        self.clock = clock
        self.jwks_cache = jwks_cache or JWKSCache(config.jwks_uri, clock=clock)
        self.exchanger = exchanger or TokenExchanger(config, state_store, clock=clock)
        self.validator = TokenValidator(config, self.jwks_cache, clock_skew=clock_skew, clock=clock)
        self.sessions = SessionBinder(session_store, clock=clock)

    # ------------------------------------------------------------------ #
    # Public API called by HTTP handlers                                 #
    # ------------------------------------------------------------------ #
    def start_login(self, redirect_uri: str) -> str:
        """Return the provider authorization URL for a new flow.

        The pending record in the state store is the only trace of the flow
        until the callback arrives; stage tracking starts in
        :meth:`complete_login`.
        """
        url, state = build_authorization_request(
            self.config,
            redirect_uri,
            store=self.state_store,
            scope=self.scope,
            ttl_seconds=self.state_ttl,
            clock=self.clock,
        )
        get_auth_logger(
            base_logger_name=_LOGGER_NAME,
            flow_id=state.state_nonce,
            client_id=self.config.client_id,
        ).info("Login flow started")
        return url

    def complete_login(
        self,
        *,
        code: str,
        state: str,
        correlation_id: str | None = None,
    ) -> SessionHandle:
        """Finish the flow started by :meth:`start_login`.

        Raises
        ------
        FlowFailed
            On any failure; the underlying :class:`OIDCError` is chained.
        """
        flow = LoginFlow(stage=FlowStage.PENDING_CALLBACK)
        log = get_auth_logger(
            base_logger_name=_LOGGER_NAME,
            flow_id=state,
            client_id=self.config.client_id,
            correlation_id=correlation_id,
        )
        try:
            token_set = self.exchanger.exchange_code(code, state)
            flow.advance(FlowStage.EXCHANGED)
            claims = self.validator.validate(token_set)
            flow.advance(FlowStage.VALIDATED)
            handle = self.sessions.bind_session(claims, token_set)
            flow.advance(FlowStage.BOUND)
        except OIDCError as exc:
            failed_in = flow.stage
            flow.fail(exc.code)
            if exc.security_event:
                log.warning(
                    "Security event during %s: %s (%s)",
                    failed_in.value,
                    exc.code,
                    exc,
                )
            else:
                log.error("Login flow failed during %s: %s (%s)", failed_in.value, exc.code, exc)
            raise FlowFailed(reason=exc.code, stage=failed_in.value) from exc

        log.info("Login flow completed for sub=%s", handle.subject)
        return handle

    def current_session(self, session_id: str | None) -> SessionRecord | None:
        return self.sessions.get_session(session_id)

    def logout(self, session_id: str | None) -> bool:
        return self.sessions.logout(session_id)
