"""Bind verified identities to application sessions."""

from __future__ import annotations

import logging
import secrets

from oidc_rp.core.clock import Clock, default_clock
from oidc_rp.core.models import SessionHandle, SessionRecord, TokenSet, ValidatedClaims
from oidc_rp.core.store import SessionStore

_LOG = logging.getLogger("oidc-rp.core.sessions")

#: Random bytes in a session id (256 bits).
SESSION_ID_BYTES = 32


class SessionBinder:
    """Create, look up and end sessions in an external :class:`SessionStore`."""

    def __init__(self, store: SessionStore, *, clock: Clock = default_clock) -> None:
        self.store = store
        self._clock = clock

    def bind_session(self, validated_claims: ValidatedClaims, token_set: TokenSet) -> SessionHandle:
        """Store a new session for *validated_claims* and return its handle.

        Only the subject, the token set and the ID token expiry are kept;
        the raw claims are not persisted.
        """
        record = SessionRecord(
            session_id=secrets.token_urlsafe(SESSION_ID_BYTES),
            subject=validated_claims.subject,
            token_set=token_set,
            expires_at=validated_claims.expiry,
            created_at=int(self._clock()),
        )
        self.store.create(record)
        _LOG.info("Bound session for sub=%s (expires_at=%s)", record.subject, record.expires_at)
        return SessionHandle(
            session_id=record.session_id,
            subject=record.subject,
            expires_at=record.expires_at,
        )

    def get_session(self, session_id: str | None) -> SessionRecord | None:
        """Return the live session for *session_id*; expired ones are dropped."""
        if not session_id:
            return None
        record = self.store.get(session_id)
        if record is None:
            return None
        if record.is_expired(clock=self._clock):
            self.store.delete(session_id)
            _LOG.debug("Dropped expired session for sub=%s", record.subject)
            return None
        return record

    def logout(self, session_id: str | None) -> bool:
        """Delete the session; returns *False* when nothing was stored."""
        if not session_id:
            return False
        deleted = self.store.delete(session_id)
        if deleted:
            _LOG.info("Session ended")
        return deleted


def bind_session(
    validated_claims: ValidatedClaims,
    token_set: TokenSet,
    *,
    store: SessionStore,
    clock: Clock = default_clock,
) -> SessionHandle:
    """One-shot wrapper around :meth:`SessionBinder.bind_session`."""
    return SessionBinder(store, clock=clock).bind_session(validated_claims, token_set)
