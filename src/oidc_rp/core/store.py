"""Concurrency-safe storage for pending authorization requests and sessions.

This module defines two *narrow* persistence interfaces and their
implementations:

:class:`StateStore`
    Pending :class:`AuthRequestState` records keyed by state nonce.
    ``consume`` is an atomic check-and-delete so two concurrent callbacks can
    never both redeem the same nonce.

    * :class:`MemoryStateStore` – ``cachetools.TTLCache`` behind a lock;
      suitable for a single process.
    * :class:`DiskStateStore` – one JSON file per request; writes use
      *temp-file + os.replace* and consumption claims the file with an atomic
      rename, so several worker processes may share one directory.

:class:`SessionStore`
    Application sessions keyed by an opaque session id (create/get/delete).
    Records are never updated in place; logout deletes them.

Filename safety
    State nonces arrive from the browser and are hashed before they hit the
    filesystem.
"""

from __future__ import annotations

import json
import os
import secrets
import threading
from dataclasses import asdict
from hashlib import sha256
from pathlib import Path
from typing import Protocol, runtime_checkable

from cachetools import TTLCache

from oidc_rp.core.clock import Clock, default_clock
from oidc_rp.core.models import DEFAULT_STATE_TTL, AuthRequestState, SessionRecord

# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #


def _hash(text: str, length: int = 32) -> str:
    return sha256(text.encode()).hexdigest()[:length]


def _atomic_write(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(f"{path.suffix}.{secrets.token_hex(4)}.tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        json.dump(data, fh, separators=(",", ":"), sort_keys=True)
    os.replace(tmp, path)  # atomic on POSIX


# --------------------------------------------------------------------------- #
# public interfaces                                                           #
# --------------------------------------------------------------------------- #


@runtime_checkable
class StateStore(Protocol):
    """Pending-request store keyed by state nonce."""

    def put(self, state: AuthRequestState) -> None: ...

    def consume(self, state_nonce: str) -> AuthRequestState | None: ...

    def cleanup_expired(self) -> int: ...


@runtime_checkable
class SessionStore(Protocol):
    """External session store seen by the session binder."""

    def create(self, record: SessionRecord) -> None: ...

    def get(self, session_id: str) -> SessionRecord | None: ...

    def delete(self, session_id: str) -> bool: ...


# --------------------------------------------------------------------------- #
# In-memory implementations                                                   #
# --------------------------------------------------------------------------- #


class MemoryStateStore(StateStore):
    """Process-local :class:`StateStore` backed by a ``TTLCache``."""

    def __init__(
        self,
        *,
        ttl_seconds: int = DEFAULT_STATE_TTL,
        maxsize: int = 10_000,
        clock: Clock = default_clock,
    ) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._pending: TTLCache[str, AuthRequestState] = TTLCache(
            maxsize=maxsize, ttl=ttl_seconds, timer=clock
        )

    def __len__(self) -> int:
        with self._lock:
            self._pending.expire()
            return len(self._pending)

    def put(self, state: AuthRequestState) -> None:
        with self._lock:
            if state.state_nonce in self._pending:
                raise ValueError("state nonce already pending")
            self._pending[state.state_nonce] = state

    def consume(self, state_nonce: str) -> AuthRequestState | None:
        """Return and remove the pending request (single-use)."""
        with self._lock:
            record = self._pending.pop(state_nonce, None)
        if record is None or record.is_expired(clock=self._clock):
            return None
        return record

    def cleanup_expired(self) -> int:
        with self._lock:
            removed = len(self._pending.expire())
            # records may carry a shorter TTL than the cache itself
            stale = [k for k, rec in self._pending.items() if rec.is_expired(clock=self._clock)]
            for key in stale:
                del self._pending[key]
        return removed + len(stale)


class MemorySessionStore(SessionStore):
    """Process-local :class:`SessionStore`."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, SessionRecord] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create(self, record: SessionRecord) -> None:
        with self._lock:
            if record.session_id in self._sessions:
                raise ValueError("session id already exists")
            self._sessions[record.session_id] = record

    def get(self, session_id: str) -> SessionRecord | None:
        with self._lock:
            return self._sessions.get(session_id)

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def cleanup_expired(self, *, clock: Clock = default_clock) -> int:
        with self._lock:
            expired = [sid for sid, rec in self._sessions.items() if rec.is_expired(clock=clock)]
            for sid in expired:
                del self._sessions[sid]
        return len(expired)


# --------------------------------------------------------------------------- #
# Disk implementation                                                         #
# --------------------------------------------------------------------------- #


class DiskStateStore(StateStore):
    """JSON-file implementation of :class:`StateStore`."""

    def __init__(
        self,
        base_dir: str | os.PathLike,
        *,
        clock: Clock = default_clock,
        sweep_every: int = 100,
    ) -> None:
        self.base_dir = Path(base_dir).expanduser()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        # abandoned records are swept on every Nth write; 0 disables
        self._sweep_every = sweep_every
        self._writes = 0
        self._writes_lock = threading.Lock()

    def _state_path(self, state_nonce: str) -> Path:
        return self.base_dir / "pending" / f"{_hash(state_nonce)}.json"

    def put(self, state: AuthRequestState) -> None:
        path = self._state_path(state.state_nonce)
        if path.exists():
            raise ValueError("state nonce already pending")
        _atomic_write(path, asdict(state))
        with self._writes_lock:
            self._writes += 1
            sweep = bool(self._sweep_every) and self._writes % self._sweep_every == 0
        if sweep:
            self.cleanup_expired()

    def consume(self, state_nonce: str) -> AuthRequestState | None:
        """Claim the record via atomic rename; losers of a race get ``None``."""
        src = self._state_path(state_nonce)
        claim = src.with_suffix(f".{secrets.token_hex(4)}.claim")
        try:
            os.replace(src, claim)
        except FileNotFoundError:
            return None
        try:
            with claim.open(encoding="utf-8") as fh:
                data = json.load(fh)
            record = AuthRequestState(**data)
        except (ValueError, TypeError):
            # corrupt record: dropped with the claim, reported as unknown
            return None
        finally:
            claim.unlink(missing_ok=True)
        if record.state_nonce != state_nonce or record.is_expired(clock=self._clock):
            return None
        return record

    def cleanup_expired(self) -> int:
        pending = self.base_dir / "pending"
        if not pending.exists():
            return 0
        removed = 0
        now = self._clock()
        for p in pending.glob("*.json"):
            try:
                with p.open(encoding="utf-8") as fh:
                    data = json.load(fh)
            except FileNotFoundError:
                continue  # consumed concurrently
            except ValueError:
                p.unlink(missing_ok=True)  # truncated or corrupt record
                removed += 1
                continue
            try:
                created = float(data.get("created_at", 0))
                ttl = int(data.get("ttl_seconds", DEFAULT_STATE_TTL))
            except (AttributeError, TypeError, ValueError):
                created, ttl = 0.0, 0
            if now >= created + ttl:
                p.unlink(missing_ok=True)
                removed += 1
        return removed
