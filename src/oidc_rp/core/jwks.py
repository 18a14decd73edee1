"""Thread-safe JWKS cache with single-flight refresh.

Keys are fetched from the provider's ``jwks_uri`` and indexed by ``kid``.
A lookup miss triggers a refresh, and refreshes are **coalesced**: when many
threads miss at the same time exactly one of them (the *leader*) fetches the
key set while the others block on an event until the leader is done.  A
refresh that would follow the previous one within ``min_refresh_interval``
seconds is skipped, so a stream of tokens with bogus ``kid`` values cannot
turn into a stream of JWKS requests.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

import jwt
import requests

from oidc_rp.core.clock import Clock, default_clock
from oidc_rp.core.errors import TransportError, UnknownSigningKey
from oidc_rp.core.http import DEFAULT_TIMEOUT, Timeout, get_json, new_http_session

_LOG = logging.getLogger("oidc-rp.core.jwks")


class _Flight:
    """One in-progress refresh; followers wait on ``done``."""

    __slots__ = ("done", "error")

    def __init__(self) -> None:
        self.done = threading.Event()
        self.error: BaseException | None = None


def _load_keys(document: dict[str, Any]) -> dict[str, jwt.PyJWK]:
    entries = document.get("keys")
    if not isinstance(entries, list):
        raise TransportError("JWKS response has no key list")
    keys: dict[str, jwt.PyJWK] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        kid = entry.get("kid")
        if not kid:
            _LOG.debug("Skipping JWK without kid")
            continue
        if entry.get("use", "sig") != "sig":
            _LOG.debug("Skipping non-signing JWK kid=%s", kid)
            continue
        try:
            keys[str(kid)] = jwt.PyJWK(entry)
        except jwt.PyJWTError as exc:
            _LOG.debug("Skipping unusable JWK kid=%s: %s", kid, exc)
    return keys


class JWKSCache:
    """Mapping of key id to public key material for one provider."""

    def __init__(
        self,
        jwks_uri: str,
        *,
        http: requests.Session | None = None,
        timeout: Timeout = DEFAULT_TIMEOUT,
        min_refresh_interval: float = 30.0,
        clock: Clock = default_clock,
    ) -> None:
        self.jwks_uri = jwks_uri
        self.http = http or new_http_session()
        self.timeout = timeout
        self.min_refresh_interval = min_refresh_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._keys: dict[str, jwt.PyJWK] = {}
        self._flight: _Flight | None = None
        self.last_refreshed: float | None = None

    def key_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._keys)

    def get(self, kid: str) -> jwt.PyJWK | None:
        """Return the cached key for *kid* without touching the network."""
        with self._lock:
            return self._keys.get(kid)

    def get_signing_key(self, kid: str) -> jwt.PyJWK:
        """Return the key for *kid*, refreshing the cache once on a miss.

        Raises
        ------
        UnknownSigningKey
            If the key is still unknown after the refresh attempt.
        TransportError
            If the refresh this call waited on failed.
        """
        key = self.get(kid)
        if key is not None:
            return key
        self.refresh()
        key = self.get(kid)
        if key is None:
            _LOG.warning("No JWKS entry for kid=%s after refresh", kid)
            raise UnknownSigningKey(kid)
        return key

    def refresh(self, *, force: bool = False) -> bool:
        """Fetch the key set unless a recent refresh makes it pointless.

        Returns *True* if this call fetched or waited on a fetch.
        """
        with self._lock:
            flight = self._flight
            if flight is None:
                if not force and self._recently_refreshed():
                    _LOG.debug("JWKS refresh skipped (rate limited)")
                    return False
                flight = self._flight = _Flight()
                leader = True
            else:
                leader = False

        if not leader:
            # suspend until the leader publishes its result
            flight.done.wait(timeout=sum(self.timeout))
            if flight.error is not None:
                raise TransportError(str(flight.error)) from flight.error
            return True

        try:
            keys = _load_keys(get_json(self.http, self.jwks_uri, timeout=self.timeout, what="JWKS"))
        except TransportError as exc:
            flight.error = exc
            _LOG.error("JWKS refresh failed: %s", exc)
            raise
        else:
            with self._lock:
                self._keys = keys
                self.last_refreshed = self._clock()
            _LOG.info("JWKS refreshed (%d signing keys)", len(keys))
            return True
        finally:
            with self._lock:
                self._flight = None
            flight.done.set()

    def _recently_refreshed(self) -> bool:
        return (
            self.last_refreshed is not None
            and self._clock() - self.last_refreshed < self.min_refresh_interval
        )
