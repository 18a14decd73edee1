"""Clock abstraction for testable time handling in the relying-party core.

All expiry decisions (pending state TTL, token expiry, claim windows, JWKS
refresh throttling) depend on an injected ``Clock`` rather than calling
``time.time()`` directly.

Example
-------
>>> from oidc_rp.core.clock import default_clock
>>> isinstance(default_clock(), float)
True
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable protocol returning *seconds* since the UNIX epoch."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    """Default implementation that delegates to ``time.time()``."""
    return time.time()


class FrozenClock:
    """Manually advanced clock for tests and deterministic replays."""

    def __init__(self, now: float) -> None:
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
