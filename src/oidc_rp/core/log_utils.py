"""Logging helpers that keep credentials out of log records.

Flow loggers carry a fixed set of context attributes and nothing else:

``flow_id``
    leading characters of the state nonce, enough to correlate log lines of
    one login attempt but useless for replaying it
``client_id``
    the OAuth client id (public)
``correlation_id``
    per-request id assigned by the web layer

>>> log = get_auth_logger(flow_id="q3Jx0c9ZVu8k", client_id="test_client")
>>> log.warning("Callback rejected")  # doctest: +SKIP
"""

from __future__ import annotations

import logging
from typing import Any, Final, Mapping, MutableMapping

#: Characters of a state nonce that may appear in logs.
FLOW_ID_CHARS: Final[int] = 6

_CONTEXT_KEYS: Final[tuple[str, ...]] = ("flow_id", "client_id", "correlation_id")


def mask_sensitive(value: str | None, keep: int = 4) -> str:
    """Return the first *keep* characters of *value* followed by a fixed mask."""
    if not value:
        return "<empty>"
    if len(value) <= keep:
        return "*" * len(value)
    return value[:keep] + "****"


class _FlowLoggerAdapter(logging.LoggerAdapter):
    def __init__(self, logger: logging.Logger, context: Mapping[str, Any]) -> None:
        allowed = {k: v for k, v in context.items() if k in _CONTEXT_KEYS and v is not None}
        if "flow_id" in allowed:
            allowed["flow_id"] = str(allowed["flow_id"])[:FLOW_ID_CHARS]
        super().__init__(logger, allowed)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        # call-site extras win over the bound context
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_auth_logger(
    *,
    base_logger_name: str = "oidc-rp.core",
    flow_id: str | None = None,
    client_id: str | None = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return an adapter over *base_logger_name* bound to one login flow."""
    return _FlowLoggerAdapter(
        logging.getLogger(base_logger_name),
        dict(flow_id=flow_id, client_id=client_id, correlation_id=correlation_id),
    )
