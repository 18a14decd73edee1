"""State nonce helpers for the authorization-code flow.

The ``state`` parameter binds the provider's callback to the browser session
that started the flow and protects against CSRF.  Each login attempt gets a
fresh nonce drawn from :mod:`secrets`; the nonce is the key under which the
pending :class:`~oidc_rp.core.models.AuthRequestState` is stored and it is
single-use.

Callback values are attacker controlled, so :func:`is_well_formed_nonce` is
applied before a value is used as a lookup key.

Logging
-------
Only the first characters of a nonce are ever logged (see
:func:`~oidc_rp.core.log_utils.mask_sensitive`).
"""

from __future__ import annotations

import re
import secrets
from typing import Final

#: 32 random bytes, i.e. 256 bits of entropy.
NONCE_BYTES: Final[int] = 32

# token_urlsafe output; lengths above 43 chars accommodate larger nonces.
_NONCE_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9_-]{22,128}$")


def new_state_nonce(nbytes: int = NONCE_BYTES) -> str:
    """Return a URL-safe random nonce with at least 128 bits of entropy."""
    if nbytes < 16:
        raise ValueError("state nonce needs at least 16 random bytes")
    return secrets.token_urlsafe(nbytes)


def is_well_formed_nonce(value: str | None) -> bool:
    """Return *True* if *value* could have been produced by :func:`new_state_nonce`."""
    return bool(value) and _NONCE_RE.match(value) is not None
