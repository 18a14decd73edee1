"""Proof Key for Code Exchange (RFC 7636).

The verifier stays on the server inside the pending
:class:`~oidc_rp.core.models.AuthRequestState`; only its S256 challenge
goes through the browser.  ``plain`` is not supported.

Verifiers and challenges are never logged.
"""

from __future__ import annotations

import base64
import secrets
from hashlib import sha256
from typing import Final

MIN_VERIFIER_LENGTH: Final[int] = 43
MAX_VERIFIER_LENGTH: Final[int] = 128
DEFAULT_VERIFIER_LENGTH: Final[int] = 64

CODE_CHALLENGE_METHOD: Final[str] = "S256"


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_code_verifier(length: int = DEFAULT_VERIFIER_LENGTH) -> str:
    """Return a random verifier of exactly *length* characters.

    The base64url alphabet is a subset of the RFC's unreserved characters.

    Raises
    ------
    ValueError
        If *length* is outside 43-128.
    """
    if not MIN_VERIFIER_LENGTH <= length <= MAX_VERIFIER_LENGTH:
        raise ValueError(
            f"code verifier length must be {MIN_VERIFIER_LENGTH}-{MAX_VERIFIER_LENGTH} characters"
        )
    # 3 bytes encode to 4 characters
    raw = secrets.token_bytes((length * 3) // 4 + 3)
    return _b64url(raw)[:length]


def code_challenge_s256(verifier: str) -> str:
    """BASE64URL(SHA256(ASCII(verifier))), unpadded."""
    return _b64url(sha256(verifier.encode("ascii")).digest())
