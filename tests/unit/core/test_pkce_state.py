"""
Unit tests for PKCE helpers and state nonce helpers.

These tests are CI-safe (no network), cover:
* Code-verifier / S256 challenge generation
* State nonce entropy, format and uniqueness
"""

from __future__ import annotations

import base64
import re
from hashlib import sha256

import pytest

from oidc_rp.core.pkce import code_challenge_s256, generate_code_verifier
from oidc_rp.core.state import is_well_formed_nonce, new_state_nonce

ALLOWED_CHARS_RE = re.compile(r"^[A-Za-z0-9\-._~]+$")  # RFC-7636


# --------------------------------------------------------------------------- #
# PKCE                                                                        #
# --------------------------------------------------------------------------- #
def test_generate_code_verifier_default_length() -> None:
    verifier = generate_code_verifier()
    assert 43 <= len(verifier) <= 128
    assert ALLOWED_CHARS_RE.match(verifier), "Verifier contains non-RFC chars"


def test_generate_code_verifier_invalid_len() -> None:
    with pytest.raises(ValueError):
        generate_code_verifier(42)
    with pytest.raises(ValueError):
        generate_code_verifier(129)


def test_code_challenge_s256_matches_reference() -> None:
    verifier = "test_verifier_1234567890"
    digest = sha256(verifier.encode("ascii")).digest()
    expected = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    assert code_challenge_s256(verifier) == expected


def test_code_challenge_rfc7636_appendix_b() -> None:
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
    assert code_challenge_s256(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


# --------------------------------------------------------------------------- #
# STATE NONCE                                                                 #
# --------------------------------------------------------------------------- #
def test_nonce_has_at_least_128_bits() -> None:
    nonce = new_state_nonce()
    # token_urlsafe encodes 6 bits per character
    assert len(nonce) * 6 >= 128
    assert is_well_formed_nonce(nonce)


def test_nonce_rejects_low_entropy_request() -> None:
    with pytest.raises(ValueError):
        new_state_nonce(8)


def test_nonces_are_unique() -> None:
    nonces = {new_state_nonce() for _ in range(10_000)}
    assert len(nonces) == 10_000


@pytest.mark.parametrize(
    "value",
    [None, "", "short", "has space in it and is long enough", "../../etc/passwd/aaaaaaaaaaaaaa"],
)
def test_malformed_nonces_are_rejected(value) -> None:
    assert not is_well_formed_nonce(value)
