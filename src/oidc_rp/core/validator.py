"""ID token verification.

A token is only trusted after **both** of the following pass:

1. the JWS signature verifies with a key published by the provider (looked
   up by ``kid`` in the :class:`~oidc_rp.core.jwks.JWKSCache`), using one of
   the allowed asymmetric algorithms;
2. the registered claims match this client: ``iss`` exactly, ``aud``
   containing the client id, ``azp`` when several audiences are present, and
   ``iat``/``exp`` within the configured clock skew.

Every failure raises; there is no "decode without verifying" path.
"""

from __future__ import annotations

import logging
from typing import Any, Final, Iterable, Mapping

import jwt

from oidc_rp.core.clock import Clock, default_clock
from oidc_rp.core.errors import ClaimInvalid, SignatureInvalid, UnknownSigningKey
from oidc_rp.core.jwks import JWKSCache
from oidc_rp.core.models import ProviderConfig, TokenSet, ValidatedClaims

_LOG = logging.getLogger("oidc-rp.core.validator")

DEFAULT_CLOCK_SKEW: Final[int] = 60

DEFAULT_ALGORITHMS: Final[tuple[str, ...]] = (
    "RS256",
    "RS384",
    "RS512",
    "PS256",
    "PS384",
    "PS512",
    "ES256",
    "ES384",
    "ES512",
)

_KEY_TYPES: Final[dict[str, str]] = {"RS": "RSA", "PS": "RSA", "ES": "EC"}

# Claim checks are done below so that each failure can name its claim.
_SIGNATURE_ONLY: Final[dict[str, bool]] = {
    "verify_signature": True,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
    "verify_sub": False,
    "verify_jti": False,
}


def _numeric_claim(claims: Mapping[str, Any], name: str) -> int:
    value = claims.get(name)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ClaimInvalid(name, f"'{name}' claim missing or not numeric")
    return int(value)


def _audience(claims: Mapping[str, Any]) -> tuple[str, ...]:
    aud = claims.get("aud")
    if isinstance(aud, str):
        return (aud,)
    if isinstance(aud, list) and all(isinstance(a, str) for a in aud):
        return tuple(aud)
    raise ClaimInvalid("aud", "'aud' claim missing or malformed")


class TokenValidator:
    """Verify ID tokens issued to ``config.client_id`` by ``config.issuer``."""

    def __init__(
        self,
        config: ProviderConfig,
        jwks_cache: JWKSCache,
        *,
        clock_skew: int = DEFAULT_CLOCK_SKEW,
        algorithms: Iterable[str] = DEFAULT_ALGORITHMS,
        clock: Clock = default_clock,
    ) -> None:
        self.config = config
        self.jwks_cache = jwks_cache
        self.clock_skew = clock_skew
        self.algorithms = tuple(a for a in algorithms if a[:2] in _KEY_TYPES)
        if not self.algorithms:
            raise ValueError("at least one asymmetric algorithm must be allowed")
        self._clock = clock

    def validate(self, token_set: TokenSet) -> ValidatedClaims:
        """Return :class:`ValidatedClaims` for ``token_set.id_token``.

        Raises
        ------
        UnknownSigningKey
            ``kid`` missing or not published, even after a JWKS refresh.
        SignatureInvalid
            Malformed token, disallowed algorithm or signature mismatch.
        ClaimInvalid
            A registered claim failed; ``which`` names it.
        """
        token = token_set.id_token
        claims = self._verify_signature(token)
        validated = self._check_claims(claims)
        _LOG.debug("ID token verified for sub=%s", validated.subject)
        return validated

    # ------------------------------------------------------------------ #
    # signature                                                          #
    # ------------------------------------------------------------------ #
    def _verify_signature(self, token: str) -> dict[str, Any]:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError:
            raise SignatureInvalid("malformed ID token") from None

        alg = header.get("alg")
        if alg not in self.algorithms:
            raise SignatureInvalid(f"algorithm {alg!r} not allowed")
        kid = header.get("kid")
        if not kid:
            raise UnknownSigningKey(None)

        key = self.jwks_cache.get_signing_key(str(kid))
        if key.key_type != _KEY_TYPES[alg[:2]]:
            raise SignatureInvalid(f"key kid={kid!r} cannot verify {alg}")

        try:
            claims = jwt.decode(token, key=key.key, algorithms=[alg], options=_SIGNATURE_ONLY)
        except jwt.InvalidSignatureError:
            raise SignatureInvalid("ID token signature mismatch") from None
        except jwt.InvalidTokenError as exc:
            raise SignatureInvalid(f"ID token rejected: {type(exc).__name__}") from None
        if not isinstance(claims, dict):
            raise SignatureInvalid("ID token payload is not a JSON object")
        return claims

    # ------------------------------------------------------------------ #
    # claims                                                             #
    # ------------------------------------------------------------------ #
    def _check_claims(self, claims: dict[str, Any]) -> ValidatedClaims:
        config = self.config
        if claims.get("iss") != config.issuer:
            raise ClaimInvalid("iss", "issuer does not match the configured provider")

        audience = _audience(claims)
        if config.client_id not in audience:
            raise ClaimInvalid("aud", "token was not issued for this client")
        azp = claims.get("azp")
        if len(audience) > 1 and azp is not None and azp != config.client_id:
            raise ClaimInvalid("azp", "authorized party is another client")

        now = self._clock()
        expiry = _numeric_claim(claims, "exp")
        if now > expiry + self.clock_skew:
            raise ClaimInvalid("exp", "token has expired")
        issued_at = _numeric_claim(claims, "iat")
        if now < issued_at - self.clock_skew:
            raise ClaimInvalid("iat", "token issued in the future")

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise ClaimInvalid("sub", "'sub' claim missing")

        return ValidatedClaims(
            subject=subject,
            issuer=claims["iss"],
            audience=audience,
            expiry=expiry,
            issued_at=issued_at,
            raw_claims=claims,
        )


def validate_id_token(
    config: ProviderConfig,
    token_set: TokenSet,
    jwks_cache: JWKSCache,
    **kwargs: Any,
) -> ValidatedClaims:
    """One-shot wrapper around :meth:`TokenValidator.validate`."""
    return TokenValidator(config, jwks_cache, **kwargs).validate(token_set)
