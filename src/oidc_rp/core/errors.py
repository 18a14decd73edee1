"""Exception types raised by the relying-party core.

Only lightweight, **data-carrying** exceptions live here so that web/CLI layers
can transform them into HTTP responses.  ``to_payload`` never includes codes,
tokens or client secrets.
"""

from __future__ import annotations

from typing import Any


class OIDCError(Exception):
    """Base class of every error raised while running a login flow."""

    code: str = "oidc_error"
    #: Failures that hint at tampering, replay or forged tokens.
    security_event: bool = False

    def to_payload(self) -> dict[str, Any]:
        """Return a JSON-serialisable payload **without secrets**."""
        return {"error": self.code, "message": str(self)}


class ConfigError(OIDCError):
    """Raised for missing or malformed configuration (fatal at startup)."""

    code = "config_error"


class InvalidState(OIDCError):
    """Raised when a callback ``state`` is unknown, expired or already used."""

    code = "invalid_state"
    security_event = True

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "Unknown, expired or already consumed state.")


class TransportError(OIDCError):
    """Network-level failure talking to the provider (timeout, DNS, reset)."""

    code = "transport_error"

    def __init__(self, message: str, *, attempts: int = 1) -> None:
        super().__init__(message)
        self.attempts = attempts

    def to_payload(self) -> dict[str, Any]:
        return {**super().to_payload(), "attempts": self.attempts}


class TokenEndpointError(OIDCError):
    """The token endpoint rejected the request or answered garbage."""

    code = "token_endpoint_error"

    def __init__(
        self,
        status: int,
        provider_error_code: str,
        description: str | None = None,
    ) -> None:
        message = f"Token endpoint returned {status}: {provider_error_code}"
        if description:
            message = f"{message} ({description})"
        super().__init__(message)
        self.status = status
        self.provider_error_code = provider_error_code
        self.description = description

    def to_payload(self) -> dict[str, Any]:
        return {
            **super().to_payload(),
            "status": self.status,
            "provider_error_code": self.provider_error_code,
        }


class UnknownSigningKey(OIDCError):
    """No published key matches the ID token's ``kid``."""

    code = "unknown_signing_key"
    security_event = True

    def __init__(self, kid: str | None) -> None:
        super().__init__(f"No signing key for kid={kid!r}")
        self.kid = kid


class SignatureInvalid(OIDCError):
    """The ID token is malformed or its signature does not verify."""

    code = "signature_invalid"
    security_event = True


class ClaimInvalid(OIDCError):
    """A registered claim failed validation; ``which`` names the claim."""

    code = "claim_invalid"
    security_event = True

    def __init__(self, which: str, message: str | None = None) -> None:
        super().__init__(message or f"Invalid '{which}' claim")
        self.which = which

    def to_payload(self) -> dict[str, Any]:
        return {**super().to_payload(), "claim": self.which}


class FlowFailed(OIDCError):
    """Terminal failure of a login flow.

    ``reason`` is the ``code`` of the underlying error and ``stage`` the flow
    stage that was active when it happened.  The cause is chained.
    """

    code = "sign_in_failed"

    def __init__(self, *, reason: str, stage: str) -> None:
        super().__init__(f"Sign-in failed during {stage}: {reason}")
        self.reason = reason
        self.stage = stage

    def to_payload(self) -> dict[str, Any]:
        # shown to end users as is
        return {"error": self.code}
