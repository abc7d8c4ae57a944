"""
Error taxonomy shared by the session manager, the stores and the chat flow.

Authentication errors are recoverable by sending the user through sign-in
again. Integrity errors are never recovered from.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for all domain errors raised by this package."""


class AuthenticationRequired(GatewayError):
    """The caller must restart the sign-in flow."""


class InvalidState(AuthenticationRequired):
    """OAuth state token is missing, expired, replayed or forged."""


class NoSessionExists(AuthenticationRequired):
    """No credential session is stored for the owner."""


class SessionExpired(AuthenticationRequired):
    """Stored session expired and cannot be refreshed."""


class InvalidIdentityContext(GatewayError):
    """Broker token is malformed or lacks the identity context claim."""


class IntegrityError(GatewayError):
    """Encrypted data could not be authenticated."""


class ContextMismatch(IntegrityError):
    """Ciphertext is bound to a different encryption context."""


class DecryptionFailure(IntegrityError):
    """Ciphertext is malformed or failed authentication."""


class UpstreamHttpError(GatewayError):
    """Identity provider or identity broker was unreachable or rejected a call."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ChatBackendError(GatewayError):
    """The chat backend call failed or its event stream broke."""


__all__ = [
    "AuthenticationRequired",
    "ChatBackendError",
    "ContextMismatch",
    "DecryptionFailure",
    "GatewayError",
    "IntegrityError",
    "InvalidIdentityContext",
    "InvalidState",
    "NoSessionExists",
    "SessionExpired",
    "UpstreamHttpError",
]
