"""
auth/errors.py -- Error taxonomy for the authentication layer.

AuthError subclasses carry an HTTP status and a user-safe message. The API
layer turns them into the {"success": false, "message": ...} envelope; the
service never builds HTTP responses itself.

TokenError is internal: it records *why* a token was rejected (invalid,
expired, revoked) so the guard can pick the session-expired message and logs
can tell the cases apart. Login and forgot-password deliberately collapse
their failure reasons into one message before anything reaches the client.

Layer rule: stdlib only.
"""

from __future__ import annotations

from enum import Enum


class AuthError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class BadRequestError(AuthError):
    status_code = 400


class UnauthorizedError(AuthError):
    status_code = 401


class ForbiddenError(AuthError):
    status_code = 403


class NotFoundError(AuthError):
    status_code = 404


class ConflictError(AuthError):
    status_code = 409


class InternalError(AuthError):
    status_code = 500


class TokenErrorKind(str, Enum):
    INVALID = "invalid"
    EXPIRED = "expired"
    REVOKED = "revoked"


class TokenError(Exception):
    """Raised by TokenCodec verification. Never serialized directly."""

    def __init__(self, kind: TokenErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


class TokenConfigurationError(RuntimeError):
    """A signing secret is missing. Fatal misconfiguration, not a client error."""


class IdentityVerificationError(Exception):
    """The identity provider rejected the token or returned no usable identity."""


class IdentityProviderNotConfigured(Exception):
    """Federated login was attempted without a configured client id."""


class EmailDeliveryError(Exception):
    """The mail dispatcher could not deliver a message."""
