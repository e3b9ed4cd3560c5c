"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic) -- dataclasses own
domain shape; the store and the service do the work.

Layer rule: stdlib only.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

ROLE_USER = "user"
ROLE_TALENT = "talent"
ROLE_ADMIN = "admin"

ROLES = (ROLE_USER, ROLE_TALENT, ROLE_ADMIN)
# Roles a client may pick for itself on register / first federated login.
SELF_ASSIGNABLE_ROLES = (ROLE_USER, ROLE_TALENT)


@dataclass
class Account:
    """A marketplace identity: task poster, talent, or admin.

    hashed_password is None for accounts created by federated login.
    google_id is None until the account signs in with Google at least once.
    At least one of the two must be present (see is_usable()).

    refresh_token / refresh_token_expiry are only written when refresh-token
    persistence is enabled. password_reset_token holds the SHA-256 hex digest
    of the emailed token, never the token itself.
    """

    name: str
    email: str
    role: str = ROLE_USER
    id: str | None = None
    hashed_password: str | None = None  # None = federated-only account
    google_id: str | None = None
    picture: str | None = None
    refresh_token: str | None = None
    refresh_token_expiry: datetime | None = None
    password_reset_token: str | None = None
    password_reset_expire: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_usable(self) -> bool:
        return bool(self.hashed_password) or bool(self.google_id)

    def public_view(self) -> dict:
        """Return the client-facing fields. Credentials and token linkage are excluded."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "google_id": self.google_id,
            "picture": self.picture,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime


@dataclass(frozen=True)
class AccessClaims:
    subject_id: str
    role: str


@dataclass(frozen=True)
class RefreshClaims:
    subject_id: str


@dataclass(frozen=True)
class ResetToken:
    """A freshly generated reset credential.

    plain goes out by email only; hashed and expires_at are what gets stored.
    """

    plain: str
    hashed: str
    expires_at: datetime


@dataclass(frozen=True)
class FederatedIdentity:
    """Identity extracted from a verified Google id_token."""

    email: str
    subject: str
    name: str | None = None
    picture: str | None = None


@dataclass(frozen=True)
class AuthResult:
    """Outcome of register / login / federated login: the account plus a token pair."""

    account: Account
    access: IssuedToken
    refresh: IssuedToken


@dataclass(frozen=True)
class Session:
    """An authenticated request context, resolved from a bearer access token."""

    subject_id: str
    role: str
    account: Account
    token: str
