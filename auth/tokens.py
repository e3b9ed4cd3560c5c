"""
auth/tokens.py -- JWT codec, password hashing, and password-reset tokens.

Security design decisions:
  JWT: python-jose with HS256. Access tokens carry sub, role, type, iat, exp
       and a random jti; refresh tokens carry the same minus role. The type
       claim stops a refresh token from passing as an access token when both
       are signed with the fallback secret. The jti keeps two tokens issued in
       the same second distinct, so revoking one never revokes the other.

       Verification order is revoked -> invalid -> expired. Expiry is checked
       against the codec's own clock (not jose's) so tests can move time.

  Passwords: bcrypt directly (no passlib wrapper). The dummy hash enables
       timing equalization in AuthService.login() so response time does not
       reveal whether an email exists [C1].

  Reset tokens: secrets.token_hex(32) gives 256 bits of entropy. Only the
       SHA-256 digest is stored, so a database leak does not expose usable
       reset links. A plain digest (not HMAC) keeps outstanding links valid
       across a JWT secret rotation; the token's entropy already makes
       brute-force infeasible.

Layer rule: no imports from api/ or mail/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from functools import lru_cache

import bcrypt
from jose import JWTError, jwt

from auth.errors import TokenConfigurationError, TokenError, TokenErrorKind
from auth.models import AccessClaims, IssuedToken, RefreshClaims, ResetToken
from auth.revocation import RevocationRegistry
from core.config import Settings

logger = logging.getLogger("localmarket.auth.tokens")

_ALGORITHM = "HS256"

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


_BCRYPT_MAX_BYTES = 72


def _pw_bytes(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt only reads the first 72 bytes; longer input is cut here because
    bcrypt>=5 raises instead of truncating.
    """
    return bcrypt.hashpw(_pw_bytes(plain), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(_pw_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


@lru_cache(maxsize=4)
def dummy_hash(rounds: int = 12) -> str:
    """Hash used when there is no real one to compare against [C1].

    Cached per cost factor so the equalizing comparison costs the same as a
    real one for the configured rounds.
    """
    return hash_password("localmarket_timing_dummy", rounds=rounds)


# ---------------------------------------------------------------------------
# JWT codec
# ---------------------------------------------------------------------------


class TokenCodec:
    """Stateless issue/verify of access and refresh tokens.

    The only stateful collaborator is the revocation registry, consulted
    before any cryptographic check.
    """

    def __init__(
        self,
        *,
        access_secret: str,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        registry: RevocationRegistry,
        refresh_secret: str = "",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret or access_secret
        self._access_ttl = access_ttl
        self._refresh_ttl = refresh_ttl
        self._registry = registry
        self._clock = clock
        if access_secret and not refresh_secret:
            logger.warning("JWT_REFRESH_SECRET not set -- refresh tokens are signed with the access-token secret")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        registry: RevocationRegistry,
        clock: Callable[[], datetime] = utcnow,
    ) -> TokenCodec:
        return cls(
            access_secret=settings.jwt_secret,
            refresh_secret=settings.jwt_refresh_secret,
            access_ttl=timedelta(seconds=settings.jwt_expire_seconds),
            refresh_ttl=timedelta(seconds=settings.jwt_refresh_expire_seconds),
            registry=registry,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access_token(self, subject_id: str, role: str) -> IssuedToken:
        """Sign an access token. Expiry = now + configured access TTL."""
        return self._issue(
            {"sub": subject_id, "role": role, "type": ACCESS_TOKEN_TYPE},
            self._access_secret,
            self._access_ttl,
        )

    def issue_refresh_token(self, subject_id: str) -> IssuedToken:
        """Sign a refresh token with the refresh secret (or the access secret as fallback)."""
        return self._issue(
            {"sub": subject_id, "type": REFRESH_TOKEN_TYPE},
            self._refresh_secret,
            self._refresh_ttl,
        )

    def _issue(self, claims: dict, secret: str, ttl: timedelta) -> IssuedToken:
        if not secret:
            raise TokenConfigurationError("JWT signing secret is not configured")
        now = self._clock()
        exp = int((now + ttl).timestamp())
        payload = {
            **claims,
            "iat": int(now.timestamp()),
            "exp": exp,
            "jti": secrets.token_hex(8),
        }
        token = jwt.encode(payload, secret, algorithm=_ALGORITHM)
        return IssuedToken(token=token, expires_at=datetime.fromtimestamp(exp, tz=timezone.utc))

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_access_token(self, token: str) -> AccessClaims:
        """Return the access claims or raise TokenError (revoked / invalid / expired)."""
        payload = self._verify(token, self._access_secret, ACCESS_TOKEN_TYPE, "Token", "Invalid token")
        role = payload.get("role")
        if not isinstance(role, str):
            raise TokenError(TokenErrorKind.INVALID, "Invalid token")
        return AccessClaims(subject_id=payload["sub"], role=role)

    def verify_refresh_token(self, token: str) -> RefreshClaims:
        """Return the refresh claims or raise TokenError (revoked / invalid / expired)."""
        payload = self._verify(
            token, self._refresh_secret, REFRESH_TOKEN_TYPE, "Refresh token", "Invalid refresh token"
        )
        return RefreshClaims(subject_id=payload["sub"])

    def _verify(self, token: str, secret: str, expected_type: str, label: str, invalid_message: str) -> dict:
        if not token:
            raise TokenError(TokenErrorKind.INVALID, invalid_message)
        if self._registry.is_revoked(token):
            raise TokenError(TokenErrorKind.REVOKED, f"{label} has been revoked")
        try:
            # Expiry is checked below against self._clock.
            payload = jwt.decode(token, secret, algorithms=[_ALGORITHM], options={"verify_exp": False})
        except JWTError as exc:
            raise TokenError(TokenErrorKind.INVALID, invalid_message) from exc
        exp = payload.get("exp")
        if (
            payload.get("type") != expected_type
            or not isinstance(payload.get("sub"), str)
            or not isinstance(exp, (int, float))
        ):
            raise TokenError(TokenErrorKind.INVALID, invalid_message)
        if exp <= self._clock().timestamp():
            raise TokenError(TokenErrorKind.EXPIRED, f"{label} expired")
        return payload

    # ------------------------------------------------------------------
    # Revoke
    # ------------------------------------------------------------------

    def expiry_of(self, token: str) -> datetime | None:
        """Read the exp claim without verifying the signature. None if undecodable."""
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError:
            return None
        exp = claims.get("exp")
        if not isinstance(exp, (int, float)):
            return None
        return datetime.fromtimestamp(exp, tz=timezone.utc)

    def revoke(self, token: str) -> bool:
        """Blacklist token until its own expiry. Best effort: undecodable tokens are ignored."""
        expires_at = self.expiry_of(token) if token else None
        if expires_at is None:
            logger.debug("Ignoring revocation of undecodable token")
            return False
        if expires_at <= self._clock():
            # Already dead; nothing to remember.
            return True
        self._registry.revoke(token, expires_at)
        return True


# ---------------------------------------------------------------------------
# Password reset tokens
# ---------------------------------------------------------------------------


def hash_reset_token(plain: str) -> str:
    """Return the SHA-256 hex digest stored in place of the reset token."""
    return hashlib.sha256(plain.encode("utf-8")).hexdigest()


class ResetTokenGenerator:
    """Produce single-use, time-boxed password reset credentials."""

    def __init__(self, ttl: timedelta = timedelta(minutes=10), clock: Callable[[], datetime] = utcnow) -> None:
        self._ttl = ttl
        self._clock = clock

    def generate(self) -> ResetToken:
        plain = secrets.token_hex(32)
        return ResetToken(plain=plain, hashed=hash_reset_token(plain), expires_at=self._clock() + self._ttl)
