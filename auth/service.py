"""
auth/service.py -- Authentication flows: register, login, Google login,
session lookup, logout, refresh, forgot/reset password.

AuthService is the only place with business rules. It talks to its
collaborators through narrow interfaces:
  AccountStore          -- persistence (auth/store.py)
  TokenCodec            -- JWT issue / verify / revoke (auth/tokens.py)
  ResetTokenGenerator   -- password reset credentials (auth/tokens.py)
  IdentityVerifier      -- Google id_token check (auth/google.py)
  Notifier              -- welcome / reset emails (mail/dispatcher.py)

Every failure leaves as an AuthError subclass with a client-safe message.
Collaborator detail (SQL errors, SMTP errors, Google's rejection reason) is
logged here and never returned.

Account-enumeration resistance [C1]:
  - login() answers "Invalid credentials" for unknown email, password-less
    account and wrong password alike, and runs one bcrypt comparison in all
    three cases so timing does not differ either.
  - forgot_password() returns the same message whether or not the email
    exists.

Refresh-token persistence:
  When persist_refresh_tokens is on (production by default) the latest
  refresh token and its expiry are mirrored onto the account. refresh() then
  only honours that exact token, and logout() clearing it revokes the session
  server-side. When off, only the revocation registry can kill a refresh
  token -- clients should hand it to logout().
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Protocol

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    BadRequestError,
    ConflictError,
    IdentityProviderNotConfigured,
    IdentityVerificationError,
    InternalError,
    NotFoundError,
    TokenConfigurationError,
    TokenError,
    TokenErrorKind,
    UnauthorizedError,
)
from auth.models import (
    ROLE_ADMIN,
    ROLE_USER,
    SELF_ASSIGNABLE_ROLES,
    Account,
    AuthResult,
    FederatedIdentity,
    IssuedToken,
    Session,
)
from auth.store import AccountStore
from auth.tokens import (
    ResetTokenGenerator,
    TokenCodec,
    dummy_hash,
    hash_password,
    hash_reset_token,
    utcnow,
    verify_password,
)
from core.config import Settings

logger = logging.getLogger("localmarket.auth")

INVALID_CREDENTIALS = "Invalid credentials"
RESET_EMAIL_SENT = "If an account exists, a password reset email will be sent"
INVALID_RESET_TOKEN = "Invalid or expired token"
NOT_AUTHORIZED = "Not authorized to access this resource"
SESSION_EXPIRED = "Your session has expired. Please log in again."


class IdentityVerifier(Protocol):
    def verify(self, token: str) -> FederatedIdentity: ...


class Notifier(Protocol):
    def send_welcome(self, account: Account) -> None: ...
    def send_password_reset(self, email: str, token: str, name: str) -> None: ...


class AuthService:
    def __init__(
        self,
        *,
        store: AccountStore,
        codec: TokenCodec,
        reset_tokens: ResetTokenGenerator,
        identity_verifier: IdentityVerifier,
        notifier: Notifier,
        persist_refresh_tokens: bool = False,
        bcrypt_rounds: int = 12,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.codec = codec
        self.reset_tokens = reset_tokens
        self.identity_verifier = identity_verifier
        self.notifier = notifier
        self.persist_refresh_tokens = persist_refresh_tokens
        self.bcrypt_rounds = bcrypt_rounds
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        store: AccountStore,
        codec: TokenCodec,
        identity_verifier: IdentityVerifier,
        notifier: Notifier,
        clock: Callable[[], datetime] = utcnow,
    ) -> AuthService:
        return cls(
            store=store,
            codec=codec,
            reset_tokens=ResetTokenGenerator(timedelta(seconds=settings.reset_token_expire_seconds), clock=clock),
            identity_verifier=identity_verifier,
            notifier=notifier,
            persist_refresh_tokens=bool(settings.persist_refresh_tokens),
            bcrypt_rounds=settings.bcrypt_rounds,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    def register(self, name: str, email: str, password: str, role: str | None = None) -> AuthResult:
        """Create a password account and open a session for it.

        A failed welcome email is logged and otherwise ignored.
        """
        if not name or not email or not password:
            raise BadRequestError("Please provide a name, email and password")
        if self.store.find_by_email(email) is not None:
            raise ConflictError("Email already registered")

        account = Account(
            name=name,
            email=email,
            role=role if role in SELF_ASSIGNABLE_ROLES else ROLE_USER,
            hashed_password=hash_password(password, rounds=self.bcrypt_rounds),
        )
        try:
            account = self.store.create(account)
        except IntegrityError as exc:
            # A concurrent request registered the same email first.
            raise ConflictError("Email already registered") from exc
        logger.info("Registered account %s (role=%s)", account.id, account.role)

        try:
            self.notifier.send_welcome(account)
        except Exception as exc:
            logger.warning("Welcome email failed for account %s: %s", account.id, exc)

        return self._open_session(account)

    def login(self, email: str, password: str) -> AuthResult:
        if not email or not password:
            raise BadRequestError("Please provide an email and password")

        account = self.store.find_by_email(email)
        if account is None or not account.hashed_password:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            verify_password(password, dummy_hash(self.bcrypt_rounds))
            raise UnauthorizedError(INVALID_CREDENTIALS)
        if not verify_password(password, account.hashed_password):
            raise UnauthorizedError(INVALID_CREDENTIALS)

        return self._open_session(account)

    def federated_login(self, id_token: str, role: str | None = None) -> AuthResult:
        """Sign in with a Google id_token, creating or linking the account as needed."""
        if not id_token:
            raise BadRequestError("No Google token provided")
        try:
            identity = self.identity_verifier.verify(id_token)
        except IdentityProviderNotConfigured as exc:
            logger.error("Google login attempted but not configured: %s", exc)
            raise InternalError("Google sign-in is not configured") from exc
        except IdentityVerificationError as exc:
            logger.info("Google token rejected: %s", exc)
            raise BadRequestError("Invalid Google token") from exc

        account = self.store.find_by_email(identity.email)
        if account is not None:
            self._link_google_identity(account, identity)
        else:
            # Same Google account, but the address changed on Google's side.
            account = self.store.find_by_google_id(identity.subject)
            if account is None:
                account = self._create_federated_account(identity, role)

        return self._open_session(account)

    def _link_google_identity(self, account: Account, identity: FederatedIdentity) -> None:
        if account.google_id:
            if account.google_id != identity.subject:
                # Existing linkage wins; the email itself is verified by Google.
                logger.warning("Account %s is linked to a different Google id; keeping it", account.id)
            return
        owner = self.store.find_by_google_id(identity.subject)
        if owner is not None and owner.id != account.id:
            raise ConflictError("Google account already linked to another user")
        try:
            linked = self.store.link_google_identity(account.id, identity.subject, identity.picture)
        except IntegrityError as exc:
            raise ConflictError("Google account already linked to another user") from exc
        if not linked:
            logger.warning("Account %s was linked to Google concurrently; keeping that link", account.id)
            return
        account.google_id = identity.subject
        account.picture = account.picture or identity.picture
        logger.info("Linked Google identity to account %s", account.id)

    def _create_federated_account(self, identity: FederatedIdentity, role: str | None) -> Account:
        account = Account(
            name=(identity.name or identity.email.split("@", 1)[0])[:50],
            email=identity.email,
            google_id=identity.subject,
            picture=identity.picture,
            role=role if role in SELF_ASSIGNABLE_ROLES else ROLE_USER,
        )
        try:
            account = self.store.create(account)
        except IntegrityError as exc:
            raise ConflictError("Account already exists") from exc
        logger.info("Created account %s from Google login (role=%s)", account.id, account.role)
        return account

    def create_admin(self, name: str, email: str, password: str) -> Account:
        """Create an admin account. Admins cannot self-register; the CLI calls this."""
        if not name or not email or not password:
            raise BadRequestError("Please provide a name, email and password")
        account = Account(
            name=name,
            email=email,
            role=ROLE_ADMIN,
            hashed_password=hash_password(password, rounds=self.bcrypt_rounds),
        )
        try:
            return self.store.create(account)
        except IntegrityError as exc:
            raise ConflictError("Email already registered") from exc

    def _open_session(self, account: Account) -> AuthResult:
        try:
            access = self.codec.issue_access_token(account.id, account.role)
            refresh = self.codec.issue_refresh_token(account.id)
        except TokenConfigurationError as exc:
            logger.critical("Token signing misconfigured: %s", exc)
            raise InternalError("Error generating authentication token") from exc

        if self.persist_refresh_tokens:
            account.refresh_token = refresh.token
            account.refresh_token_expiry = refresh.expires_at
            self.store.set_refresh_token(account.id, refresh.token, refresh.expires_at)

        return AuthResult(account=account, access=access, refresh=refresh)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def resolve_session(self, token: str | None) -> Session:
        """Turn a bearer access token into a Session, or raise UnauthorizedError."""
        if not token:
            raise UnauthorizedError("Not authorized, no token")
        try:
            claims = self.codec.verify_access_token(token)
        except TokenError as exc:
            logger.info("Rejected access token (%s)", exc.kind.value)
            message = SESSION_EXPIRED if exc.kind is TokenErrorKind.EXPIRED else NOT_AUTHORIZED
            raise UnauthorizedError(message) from exc

        account = self.store.find_by_id(claims.subject_id)
        if account is None:
            logger.info("Access token for vanished account %s", claims.subject_id)
            raise UnauthorizedError(NOT_AUTHORIZED)
        return Session(subject_id=claims.subject_id, role=claims.role, account=account, token=token)

    def get_current_account(self, subject_id: str) -> Account:
        account = self.store.find_by_id(subject_id)
        if account is None:
            raise NotFoundError("User not found")
        return account

    def logout(
        self,
        access_token: str | None,
        account: Account | None = None,
        refresh_token: str | None = None,
    ) -> None:
        """Revoke the presented tokens and drop the mirrored refresh token. Idempotent."""
        if not access_token:
            return
        self.codec.revoke(access_token)

        if refresh_token:
            try:
                claims = self.codec.verify_refresh_token(refresh_token)
            except TokenError:
                claims = None
            # Only the caller's own live refresh token is worth remembering.
            if claims is not None and account is not None and claims.subject_id == account.id:
                self.codec.revoke(refresh_token)

        if account is not None:
            self.store.clear_refresh_token(account.id)
            logger.info("Account %s logged out", account.id)

    def refresh(self, refresh_token: str | None) -> IssuedToken:
        """Exchange a refresh token for a new access token. The refresh token is not rotated."""
        if not refresh_token:
            raise BadRequestError("Refresh token is required")
        try:
            claims = self.codec.verify_refresh_token(refresh_token)
        except TokenError as exc:
            logger.info("Rejected refresh token (%s)", exc.kind.value)
            raise UnauthorizedError(exc.message) from exc

        account = self.store.find_by_id(claims.subject_id)
        if account is None:
            raise UnauthorizedError("User not found")

        if self.persist_refresh_tokens:
            expiry = account.refresh_token_expiry
            if account.refresh_token != refresh_token or expiry is None or expiry <= self.clock():
                logger.info("Refresh token for account %s does not match the stored session", account.id)
                raise UnauthorizedError("Refresh token has been revoked")

        try:
            return self.codec.issue_access_token(account.id, account.role)
        except TokenConfigurationError as exc:
            logger.critical("Token signing misconfigured: %s", exc)
            raise InternalError("Error generating authentication token") from exc

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str | None) -> str:
        """Email a reset link if the account exists. The reply is identical either way."""
        if not email:
            raise BadRequestError("Please provide an email address")

        account = self.store.find_by_email(email)
        if account is None:
            logger.info("Password reset requested for unknown email")
            return RESET_EMAIL_SENT

        reset = self.reset_tokens.generate()
        account.password_reset_token = reset.hashed
        account.password_reset_expire = reset.expires_at
        self.store.set_password_reset(account.id, reset.hashed, reset.expires_at)

        try:
            self.notifier.send_password_reset(email=account.email, token=reset.plain, name=account.name)
        except Exception as exc:
            account.password_reset_token = None
            account.password_reset_expire = None
            self.store.set_password_reset(account.id, None, None)
            logger.error("Password reset email failed for account %s: %s", account.id, exc)
            raise InternalError("Email could not be sent") from exc

        logger.info("Password reset issued for account %s", account.id)
        return RESET_EMAIL_SENT

    def reset_password(self, token: str | None, password: str | None) -> str:
        """Consume a reset token and set a new password."""
        if not password:
            raise BadRequestError("Please provide a new password")
        if not token:
            raise BadRequestError("Invalid reset token")

        token_hash = hash_reset_token(token)
        now = self.clock()
        account = self.store.find_by_reset_token(token_hash, now)
        if account is None:
            raise BadRequestError(INVALID_RESET_TOKEN)

        hashed = hash_password(password, rounds=self.bcrypt_rounds)
        if not self.store.complete_password_reset(account.id, token_hash, hashed, now):
            # Consumed by a concurrent request between lookup and update.
            raise BadRequestError(INVALID_RESET_TOKEN)

        logger.info("Password reset completed for account %s", account.id)
        return "Password reset successful"
