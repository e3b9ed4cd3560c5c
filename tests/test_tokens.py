"""Unit tests for auth/tokens.py -- token codec, password hashing, reset tokens.

Covers:
- access/refresh issue + verify, expiry instants follow the configured TTLs
- verification order: revoked -> invalid -> expired
- token type confusion is rejected even with a shared secret
- tampered / foreign-secret tokens are invalid
- revoke() is idempotent and ignores garbage
- bcrypt helpers and the dummy hash
- reset tokens: 64 hex chars, stored as SHA-256, expire after the TTL
"""

from datetime import timedelta

import pytest
from jose import jwt

from auth.errors import TokenConfigurationError, TokenError, TokenErrorKind
from auth.revocation import InMemoryRevocationRegistry
from auth.tokens import (
    ResetTokenGenerator,
    TokenCodec,
    dummy_hash,
    hash_password,
    hash_reset_token,
    verify_password,
)
from conftest import ACCESS_SECRET, REFRESH_SECRET, Clock
from core.config import Settings


@pytest.fixture
def codec(clock: Clock) -> TokenCodec:
    return TokenCodec(
        access_secret=ACCESS_SECRET,
        refresh_secret=REFRESH_SECRET,
        access_ttl=timedelta(hours=1),
        refresh_ttl=timedelta(days=7),
        registry=InMemoryRevocationRegistry(clock=clock),
        clock=clock,
    )


def _kind(exc_info) -> TokenErrorKind:
    return exc_info.value.kind


# ---------------------------------------------------------------------------
# Issue / verify
# ---------------------------------------------------------------------------


class TestIssueAndVerify:
    def test_access_token_round_trip(self, codec: TokenCodec, clock: Clock) -> None:
        issued = codec.issue_access_token("acct-1", "talent")
        claims = codec.verify_access_token(issued.token)
        assert claims.subject_id == "acct-1"
        assert claims.role == "talent"
        assert issued.expires_at == clock.now + timedelta(hours=1)

    def test_refresh_token_round_trip(self, codec: TokenCodec, clock: Clock) -> None:
        issued = codec.issue_refresh_token("acct-1")
        assert codec.verify_refresh_token(issued.token).subject_id == "acct-1"
        assert issued.expires_at == clock.now + timedelta(days=7)

    def test_tokens_issued_in_same_second_differ(self, codec: TokenCodec) -> None:
        a = codec.issue_access_token("acct-1", "user")
        b = codec.issue_access_token("acct-1", "user")
        assert a.token != b.token

    def test_access_token_carries_type_claim(self, codec: TokenCodec) -> None:
        token = codec.issue_access_token("acct-1", "user").token
        claims = jwt.get_unverified_claims(token)
        assert claims["type"] == "access"
        assert claims["sub"] == "acct-1"
        assert "jti" in claims

    def test_missing_secret_is_configuration_error(self, clock: Clock) -> None:
        codec = TokenCodec(
            access_secret="",
            access_ttl=timedelta(hours=1),
            refresh_ttl=timedelta(days=7),
            registry=InMemoryRevocationRegistry(clock=clock),
            clock=clock,
        )
        with pytest.raises(TokenConfigurationError):
            codec.issue_access_token("acct-1", "user")

    def test_from_settings_without_refresh_secret_signs_with_access_secret(self, clock: Clock) -> None:
        settings = Settings(jwt_secret=ACCESS_SECRET, jwt_refresh_secret="")
        codec = TokenCodec.from_settings(settings, InMemoryRevocationRegistry(clock=clock), clock=clock)
        token = codec.issue_refresh_token("acct-1").token
        assert codec.verify_refresh_token(token).subject_id == "acct-1"
        assert jwt.get_unverified_claims(token)["type"] == "refresh"
        jwt.decode(token, ACCESS_SECRET, algorithms=["HS256"], options={"verify_exp": False})


class TestVerificationFailures:
    def test_expired_access_token(self, codec: TokenCodec, clock: Clock) -> None:
        token = codec.issue_access_token("acct-1", "user").token
        clock.advance(hours=1)
        with pytest.raises(TokenError) as exc_info:
            codec.verify_access_token(token)
        assert _kind(exc_info) is TokenErrorKind.EXPIRED
        assert exc_info.value.message == "Token expired"

    def test_expired_refresh_token_message(self, codec: TokenCodec, clock: Clock) -> None:
        token = codec.issue_refresh_token("acct-1").token
        clock.advance(days=7, seconds=1)
        with pytest.raises(TokenError) as exc_info:
            codec.verify_refresh_token(token)
        assert exc_info.value.message == "Refresh token expired"

    def test_valid_until_just_before_expiry(self, codec: TokenCodec, clock: Clock) -> None:
        token = codec.issue_access_token("acct-1", "user").token
        clock.advance(minutes=59, seconds=59)
        assert codec.verify_access_token(token).subject_id == "acct-1"

    def test_tampered_token_is_invalid(self, codec: TokenCodec) -> None:
        token = codec.issue_access_token("acct-1", "user").token
        header, payload, signature = token.split(".")
        tampered = f"{header}.{payload}.{signature[:-4]}AAAA"
        with pytest.raises(TokenError) as exc_info:
            codec.verify_access_token(tampered)
        assert _kind(exc_info) is TokenErrorKind.INVALID
        assert exc_info.value.message == "Invalid token"

    def test_token_signed_with_other_secret_is_invalid(self, codec: TokenCodec, clock: Clock) -> None:
        forged = jwt.encode(
            {"sub": "acct-1", "role": "admin", "type": "access", "exp": int(clock.now.timestamp()) + 60},
            "x" * 40,
            algorithm="HS256",
        )
        with pytest.raises(TokenError) as exc_info:
            codec.verify_access_token(forged)
        assert _kind(exc_info) is TokenErrorKind.INVALID

    def test_garbage_refresh_token_is_invalid(self, codec: TokenCodec) -> None:
        with pytest.raises(TokenError) as exc_info:
            codec.verify_refresh_token("not-a-jwt")
        assert exc_info.value.message == "Invalid refresh token"

    def test_refresh_token_rejected_as_access_token_with_shared_secret(self, clock: Clock) -> None:
        shared = TokenCodec(
            access_secret=ACCESS_SECRET,
            access_ttl=timedelta(hours=1),
            refresh_ttl=timedelta(days=7),
            registry=InMemoryRevocationRegistry(clock=clock),
            clock=clock,
        )
        refresh = shared.issue_refresh_token("acct-1").token
        access = shared.issue_access_token("acct-1", "user").token
        with pytest.raises(TokenError):
            shared.verify_access_token(refresh)
        with pytest.raises(TokenError):
            shared.verify_refresh_token(access)

    def test_revoked_token(self, codec: TokenCodec) -> None:
        token = codec.issue_access_token("acct-1", "user").token
        codec.revoke(token)
        with pytest.raises(TokenError) as exc_info:
            codec.verify_access_token(token)
        assert _kind(exc_info) is TokenErrorKind.REVOKED
        assert exc_info.value.message == "Token has been revoked"

    def test_revocation_is_checked_before_signature(self, codec: TokenCodec) -> None:
        token = codec.issue_access_token("acct-1", "user").token
        header, payload, _signature = token.split(".")
        unsigned = f"{header}.{payload}.AAAA"
        codec.revoke(unsigned)
        with pytest.raises(TokenError) as exc_info:
            codec.verify_access_token(unsigned)
        assert _kind(exc_info) is TokenErrorKind.REVOKED

    def test_revocation_entry_lapses_with_the_token(self, codec: TokenCodec, clock: Clock) -> None:
        token = codec.issue_access_token("acct-1", "user").token
        codec.revoke(token)
        clock.advance(hours=2)
        with pytest.raises(TokenError) as exc_info:
            codec.verify_access_token(token)
        assert _kind(exc_info) is TokenErrorKind.EXPIRED

    def test_revoked_refresh_token_message(self, codec: TokenCodec) -> None:
        token = codec.issue_refresh_token("acct-1").token
        codec.revoke(token)
        with pytest.raises(TokenError) as exc_info:
            codec.verify_refresh_token(token)
        assert exc_info.value.message == "Refresh token has been revoked"


# ---------------------------------------------------------------------------
# Revoke
# ---------------------------------------------------------------------------


class TestRevoke:
    def test_revoke_is_idempotent(self, codec: TokenCodec) -> None:
        token = codec.issue_access_token("acct-1", "user").token
        assert codec.revoke(token) is True
        assert codec.revoke(token) is True
        with pytest.raises(TokenError):
            codec.verify_access_token(token)

    def test_revoke_garbage_is_ignored(self, codec: TokenCodec) -> None:
        assert codec.revoke("garbage") is False
        assert codec.revoke("") is False

    def test_revoking_one_token_leaves_sibling_valid(self, codec: TokenCodec) -> None:
        a = codec.issue_access_token("acct-1", "user").token
        b = codec.issue_access_token("acct-1", "user").token
        codec.revoke(a)
        assert codec.verify_access_token(b).subject_id == "acct-1"

    def test_expiry_of_reads_exp_claim(self, codec: TokenCodec) -> None:
        issued = codec.issue_refresh_token("acct-1")
        assert codec.expiry_of(issued.token) == issued.expires_at
        assert codec.expiry_of("garbage") is None


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


class TestPasswords:
    def test_hash_and_verify(self) -> None:
        hashed = hash_password("correct horse", rounds=4)
        assert hashed != "correct horse"
        assert verify_password("correct horse", hashed)
        assert not verify_password("wrong horse", hashed)

    def test_verify_against_malformed_hash_is_false(self) -> None:
        assert verify_password("anything", "not-a-bcrypt-hash") is False

    def test_dummy_hash_is_cached_and_never_matches_real_input(self) -> None:
        assert dummy_hash(4) is dummy_hash(4)
        assert not verify_password("password123", dummy_hash(4))


# ---------------------------------------------------------------------------
# Reset tokens
# ---------------------------------------------------------------------------


class TestResetTokens:
    def test_generate_shape(self, clock: Clock) -> None:
        reset = ResetTokenGenerator(timedelta(minutes=10), clock=clock).generate()
        assert len(reset.plain) == 64
        int(reset.plain, 16)  # hex
        assert reset.hashed == hash_reset_token(reset.plain)
        assert reset.hashed != reset.plain
        assert reset.expires_at == clock.now + timedelta(minutes=10)

    def test_tokens_are_unique(self, clock: Clock) -> None:
        gen = ResetTokenGenerator(clock=clock)
        assert len({gen.generate().plain for _ in range(20)}) == 20
