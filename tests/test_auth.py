"""Tests for the authentication module: secrets, token codec, sessions, guard."""

from __future__ import annotations

import asyncio
import base64
import json
import logging

import jwt
import pytest

from ledgerguard.auth import session as session_module
from ledgerguard.auth.errors import (
    Expired,
    InvalidSignature,
    Malformed,
    StoreUnavailable,
    Unauthenticated,
)
from ledgerguard.auth.guard import AuthOutcome, authorize
from ledgerguard.auth.jwt_handler import TokenCodec, digest
from ledgerguard.auth.models import RenewalRecord, Role, TokenKind
from ledgerguard.auth.password import MIN_SECRET_LENGTH, check_secret, hash_secret
from ledgerguard.auth.session import SessionManager
from ledgerguard.storage.memory import MemoryStore

JWT_SECRET = "test-jwt-secret-for-pytest-only-0123456789"
ROUNDS = 4
ADMIN_SECRET = "admin-secret-123456"
VIEWER_SECRET = "viewer-secret-123456"


def _build(clock):
    store = MemoryStore()
    codec = TokenCodec(JWT_SECRET, clock=clock)
    sessions = SessionManager(store, codec, bcrypt_rounds=ROUNDS, clock=clock)
    return store, codec, sessions


def _b64(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


# ===================== Secret Hashing Tests =====================


class TestPassword:
    def test_hash_and_verify(self) -> None:
        secret = "supersecuresecret123"
        hashed = hash_secret(secret, rounds=ROUNDS)
        assert hashed != secret
        assert hashed.startswith("$2")
        assert check_secret(secret, hashed) is True

    def test_wrong_secret_fails(self) -> None:
        hashed = hash_secret("correctsecret1", rounds=ROUNDS)
        assert check_secret("wrongsecret12", hashed) is False

    def test_min_length_enforced(self) -> None:
        with pytest.raises(ValueError, match="at least"):
            hash_secret("short", rounds=ROUNDS)

    def test_exact_min_length(self) -> None:
        secret = "a" * MIN_SECRET_LENGTH
        assert check_secret(secret, hash_secret(secret, rounds=ROUNDS)) is True

    def test_overlong_secret_rejected(self) -> None:
        with pytest.raises(ValueError, match="at most"):
            hash_secret("x" * 100, rounds=ROUNDS)

    def test_salted(self) -> None:
        assert hash_secret("samesecret1234", rounds=ROUNDS) != hash_secret("samesecret1234", rounds=ROUNDS)

    def test_malformed_digest_is_mismatch(self) -> None:
        assert check_secret("anysecret12345", "not-a-bcrypt-hash") is False


# ===================== Token Codec Tests =====================


class TestTokenCodec:
    def test_access_token_roundtrip(self, clock) -> None:
        codec = TokenCodec(JWT_SECRET, clock=clock)
        token = codec.mint("p-1", Role.ADMIN, TokenKind.ACCESS, 3600)
        claims = codec.verify(token)
        assert claims.subject == "p-1"
        assert claims.role is Role.ADMIN
        assert claims.kind is TokenKind.ACCESS
        assert claims.expires_at == claims.issued_at + 3600
        assert claims.token_id

    def test_uses_hs256(self, clock) -> None:
        token = TokenCodec(JWT_SECRET, clock=clock).mint("p-1", Role.VIEWER, TokenKind.ACCESS, 60)
        assert jwt.get_unverified_header(token)["alg"] == "HS256"

    def test_valid_until_expiry(self, clock) -> None:
        codec = TokenCodec(JWT_SECRET, clock=clock)
        token = codec.mint("p-1", Role.VIEWER, TokenKind.ACCESS, 3600)
        clock.advance(3599)
        assert codec.verify(token).subject == "p-1"

    def test_expired_at_exact_expiry(self, clock) -> None:
        codec = TokenCodec(JWT_SECRET, clock=clock)
        token = codec.mint("p-1", Role.VIEWER, TokenKind.ACCESS, 3600)
        clock.advance(3600)
        with pytest.raises(Expired):
            codec.verify(token)

    def test_renewal_token_expires_after_seven_days(self, clock) -> None:
        codec = TokenCodec(JWT_SECRET, clock=clock)
        token = codec.mint("p-1", Role.VIEWER, TokenKind.RENEWAL, 7 * 86400)
        clock.advance(6 * 86400)
        assert codec.verify(token, kind=TokenKind.RENEWAL).kind is TokenKind.RENEWAL
        clock.advance(86400 + 1)
        with pytest.raises(Expired):
            codec.verify(token, kind=TokenKind.RENEWAL)

    def test_other_secret_is_invalid_signature(self, clock) -> None:
        token = TokenCodec("another-secret-entirely-0123456789", clock=clock).mint(
            "p-1", Role.ADMIN, TokenKind.ACCESS, 3600
        )
        with pytest.raises(InvalidSignature):
            TokenCodec(JWT_SECRET, clock=clock).verify(token)

    def test_tampered_payload_is_invalid_signature(self, clock) -> None:
        codec = TokenCodec(JWT_SECRET, clock=clock)
        token = codec.mint("p-1", Role.VIEWER, TokenKind.ACCESS, 3600)
        header, payload, signature = token.split(".")
        claims = jwt.decode(token, options={"verify_signature": False})
        claims["role"] = "admin"
        forged = ".".join([header, _b64(claims), signature])
        with pytest.raises(InvalidSignature):
            codec.verify(forged)

    def test_other_algorithm_rejected(self, clock) -> None:
        now = int(clock())
        token = jwt.encode(
            {"sub": "p-1", "role": "admin", "type": "access", "iat": now, "exp": now + 60, "jti": "x"},
            JWT_SECRET,
            algorithm="HS512",
        )
        with pytest.raises(InvalidSignature):
            TokenCodec(JWT_SECRET, clock=clock).verify(token)

    def test_garbage_is_malformed(self, clock) -> None:
        codec = TokenCodec(JWT_SECRET, clock=clock)
        with pytest.raises(Malformed):
            codec.verify("garbage.token.here")
        with pytest.raises(Malformed):
            codec.verify("not-a-jwt")

    def test_missing_claim_is_malformed(self, clock) -> None:
        now = int(clock())
        token = jwt.encode(
            {"sub": "p-1", "type": "access", "iat": now, "exp": now + 60, "jti": "x"},
            JWT_SECRET,
            algorithm="HS256",
        )
        with pytest.raises(Malformed):
            TokenCodec(JWT_SECRET, clock=clock).verify(token)

    def test_unknown_role_is_malformed(self, clock) -> None:
        now = int(clock())
        token = jwt.encode(
            {"sub": "p-1", "role": "root", "type": "access", "iat": now, "exp": now + 60, "jti": "x"},
            JWT_SECRET,
            algorithm="HS256",
        )
        with pytest.raises(Malformed):
            TokenCodec(JWT_SECRET, clock=clock).verify(token)

    def test_renewal_token_not_valid_as_access(self, clock) -> None:
        codec = TokenCodec(JWT_SECRET, clock=clock)
        token = codec.mint("p-1", Role.ADMIN, TokenKind.RENEWAL, 3600)
        with pytest.raises(Malformed):
            codec.verify(token, kind=TokenKind.ACCESS)

    def test_access_token_not_valid_as_renewal(self, clock) -> None:
        codec = TokenCodec(JWT_SECRET, clock=clock)
        token = codec.mint("p-1", Role.ADMIN, TokenKind.ACCESS, 3600)
        with pytest.raises(Malformed):
            codec.verify(token, kind=TokenKind.RENEWAL)

    def test_tokens_unique_within_same_second(self, clock) -> None:
        codec = TokenCodec(JWT_SECRET, clock=clock)
        first = codec.mint("p-1", Role.ADMIN, TokenKind.RENEWAL, 3600)
        second = codec.mint("p-1", Role.ADMIN, TokenKind.RENEWAL, 3600)
        assert first != second
        assert digest(first) != digest(second)

    def test_ephemeral_secret_when_unset(self, clock, caplog) -> None:
        with caplog.at_level(logging.WARNING, logger="ledgerguard.auth"):
            codec = TokenCodec("", clock=clock)
        assert "ephemeral" in caplog.text
        token = codec.mint("p-1", Role.VIEWER, TokenKind.ACCESS, 60)
        assert codec.verify(token).subject == "p-1"

    def test_digest_is_sha256_hex(self) -> None:
        value = digest("some-token")
        assert len(value) == 64
        assert value == digest("some-token")
        assert value != digest("some-token2")


# ===================== Session Manager Tests =====================


class TestSessionManager:
    def test_login_issues_tokens_and_persists_hash(self, clock) -> None:
        async def scenario():
            store, codec, sessions = _build(clock)
            principal = await sessions.provision("alice", ADMIN_SECRET, Role.ADMIN)
            issued = await sessions.login("alice", ADMIN_SECRET)

            assert issued.role is Role.ADMIN
            assert issued.expires_in_seconds == 3600
            access = codec.verify(issued.access_token, kind=TokenKind.ACCESS)
            assert access.subject == principal.id
            assert access.expires_at == int(clock()) + 3600

            record = await store.find_renewal_token(principal.id, digest(issued.renewal_token))
            assert record is not None
            assert record.expires_at == clock() + 7 * 86400
            # Only the digest is stored, never the bearer string
            assert issued.renewal_token not in store._renewals

        asyncio.run(scenario())

    def test_unknown_identity_and_wrong_secret_look_identical(self, clock) -> None:
        async def scenario():
            _, _, sessions = _build(clock)
            await sessions.provision("alice", ADMIN_SECRET, Role.ADMIN)
            with pytest.raises(Unauthenticated) as unknown:
                await sessions.login("mallory", ADMIN_SECRET)
            with pytest.raises(Unauthenticated) as wrong:
                await sessions.login("alice", "wrong-secret-123456")
            return unknown.value, wrong.value

        unknown, wrong = asyncio.run(scenario())
        assert unknown.message == wrong.message == "invalid credentials"
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.headers == wrong.headers

    def test_unknown_identity_still_checks_a_hash(self, clock, monkeypatch) -> None:
        checked = []
        real_check = session_module.check_secret

        def spy(plaintext, hashed):
            checked.append(hashed)
            return real_check(plaintext, hashed)

        monkeypatch.setattr(session_module, "check_secret", spy)

        async def scenario():
            _, _, sessions = _build(clock)
            with pytest.raises(Unauthenticated):
                await sessions.login("nobody", "whatever-secret-1")

        asyncio.run(scenario())
        assert len(checked) == 1

    def test_login_failure_emits_security_event(self, clock, caplog) -> None:
        async def scenario():
            _, _, sessions = _build(clock)
            with pytest.raises(Unauthenticated):
                await sessions.login("nobody", "whatever-secret-1")

        with caplog.at_level(logging.WARNING, logger="ledgerguard.auth"):
            asyncio.run(scenario())
        assert "login_failed" in caplog.text
        assert "whatever-secret-1" not in caplog.text

    def test_renew_keeps_role(self, clock) -> None:
        async def scenario():
            _, codec, sessions = _build(clock)
            principal = await sessions.provision("vera", VIEWER_SECRET, Role.VIEWER)
            issued = await sessions.login("vera", VIEWER_SECRET)
            clock.advance(120)
            renewed = await sessions.renew(issued.renewal_token)
            claims = codec.verify(renewed.access_token, kind=TokenKind.ACCESS)
            assert renewed.role is Role.VIEWER
            assert claims.role is Role.VIEWER
            assert claims.subject == principal.id
            assert renewed.access_token != issued.access_token

        asyncio.run(scenario())

    def test_renew_does_not_retire_renewal_token(self, clock) -> None:
        async def scenario():
            _, _, sessions = _build(clock)
            await sessions.provision("alice", ADMIN_SECRET, Role.ADMIN)
            issued = await sessions.login("alice", ADMIN_SECRET)
            await sessions.renew(issued.renewal_token)
            again = await sessions.renew(issued.renewal_token)
            assert again.role is Role.ADMIN

        asyncio.run(scenario())

    def test_renew_rejects_access_token(self, clock) -> None:
        async def scenario():
            _, _, sessions = _build(clock)
            await sessions.provision("alice", ADMIN_SECRET, Role.ADMIN)
            issued = await sessions.login("alice", ADMIN_SECRET)
            with pytest.raises(Unauthenticated, match="renewal"):
                await sessions.renew(issued.access_token)

        asyncio.run(scenario())

    def test_renew_rejects_unpersisted_token(self, clock) -> None:
        async def scenario():
            _, codec, sessions = _build(clock)
            principal = await sessions.provision("alice", ADMIN_SECRET, Role.ADMIN)
            forged = codec.mint(principal.id, Role.ADMIN, TokenKind.RENEWAL, 3600)
            with pytest.raises(Unauthenticated):
                await sessions.renew(forged)

        asyncio.run(scenario())

    def test_renew_rejects_expired_record(self, clock) -> None:
        async def scenario():
            store, _, sessions = _build(clock)
            principal = await sessions.provision("alice", ADMIN_SECRET, Role.ADMIN)
            issued = await sessions.login("alice", ADMIN_SECRET)
            token_hash = digest(issued.renewal_token)
            await store.delete_renewal_token(principal.id, token_hash)
            await store.save_renewal_token(
                RenewalRecord(
                    owner=principal.id,
                    token_hash=token_hash,
                    expires_at=clock() - 1,
                    created_at=clock() - 100,
                )
            )
            with pytest.raises(Unauthenticated):
                await sessions.renew(issued.renewal_token)

        asyncio.run(scenario())

    def test_renew_rejects_expired_token(self, clock) -> None:
        async def scenario():
            _, _, sessions = _build(clock)
            await sessions.provision("alice", ADMIN_SECRET, Role.ADMIN)
            issued = await sessions.login("alice", ADMIN_SECRET)
            clock.advance(7 * 86400)
            with pytest.raises(Unauthenticated):
                await sessions.renew(issued.renewal_token)

        asyncio.run(scenario())

    def test_revoke_then_renew_fails(self, clock) -> None:
        async def scenario():
            _, _, sessions = _build(clock)
            await sessions.provision("alice", ADMIN_SECRET, Role.ADMIN)
            issued = await sessions.login("alice", ADMIN_SECRET)
            assert await sessions.revoke(issued.access_token, issued.renewal_token) == 1
            with pytest.raises(Unauthenticated):
                await sessions.renew(issued.renewal_token)

        asyncio.run(scenario())

    def test_revoke_is_idempotent(self, clock) -> None:
        async def scenario():
            _, _, sessions = _build(clock)
            await sessions.provision("alice", ADMIN_SECRET, Role.ADMIN)
            issued = await sessions.login("alice", ADMIN_SECRET)
            await sessions.revoke(issued.access_token, issued.renewal_token)
            assert await sessions.revoke(issued.access_token, issued.renewal_token) == 0
            assert await sessions.revoke(issued.access_token, "never-issued") == 0

        asyncio.run(scenario())

    def test_revoke_requires_valid_access_token(self, clock) -> None:
        async def scenario():
            _, _, sessions = _build(clock)
            await sessions.provision("alice", ADMIN_SECRET, Role.ADMIN)
            issued = await sessions.login("alice", ADMIN_SECRET)
            with pytest.raises(Unauthenticated):
                await sessions.revoke("garbage.token.here", issued.renewal_token)
            with pytest.raises(Unauthenticated):
                await sessions.revoke(issued.renewal_token, issued.renewal_token)

        asyncio.run(scenario())

    def test_revoke_cannot_touch_another_principals_token(self, clock) -> None:
        async def scenario():
            _, _, sessions = _build(clock)
            await sessions.provision("alice", ADMIN_SECRET, Role.ADMIN)
            await sessions.provision("vera", VIEWER_SECRET, Role.VIEWER)
            alice = await sessions.login("alice", ADMIN_SECRET)
            vera = await sessions.login("vera", VIEWER_SECRET)
            assert await sessions.revoke(vera.access_token, alice.renewal_token) == 0
            renewed = await sessions.renew(alice.renewal_token)
            assert renewed.role is Role.ADMIN

        asyncio.run(scenario())

    def test_login_store_failure_propagates(self, clock) -> None:
        class _FailingStore(MemoryStore):
            async def save_renewal_token(self, record):
                raise StoreUnavailable("connection refused")

        async def scenario():
            store = _FailingStore()
            codec = TokenCodec(JWT_SECRET, clock=clock)
            sessions = SessionManager(store, codec, bcrypt_rounds=ROUNDS, clock=clock)
            await sessions.provision("alice", ADMIN_SECRET, Role.ADMIN)
            with pytest.raises(StoreUnavailable):
                await sessions.login("alice", ADMIN_SECRET)

        asyncio.run(scenario())

    def test_provision_rejects_duplicate_identity(self, clock) -> None:
        async def scenario():
            _, _, sessions = _build(clock)
            await sessions.provision("alice", ADMIN_SECRET, Role.ADMIN)
            with pytest.raises(ValueError, match="already registered"):
                await sessions.provision("alice", VIEWER_SECRET, Role.VIEWER)

        asyncio.run(scenario())


# ===================== Guard Tests =====================


class TestAuthorize:
    def test_missing_token(self, clock) -> None:
        codec = TokenCodec(JWT_SECRET, clock=clock)
        result = authorize(None, {Role.ADMIN}, codec)
        assert result.outcome is AuthOutcome.UNAUTHENTICATED
        assert not result.ok

    def test_allowed_role(self, clock) -> None:
        codec = TokenCodec(JWT_SECRET, clock=clock)
        token = codec.mint("p-1", Role.ADMIN, TokenKind.ACCESS, 3600)
        result = authorize(token, {Role.ADMIN}, codec)
        assert result.ok
        assert result.caller.subject == "p-1"
        assert result.caller.role is Role.ADMIN

    def test_wrong_role_is_forbidden(self, clock) -> None:
        codec = TokenCodec(JWT_SECRET, clock=clock)
        token = codec.mint("p-2", Role.VIEWER, TokenKind.ACCESS, 3600)
        result = authorize(token, {Role.ADMIN}, codec)
        assert result.outcome is AuthOutcome.FORBIDDEN
        assert result.caller.role is Role.VIEWER

    def test_renewal_token_is_not_a_credential(self, clock) -> None:
        codec = TokenCodec(JWT_SECRET, clock=clock)
        token = codec.mint("p-1", Role.ADMIN, TokenKind.RENEWAL, 3600)
        assert authorize(token, {Role.ADMIN}, codec).outcome is AuthOutcome.UNAUTHENTICATED

    def test_expired_token(self, clock) -> None:
        codec = TokenCodec(JWT_SECRET, clock=clock)
        token = codec.mint("p-1", Role.ADMIN, TokenKind.ACCESS, 3600)
        clock.advance(3601)
        assert authorize(token, {Role.ADMIN}, codec).outcome is AuthOutcome.UNAUTHENTICATED
