"""Tests for session tokens and caller resolution."""

from __future__ import annotations

import time

import jwt as pyjwt
import pytest

from contentos.auth.errors import PolicyEvaluationFailure
from contentos.auth.jwt import (
    DEFAULT_SECRET,
    TokenExpiredError,
    TokenInvalidError,
    create_token,
    get_secret,
    verify_token,
)
from contentos.auth.permissions import Role
from contentos.auth.session import SessionResolver

SECRET = "unit-test-secret"


class TestJWT:
    """Test token creation and validation."""

    def test_create_token_basic(self) -> None:
        token = create_token("user-123", secret=SECRET)
        assert isinstance(token, str)
        assert len(token) > 0

    def test_verify_token_valid(self) -> None:
        token = create_token("user-123", exp_minutes=1, secret=SECRET)
        payload = verify_token(token, SECRET)
        assert payload["sub"] == "user-123"
        assert "exp" in payload
        assert payload["iss"] == "contentos"
        assert "role" not in payload

    def test_verify_token_custom_expiry(self) -> None:
        token = create_token("user-789", exp_minutes=120, secret=SECRET)
        payload = verify_token(token, SECRET)
        assert payload["exp"] > int(time.time()) + 3600

    def test_verify_token_expired(self) -> None:
        token = create_token("user-123", exp_minutes=-1, secret=SECRET)
        with pytest.raises(TokenExpiredError):
            verify_token(token, SECRET)

    def test_verify_token_invalid_signature(self) -> None:
        token = create_token("user-123", secret=SECRET)
        with pytest.raises(TokenInvalidError):
            verify_token(token, "wrong-secret")

    def test_verify_token_malformed(self) -> None:
        with pytest.raises(TokenInvalidError):
            verify_token("not.a.jwt", SECRET)

    def test_verify_token_missing_subject(self) -> None:
        token = pyjwt.encode(
            {"iss": "contentos", "exp": int(time.time()) + 60}, SECRET, algorithm="HS256"
        )
        with pytest.raises(TokenInvalidError, match="missing sub claim"):
            verify_token(token, SECRET)

    def test_verify_token_foreign_issuer(self) -> None:
        token = pyjwt.encode(
            {"sub": "user-123", "iss": "elsewhere", "exp": int(time.time()) + 60},
            SECRET,
            algorithm="HS256",
        )
        with pytest.raises(TokenInvalidError, match="invalid"):
            verify_token(token, SECRET)

    def test_secret_from_env(self, monkeypatch) -> None:
        monkeypatch.delenv("CONTENTOS_JWT_SECRET", raising=False)
        assert get_secret() == DEFAULT_SECRET
        monkeypatch.setenv("CONTENTOS_JWT_SECRET", "from-env")
        assert get_secret() == "from-env"
        assert verify_token(create_token("u"), "from-env")["sub"] == "u"


class TestSessionResolver:
    """Test resolving tokens to callers."""

    async def test_resolve_caller(self, store, users) -> None:
        resolver = SessionResolver(store, secret=SECRET)
        editor = users[Role.EDITOR]
        caller = await resolver.resolve(create_token(editor.id, secret=SECRET))
        assert caller.id == editor.id
        assert caller.role is Role.EDITOR
        assert caller.email == "editor@example.com"

    async def test_role_comes_from_store(self, store, users, user_service, callers) -> None:
        resolver = SessionResolver(store, secret=SECRET)
        member = users[Role.MEMBER]
        token = create_token(member.id, secret=SECRET)
        await user_service.update_user(callers[Role.ADMIN], member.id, role="client")
        caller = await resolver.resolve(token)
        assert caller.role is Role.CLIENT

    async def test_role_claim_is_ignored(self, store, users) -> None:
        resolver = SessionResolver(store, secret=SECRET)
        member = users[Role.MEMBER]
        forged = pyjwt.encode(
            {"sub": member.id, "iss": "contentos", "role": "admin", "exp": int(time.time()) + 60},
            SECRET,
            algorithm="HS256",
        )
        caller = await resolver.resolve(forged)
        assert caller.role is Role.MEMBER

    @pytest.mark.parametrize("token", [None, "", "   ", "garbage"])
    async def test_unusable_tokens(self, store, token) -> None:
        assert await SessionResolver(store, secret=SECRET).resolve(token) is None

    async def test_expired_token(self, store, users) -> None:
        token = create_token(users[Role.ADMIN].id, exp_minutes=-1, secret=SECRET)
        assert await SessionResolver(store, secret=SECRET).resolve(token) is None

    async def test_unknown_user(self, store) -> None:
        token = create_token("deleted-user", secret=SECRET)
        assert await SessionResolver(store, secret=SECRET).resolve(token) is None

    async def test_store_failure_fails_closed(self, store, users, monkeypatch) -> None:
        async def _down(user_id):
            raise RuntimeError("db down")

        monkeypatch.setattr(store, "get_user", _down)
        token = create_token(users[Role.EDITOR].id, secret=SECRET)
        with pytest.raises(PolicyEvaluationFailure) as exc:
            await SessionResolver(store, secret=SECRET).resolve(token)
        assert exc.value.status_code == 500
