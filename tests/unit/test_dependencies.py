"""Unit tests for authentication dependencies."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import jwt
import pytest
from fastapi.security import HTTPAuthorizationCredentials

from app.core.dependencies import get_current_user, get_stream_context, validate_token
from app.core.security import ClerkAuthenticator
from app.domains.chat.context import InMemoryStreamContext, NullStreamContext
from app.domains.user.service import UserService, user_type_from_claims
from app.exceptions.chat import ChatError


def bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


@pytest.mark.asyncio
class TestValidateToken:
    """Test cases for validate_token."""

    async def test_missing_token(self):
        """Test a request without credentials is unauthorized."""
        with pytest.raises(ChatError) as exc_info:
            await validate_token(None)

        assert exc_info.value.code == "unauthorized:chat"
        assert exc_info.value.status_code == 401

    async def test_unsigned_token_decoded(self):
        """Test tokens are decoded without signature checks by default."""
        token = jwt.encode({"sub": "user_123", "email": "a@example.com"}, "any-secret", algorithm="HS256")

        payload = await validate_token(bearer(token))

        assert payload["sub"] == "user_123"

    async def test_garbage_token(self):
        """Test an undecodable token is unauthorized."""
        with pytest.raises(ChatError) as exc_info:
            await validate_token(bearer("not-a-jwt"))

        assert exc_info.value.code == "unauthorized:chat"

    async def test_token_without_subject(self):
        """Test a token without a subject is unauthorized."""
        token = jwt.encode({"email": "a@example.com"}, "any-secret", algorithm="HS256")

        with pytest.raises(ChatError):
            await validate_token(bearer(token))

    async def test_signature_verification(self):
        """Test signed tokens are checked when verification is enabled."""
        token = jwt.encode({"sub": "user_123"}, "wrong-secret", algorithm="HS256")

        with patch("app.core.security.settings.jwt_verify_signature", True), patch(
            "app.core.security.settings.clerk_secret_key", "right-secret"
        ):
            authenticator = ClerkAuthenticator()
            with pytest.raises(ChatError):
                await authenticator.verify_token(token)


@pytest.mark.asyncio
class TestGetCurrentUser:
    """Test cases for get_current_user."""

    async def test_creates_user_on_first_request(self, test_db):
        """Test an unknown subject is mirrored locally with its tier."""
        request = MagicMock()
        request.state = SimpleNamespace()

        user = await get_current_user(request, {"sub": "clerk_guest_1", "user_type": "guest"}, test_db)

        assert user.clerk_user_id == "clerk_guest_1"
        assert user.user_type == "guest"
        assert user.email == "clerk_guest_1@guest.invalid"
        assert request.state.user_id == user.id

    async def test_existing_user_reused(self, test_db, test_user):
        """Test a known subject maps to the stored user."""
        request = MagicMock()
        request.state = SimpleNamespace()

        user = await get_current_user(request, {"sub": test_user.clerk_user_id}, test_db)

        assert user.id == test_user.id

    async def test_inactive_user_forbidden(self, test_db, test_user):
        """Test deactivated accounts cannot chat."""
        test_user.is_active = False
        await test_db.commit()

        with pytest.raises(ChatError) as exc_info:
            await get_current_user(MagicMock(), {"sub": test_user.clerk_user_id}, test_db)

        assert exc_info.value.code == "forbidden:chat"

    async def test_concurrent_creation(self, test_db, test_session_factory):
        """Test a user created by a racing request is returned instead of failing."""
        async with test_session_factory() as other:
            await UserService(other).create_user("clerk_race", "race@example.com")

        service = UserService(test_db)
        with patch.object(UserService, "get_user_by_clerk_id", side_effect=[None, "existing"]):
            assert await service.get_or_create_user("clerk_race", {"email": "race@example.com"}) == "existing"


class TestHelpers:
    """Test cases for small dependency helpers."""

    def test_user_type_from_claims(self):
        """Test tiers come from claims with unknown values treated as guest."""
        assert user_type_from_claims({}) == "regular"
        assert user_type_from_claims({"user_type": "guest"}) == "guest"
        assert user_type_from_claims({"user_type": "vip"}) == "guest"

    def test_stream_context_fallback(self):
        """Test requests get a null context until startup provides one."""
        request = MagicMock()
        request.app.state = SimpleNamespace()
        assert isinstance(get_stream_context(request), NullStreamContext)

        context = InMemoryStreamContext()
        request.app.state.stream_context = context
        assert get_stream_context(request) is context
