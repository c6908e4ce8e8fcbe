# app/core/dependencies.py
import logging

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import ClerkAuthenticator
from app.database import get_db, get_session_factory
from app.domains.chat.context import NullStreamContext, StreamContext
from app.domains.chat.producer import GeminiTokenProducer, TokenProducer
from app.domains.chat.service import Caller
from app.domains.user.service import UserService
from app.exceptions.chat import ChatError
from models import User

logger = logging.getLogger(__name__)

# Missing credentials are reported as unauthorized:chat rather than FastAPI's default
security = HTTPBearer(auto_error=False)
auth = ClerkAuthenticator()


async def validate_token(token: HTTPAuthorizationCredentials | None = Depends(security)) -> dict:
    """Validate and decode JWT token from Clerk.

    Returns:
        dict: Decoded token payload

    Raises:
        ChatError: ``unauthorized:chat`` if the token is missing or invalid
    """
    if not token or not token.credentials:
        raise ChatError("unauthorized:chat")

    payload = await auth.verify_token(token.credentials)
    if not payload or not payload.get("sub"):
        raise ChatError("unauthorized:chat", "Invalid token payload - missing user ID")
    return payload


async def get_current_user(
    request: Request,
    payload: dict = Depends(validate_token),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Get current authenticated user from JWT payload.

    Returns:
        User: Current authenticated user

    Raises:
        ChatError: If the user account is inactive
    """
    clerk_user_id = payload["sub"]

    # Get or create user in local database
    user_service = UserService(db)
    user = await user_service.get_or_create_user(clerk_user_id, payload)

    if not user.is_active:
        raise ChatError("forbidden:chat", "User account is inactive")

    # Add user info to request state for logging
    request.state.user_id = user.id
    request.state.clerk_user_id = clerk_user_id

    return user


async def get_caller(user: User = Depends(get_current_user)) -> Caller:
    return Caller.from_user(user)


def get_token_producer() -> TokenProducer:
    return GeminiTokenProducer()


def get_stream_context(request: Request) -> StreamContext:
    """Process-wide stream context created at startup."""
    context = getattr(request.app.state, "stream_context", None)
    return context if context is not None else NullStreamContext()


__all__ = [
    "get_caller",
    "get_current_user",
    "get_db",
    "get_session_factory",
    "get_stream_context",
    "get_token_producer",
    "validate_token",
]
