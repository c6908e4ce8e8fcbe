# app/domains/user/service.py
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models import User, UserType

logger = logging.getLogger(__name__)


def user_type_from_claims(claims: dict) -> str:
    """Account tier from token claims; unknown values fall back to guest."""
    value = claims.get("user_type") or claims.get("type") or UserType.REGULAR.value
    try:
        return UserType(value).value
    except ValueError:
        return UserType.GUEST.value


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_clerk_id(self, clerk_user_id: str) -> Optional[User]:
        """Get a user by Clerk user ID."""
        result = await self.db.execute(select(User).where(User.clerk_user_id == clerk_user_id))
        return result.scalar_one_or_none()

    async def get_user_by_id(self, user_id: UUID) -> Optional[User]:
        """Get a user by ID."""
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def create_user(
        self,
        clerk_user_id: str,
        email: str,
        username: str = None,
        user_type: str = UserType.REGULAR.value,
    ) -> User:
        """Create a new user."""
        user = User(clerk_user_id=clerk_user_id, email=email, username=username, user_type=user_type)

        try:
            self.db.add(user)
            await self.db.commit()
            await self.db.refresh(user)
            return user
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise e

    async def get_or_create_user(self, clerk_user_id: str, clerk_payload: dict) -> User:
        """Get existing user or create new one from Clerk payload.

        Guests often carry no email claim, so a placeholder address derived
        from the subject is stored instead.
        """
        user = await self.get_user_by_clerk_id(clerk_user_id)
        if user:
            return user

        try:
            return await self.create_user(
                clerk_user_id=clerk_user_id,
                email=clerk_payload.get("email") or f"{clerk_user_id}@guest.invalid",
                username=clerk_payload.get("username"),
                user_type=user_type_from_claims(clerk_payload),
            )
        except IntegrityError:
            # Another request created the same user first
            logger.info(f"User {clerk_user_id} was created concurrently")
            user = await self.get_user_by_clerk_id(clerk_user_id)
            if user is None:
                raise
            return user
