"""Per-tier message quotas and model access."""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.domains.chat.store import ChatStore
from models.base import utcnow
from models.user import UserType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Entitlements:
    max_messages_per_day: int
    available_chat_model_ids: list[str] = field(default_factory=list)


ENTITLEMENTS_BY_USER_TYPE: dict[UserType, Entitlements] = {
    # Users without an account
    UserType.GUEST: Entitlements(
        max_messages_per_day=100,
        available_chat_model_ids=["chat-model", "chat-model-reasoning"],
    ),
    # Users with an account
    UserType.REGULAR: Entitlements(
        max_messages_per_day=250,
        available_chat_model_ids=["chat-model", "chat-model-reasoning"],
    ),
}


def entitlements_for(user_type: str | UserType) -> Entitlements:
    """Entitlements for a tier; unknown tiers get the most restrictive one."""
    try:
        return ENTITLEMENTS_BY_USER_TYPE[UserType(user_type)]
    except ValueError:
        logger.warning(f"Unknown user type {user_type!r}, applying guest entitlements")
        return ENTITLEMENTS_BY_USER_TYPE[UserType.GUEST]


def is_model_available(user_type: str | UserType, model_id: str) -> bool:
    return model_id in entitlements_for(user_type).available_chat_model_ids


class EntitlementGate:
    """Daily message-count check against the caller's tier."""

    def __init__(self, db: AsyncSession):
        self.store = ChatStore(db)

    async def check_quota(
        self,
        user_id: UUID,
        user_type: str | UserType,
        window_hours: int | None = None,
    ) -> bool:
        """Return True while the user is below their tier's limit.

        Counts user-role messages created within the trailing window. Fails
        closed: a count equal to the limit is already over quota.
        """
        hours = window_hours if window_hours is not None else settings.quota_window_hours
        since = utcnow() - timedelta(hours=hours)
        count = await self.store.count_user_messages(user_id, since)
        limit = entitlements_for(user_type).max_messages_per_day
        if count >= limit:
            logger.info(f"User {user_id} reached message quota ({count}/{limit} in {hours}h)")
            return False
        return True
