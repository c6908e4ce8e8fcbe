"""Stream registry: one row per generation attempt of a chat."""

import logging
import uuid
from datetime import timedelta
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.config import settings
from app.exceptions.chat import ChatError
from models.base import utcnow
from models.stream import Stream, StreamStatus

logger = logging.getLogger(__name__)


class StreamRegistry:
    """Allocates stream ids and tracks their status.

    A stream id outlives the HTTP response that started it, which is what lets
    a client that lost its connection find the generation again.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def allocate(self, chat_id: UUID, user_id: UUID) -> UUID:
        """Create an active stream row and return its id."""
        now = utcnow()
        stream = Stream(
            id=uuid.uuid4(),
            chat_id=chat_id,
            user_id=user_id,
            status=StreamStatus.ACTIVE.value,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(seconds=settings.stream_ttl_seconds),
        )
        try:
            self.db.add(stream)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to create stream for chat {chat_id}: {str(e)}")
            raise ChatError("bad_request:database", "Failed to create stream id") from e
        return stream.id

    async def list_by_chat(self, chat_id: UUID) -> list[UUID]:
        """Stream ids of a chat, oldest first."""
        try:
            result = await self.db.execute(
                select(Stream.id).where(Stream.chat_id == chat_id).order_by(Stream.created_at)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise ChatError("bad_request:database", "Failed to get stream ids by chat id") from e

    async def latest(self, chat_id: UUID) -> UUID | None:
        stream_ids = await self.list_by_chat(chat_id)
        return stream_ids[-1] if stream_ids else None

    async def get(self, stream_id: UUID) -> Stream | None:
        result = await self.db.execute(select(Stream).where(Stream.id == stream_id))
        return result.scalar_one_or_none()

    async def mark_completed(self, stream_id: UUID) -> bool:
        """Best-effort transition to ``completed``."""
        return await self._set_status(stream_id, StreamStatus.COMPLETED)

    async def mark_inactive(self, stream_id: UUID) -> bool:
        """Best-effort transition to ``inactive`` for abandoned generations."""
        return await self._set_status(stream_id, StreamStatus.INACTIVE)

    async def _set_status(self, stream_id: UUID, status: StreamStatus) -> bool:
        try:
            await self.db.execute(
                update(Stream).where(Stream.id == stream_id).values(status=status.value, updated_at=utcnow())
            )
            await self.db.commit()
            return True
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Failed to mark stream {stream_id} as {status.value}: {str(e)}")
            return False
