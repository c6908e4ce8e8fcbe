"""Resumption of interrupted chat streams."""

import logging
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.domains.chat import frames
from app.domains.chat.context import NullStreamContext, StreamContext
from app.domains.chat.service import Caller
from app.domains.chat.store import ChatStore
from app.domains.chat.streams import StreamRegistry
from app.exceptions.chat import ChatError
from app.schemas.chat import MessageResponse
from models.base import utcnow
from models.message import MessageRole
from models.stream import Stream, StreamStatus

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive timestamps; they were written in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _may_be_running(stream: Stream, now: datetime) -> bool:
    """Whether a generation could still be writing to this stream."""
    if stream.status != StreamStatus.ACTIVE.value:
        return False
    deadline = _as_utc(stream.created_at) + timedelta(seconds=settings.chat_max_duration_seconds)
    return now < deadline


async def _single(frame: str) -> AsyncIterator[str]:
    yield frame


class ResumptionService:
    """Reconnects a client to the latest generation of a chat.

    ``resume`` returns None whenever there is nothing to send, which the
    controller turns into ``204 No Content``.
    """

    def __init__(self, db: AsyncSession, stream_context: StreamContext | None = None):
        self.store = ChatStore(db)
        self.streams = StreamRegistry(db)
        self.stream_context = stream_context or NullStreamContext()

    async def resume(self, chat_id, caller: Caller, skip: int = 0) -> AsyncIterator[str] | None:
        requested_at = utcnow()

        chat = await self.store.get_chat(chat_id)
        if chat is None:
            raise ChatError("not_found:chat")
        if not chat.is_public and chat.user_id != caller.id:
            raise ChatError("forbidden:chat")

        if not self.stream_context.is_available:
            return None

        stream_id = await self.streams.latest(chat_id)
        if stream_id is None:
            return None

        stream = await self.streams.get(stream_id)
        if stream is not None and _may_be_running(stream, requested_at):
            live = await self.stream_context.resume_existing_stream(stream_id, skip=skip)
            if live is not None:
                logger.info(f"Resuming stream {stream_id} for chat {chat_id} from frame {skip}")
                return live
        else:
            logger.debug(f"Stream {stream_id} for chat {chat_id} has concluded")

        # The generation has concluded; replay its reply if it only just landed
        message = await self.store.get_latest_message(chat_id)
        if message is None or MessageRole.parse(message.role) != MessageRole.ASSISTANT:
            return None

        age = (requested_at - _as_utc(message.created_at)).total_seconds()
        if age > settings.resume_staleness_seconds:
            return None

        payload = MessageResponse.model_validate(message).model_dump(mode="json", by_alias=True)
        return _single(frames.append_message(payload))
