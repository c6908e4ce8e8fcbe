"""Persistence for chats, messages and project references.

Writes are idempotent on the primary key: inserting a row whose id already
exists is a no-op, whether the database resolves it with ``ON CONFLICT DO
NOTHING`` or by raising a unique-constraint violation.
"""

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import delete, desc, func, insert, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.exceptions.chat import ChatError
from models.base import utcnow
from models.chat import Chat
from models.message import Message, MessageRole
from models.project import Project
from models.stream import Stream

logger = logging.getLogger(__name__)

# Dialects that support INSERT ... ON CONFLICT DO NOTHING
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _is_unique_violation(error: IntegrityError) -> bool:
    message = str(error.orig or error).lower()
    return "unique" in message or "duplicate" in message


class ChatStore:
    """Transactional CRUD over chats and messages."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # Chats

    async def get_chat(self, chat_id: UUID) -> Chat | None:
        """Get a chat by id."""
        try:
            result = await self.db.execute(select(Chat).where(Chat.id == chat_id))
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to get chat {chat_id}: {str(e)}")
            raise ChatError("bad_request:database", "Failed to get chat by id") from e

    async def ensure_chat(
        self,
        chat_id: UUID,
        user_id: UUID,
        title: str,
        visibility: str,
        project_id: UUID | None = None,
    ) -> tuple[Chat, bool]:
        """Return the chat with this id, creating it if it does not exist.

        Returns the chat and whether this call created it. When two requests
        race to create the same id, exactly one row is written and both get it
        back. The caller is responsible for checking ownership.
        """
        chat = await self.get_chat(chat_id)
        if chat:
            return chat, False

        now = utcnow()
        inserted = await self._insert_ignoring_duplicates(
            Chat,
            [
                {
                    "id": chat_id,
                    "user_id": user_id,
                    "title": title,
                    "visibility": visibility,
                    "project_id": project_id,
                    "created_at": now,
                    "updated_at": now,
                    "last_activity_at": now,
                }
            ],
        )
        if not inserted:
            logger.info(f"Chat {chat_id} was created concurrently, reusing existing row")

        chat = await self.get_chat(chat_id)
        if chat is None:
            raise ChatError("bad_request:database", "Failed to create chat")
        return chat, bool(inserted)

    async def touch_chat(self, chat_id: UUID, at: datetime | None = None) -> None:
        """Bump the chat's last-activity timestamp, leaving everything else untouched."""
        try:
            await self.db.execute(
                update(Chat)
                .where(Chat.id == chat_id)
                .values(last_activity_at=at or utcnow(), updated_at=Chat.updated_at)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise ChatError("bad_request:database", "Failed to update chat activity") from e

    async def delete_chat(self, chat_id: UUID) -> None:
        """Delete a chat together with its messages and streams."""
        try:
            await self.db.execute(delete(Stream).where(Stream.chat_id == chat_id))
            await self.db.execute(delete(Message).where(Message.chat_id == chat_id))
            await self.db.execute(delete(Chat).where(Chat.id == chat_id))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to delete chat {chat_id}: {str(e)}")
            raise ChatError("bad_request:database", "Failed to delete chat by id") from e

    async def get_project_for_user(self, project_id: UUID, user_id: UUID) -> Project | None:
        """Get a project by id, ensuring it belongs to the user."""
        try:
            result = await self.db.execute(
                select(Project).where(Project.id == project_id, Project.user_id == user_id)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise ChatError("bad_request:database", "Failed to get project") from e

    # Messages

    async def save_messages(self, messages: Sequence[dict[str, Any]]) -> int:
        """Insert messages, ignoring ids that are already stored.

        Returns the number of rows actually written.
        """
        rows = []
        for message in messages:
            role = MessageRole.parse(message.get("role"))
            if role is None:
                raise ChatError("bad_request:database", f"Invalid message role: {message.get('role')!r}")
            rows.append(
                {
                    "id": message["id"],
                    "chat_id": message["chat_id"],
                    "role": role.value,
                    "parts": list(message.get("parts") or []),
                    "attachments": list(message.get("attachments") or []),
                    "content_type": message.get("content_type", "text"),
                    "text_content": message.get("text_content") or "",
                    "created_at": message.get("created_at") or utcnow(),
                    "updated_at": message.get("created_at") or utcnow(),
                }
            )
        if not rows:
            return 0
        return await self._insert_ignoring_duplicates(Message, rows)

    async def get_message(self, message_id: UUID) -> Message | None:
        result = await self.db.execute(select(Message).where(Message.id == message_id))
        return result.scalar_one_or_none()

    async def get_messages_by_chat(self, chat_id: UUID) -> list[Message]:
        """Messages of a chat in chronological order."""
        try:
            result = await self.db.execute(
                select(Message).where(Message.chat_id == chat_id).order_by(Message.created_at)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise ChatError("bad_request:database", "Failed to get messages by chat id") from e

    async def get_latest_message(self, chat_id: UUID) -> Message | None:
        try:
            result = await self.db.execute(
                select(Message)
                .where(Message.chat_id == chat_id)
                .order_by(desc(Message.created_at))
                .limit(1)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise ChatError("bad_request:database", "Failed to get latest message") from e

    async def count_user_messages(self, user_id: UUID, since: datetime) -> int:
        """Count user-role messages in the user's chats created since ``since``."""
        try:
            stmt = (
                select(func.count(Message.id))
                .join(Chat, Message.chat_id == Chat.id)
                .where(
                    Chat.user_id == user_id,
                    Message.role == MessageRole.USER.value,
                    Message.created_at >= since,
                )
            )
            result = await self.db.execute(stmt)
            return result.scalar() or 0
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise ChatError("bad_request:database", "Failed to get message count by user id") from e

    # Private helper methods

    def _insert_statement(self, model, rows: list[dict[str, Any]]):
        dialect = self.db.get_bind().dialect.name
        upsert_insert = _UPSERT_INSERTS.get(dialect)
        if upsert_insert is None:
            return insert(model).values(rows)
        return upsert_insert(model).values(rows).on_conflict_do_nothing(index_elements=["id"])

    async def _insert_ignoring_duplicates(self, model, rows: list[dict[str, Any]]) -> int:
        try:
            result = await self.db.execute(self._insert_statement(model, rows))
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if not _is_unique_violation(e):
                logger.error(f"Failed to insert into {model.__tablename__}: {str(e)}")
                raise ChatError("bad_request:database", f"Failed to save {model.__tablename__}") from e
            logger.info(f"Duplicate id ignored on insert into {model.__tablename__}")
            return 0
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to insert into {model.__tablename__}: {str(e)}")
            raise ChatError("bad_request:database", f"Failed to save {model.__tablename__}") from e
        return max(result.rowcount or 0, 0)
