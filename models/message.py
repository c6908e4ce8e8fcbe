"""
Message model for chat messages.
"""

import enum
import logging

from sqlalchemy import Column, ForeignKey, String, Text

from .base import UUID, BaseModel, JSONType

logger = logging.getLogger(__name__)


class MessageRole(str, enum.Enum):
    """Message role enumeration.

    Stored as a plain string column; rows written by older clients may carry
    values outside this set. Use :meth:`parse` instead of the constructor when
    reading stored values.
    """

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"

    @classmethod
    def parse(cls, value) -> "MessageRole | None":
        """Return the matching role, or None for an unrecognized value."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


class Message(BaseModel):
    """
    Represents a single immutable chat message.

    :ivar chat_id: Chat the message belongs to.
    :ivar role: One of :class:`MessageRole`.
    :ivar parts: Ordered typed content segments (text, tool-invocation, tool-result).
    :ivar attachments: Attachment descriptors supplied by the client.
    :ivar content_type: Kind of denormalized content, currently always ``text``.
    :ivar text_content: Plain text extracted from the parts for fast retrieval.
    """

    __tablename__ = "messages"

    chat_id = Column(UUID(), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(20), nullable=False, index=True)
    parts = Column(JSONType, nullable=False, default=list)
    attachments = Column(JSONType, nullable=False, default=list)
    content_type = Column(String(50), nullable=True, default="text")
    text_content = Column(Text, nullable=True)

    @property
    def message_role(self) -> MessageRole | None:
        return MessageRole.parse(self.role)
