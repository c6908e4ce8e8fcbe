"""
Stream model for generation attempts.
"""

import enum

from sqlalchemy import Column, DateTime, ForeignKey, String

from .base import UUID, BaseModel


class StreamStatus(str, enum.Enum):
    """Stream status enumeration."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    COMPLETED = "completed"


class Stream(BaseModel):
    """
    Represents one attempt to generate and deliver a reply for a chat turn.

    The row outlives the HTTP response that started it, which is what lets a
    reconnecting client find the generation again. A chat keeps every
    historical row; the most recent one is treated as current.
    """

    __tablename__ = "streams"

    chat_id = Column(UUID(), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(UUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=StreamStatus.ACTIVE.value, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
