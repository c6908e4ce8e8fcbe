"""
Chat model for conversation threads.
"""

import enum

from sqlalchemy import Column, DateTime, ForeignKey, String, Text

from .base import UUID, BaseModel, utcnow


class ChatVisibility(str, enum.Enum):
    """Chat visibility enumeration."""

    PUBLIC = "public"
    PRIVATE = "private"


class Chat(BaseModel):
    """
    Represents a chat conversation owned by exactly one user.

    The id is supplied by the client on the first turn, so creating the same
    chat twice must resolve to a single row.
    """

    __tablename__ = "chats"

    user_id = Column(UUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(Text, nullable=False)
    visibility = Column(String(20), nullable=False, default=ChatVisibility.PRIVATE.value)
    project_id = Column(UUID(), ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True)
    last_activity_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    @property
    def is_public(self) -> bool:
        return self.visibility == ChatVisibility.PUBLIC.value
