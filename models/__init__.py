"""
Models package initialization.
"""

from .base import Base, BaseModel
from .chat import Chat, ChatVisibility
from .message import Message, MessageRole
from .project import Project
from .stream import Stream, StreamStatus
from .user import User, UserType

__all__ = [
    "Base",
    "BaseModel",
    "User",
    "UserType",
    "Project",
    # Chat models
    "Chat",
    "ChatVisibility",
    "Message",
    "MessageRole",
    "Stream",
    "StreamStatus",
]
