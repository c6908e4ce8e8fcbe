"""
Project model for organizing chats.

Projects are managed elsewhere; chats only keep an optional reference.
"""

from sqlalchemy import Column, ForeignKey, String, Text

from .base import UUID, BaseModel


class Project(BaseModel):
    """
    Represents a project entity in the application.
    """

    __tablename__ = "projects"

    user_id = Column(UUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
