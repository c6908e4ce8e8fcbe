"""Chat schemas for request/response serialization."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import AnyHttpUrl, ConfigDict, Field

from app.core.config import settings
from models.chat import ChatVisibility

from .base import BaseModelSchema, CamelSchema


class MessagePart(CamelSchema):
    """One typed content segment of a message.

    Known types are ``text``, ``tool-invocation`` and ``tool-result``; other
    segment types sent by newer clients are stored as-is.
    """

    model_config = ConfigDict(extra="allow")

    type: str = Field(..., min_length=1, max_length=50)
    text: str | None = Field(None, max_length=settings.max_message_length)


class Attachment(CamelSchema):
    """Attachment descriptor. Uploads are stored elsewhere."""

    url: AnyHttpUrl
    name: str = Field(..., min_length=1, max_length=2000)
    content_type: Literal["image/png", "image/jpg", "image/jpeg"]


class InboundMessage(CamelSchema):
    """The user message of a turn."""

    id: UUID = Field(..., description="Client-generated id, used as the idempotency key")
    role: Literal["user"] = "user"
    content: str | None = Field(None, max_length=settings.max_message_length)
    parts: list[MessagePart] = Field(default_factory=list)
    created_at: datetime | None = None
    experimental_attachments: list[Attachment] = Field(
        default_factory=list, alias="experimental_attachments"
    )

    @property
    def text_content(self) -> str:
        """Plain text of the message: direct content, else the first text part."""
        return extract_text_content(self.content, [part.model_dump() for part in self.parts])


class ChatTurnRequest(CamelSchema):
    """Body of ``POST /api/chat``."""

    id: UUID = Field(..., description="Chat id; created on the first turn")
    project_id: str | None = Field(None, description="Optional project association")
    message: InboundMessage
    selected_chat_model: Literal["chat-model", "chat-model-reasoning"] = "chat-model"
    selected_visibility_type: ChatVisibility = ChatVisibility.PRIVATE


class ChatResponse(BaseModelSchema):
    """Schema for chat response."""

    user_id: UUID
    title: str
    visibility: ChatVisibility
    project_id: UUID | None = None
    updated_at: datetime
    last_activity_at: datetime


class MessageResponse(BaseModelSchema):
    """Schema for a stored message."""

    chat_id: UUID
    role: str
    parts: list[dict[str, Any]] = Field(default_factory=list)
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    content_type: str | None = None
    text_content: str | None = None


class ChatHistoryResponse(CamelSchema):
    """Schema for chat history response."""

    chat: ChatResponse
    message_count: int
    messages: list[MessageResponse] = Field(default_factory=list)


def extract_text_content(content: str | None, parts: list[dict[str, Any]] | None) -> str:
    """Denormalized text for a message.

    Direct content wins; otherwise the first text segment is used. A message
    with no text at all yields an empty string.
    """
    if content:
        return content
    for part in parts or []:
        if part.get("type") == "text" and part.get("text"):
            return part["text"]
    return ""


ChatHistoryResponse.model_rebuild()
