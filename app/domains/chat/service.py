"""Chat service layer: turn orchestration, deletion and history.

A turn runs through a fixed sequence of states. Everything up to and including
persisting the user message happens before the response starts, so failures
there surface as HTTP errors. Once frames are flowing, failures become an inline
error frame and whatever part of the reply was produced is still saved.
"""

import asyncio
import logging
import re
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.domains.chat import frames
from app.domains.chat.catalog import get_chat_model
from app.domains.chat.context import NullStreamContext, StreamContext
from app.domains.chat.entitlements import EntitlementGate, is_model_available
from app.domains.chat.producer import (
    AssistantReply,
    ConversationMessage,
    Finish,
    ReplyAccumulator,
    TextDelta,
    TokenProducer,
    ToolCallDelta,
    ToolResultChunk,
)
from app.domains.chat.prompts import system_prompt
from app.domains.chat.store import ChatStore
from app.domains.chat.streams import StreamRegistry
from app.domains.chat.tools import ToolRegistry, default_tool_registry
from app.exceptions.ai import AIServiceError, AITimeoutError
from app.exceptions.chat import ChatError
from app.schemas.chat import (
    ChatHistoryResponse,
    ChatResponse,
    ChatTurnRequest,
    MessageResponse,
    extract_text_content,
)
from models.base import utcnow
from models.message import MessageRole
from models.project import Project
from models.user import User, UserType

logger = logging.getLogger(__name__)

_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

TITLE_MAX_LENGTH = 80


class TurnState(str, Enum):
    """Lifecycle of a single chat turn."""

    VALIDATING = "validating"
    RATE_LIMITED = "rate_limited"
    AUTHORIZING = "authorizing"
    FORBIDDEN = "forbidden"
    ENSURING_CHAT = "ensuring_chat"
    PERSISTING_INBOUND = "persisting_inbound"
    PRODUCING = "producing"
    PERSISTING_OUTBOUND = "persisting_outbound"
    COMPLETED = "completed"
    ERRORED_BUT_PERSISTED = "errored_but_persisted"


@dataclass(frozen=True)
class Caller:
    """Authenticated identity of a request.

    Captured as plain values so it stays valid after session rollbacks expire
    the ORM user.
    """

    id: UUID
    user_type: str = UserType.REGULAR.value

    @classmethod
    def from_user(cls, user: User) -> "Caller":
        return cls(id=user.id, user_type=user.user_type or UserType.REGULAR.value)


@dataclass
class Turn:
    chat_id: UUID
    caller: Caller
    model_id: str
    stream_id: UUID | None = None
    system_prompt: str = ""
    history: list[ConversationMessage] = field(default_factory=list)
    tools: ToolRegistry | None = None
    chat_created: bool = False
    state: TurnState = TurnState.VALIDATING

    def transition(self, state: TurnState) -> None:
        logger.debug(f"Turn for chat {self.chat_id}: {self.state.value} -> {state.value}")
        self.state = state


def generate_title(first_message: str) -> str:
    """Generate a chat title from the first user message."""
    text = " ".join(first_message.split())
    if not text:
        return "New chat"
    if len(text) > TITLE_MAX_LENGTH:
        return text[: TITLE_MAX_LENGTH - 3] + "..."
    return text


class ChatService:
    """Service class for chat turns and chat management."""

    def __init__(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        producer: TokenProducer | None = None,
        stream_context: StreamContext | None = None,
        tools: ToolRegistry | None = None,
    ):
        """Initialize the chat service.

        Args:
            db: Request-scoped session used before streaming starts.
            session_factory: Opens fresh sessions for work done while streaming,
                which can outlive the request.
            producer: Token producer for assistant replies.
            stream_context: Resumable transport; a null context streams directly.
            tools: Tools offered to models that support them.
        """
        self.db = db
        self.session_factory = session_factory
        self.producer = producer
        self.stream_context = stream_context or NullStreamContext()
        self.tools = tools if tools is not None else default_tool_registry()
        self.store = ChatStore(db)
        self.gate = EntitlementGate(db)
        self.streams = StreamRegistry(db)

    async def prepare_turn(self, request: ChatTurnRequest, caller: Caller) -> Turn:
        """Run every step that must succeed before a response starts.

        Raises:
            ChatError: ``rate_limit:chat`` when over quota, ``forbidden:chat``
                for a model outside the caller's tier or a chat owned by
                someone else, ``bad_request:api`` for a message id already
                stored in another chat, ``bad_request:database`` on storage
                failures.
        """
        turn = Turn(chat_id=request.id, caller=caller, model_id=request.selected_chat_model)
        user_text = request.message.text_content

        turn.transition(TurnState.AUTHORIZING)
        if not await self.gate.check_quota(caller.id, caller.user_type):
            turn.transition(TurnState.RATE_LIMITED)
            raise ChatError("rate_limit:chat")

        if not is_model_available(caller.user_type, request.selected_chat_model):
            turn.transition(TurnState.FORBIDDEN)
            raise ChatError("forbidden:chat", "The selected model is not available for your account.")

        project = await self._resolve_project(request.project_id, caller)
        project_id = project.id if project else None
        project_name = project.name if project else None

        await self._check_message_chat(request.message.id, request.id)

        turn.transition(TurnState.ENSURING_CHAT)
        chat, created = await self.store.ensure_chat(
            chat_id=request.id,
            user_id=caller.id,
            title=generate_title(user_text),
            visibility=request.selected_visibility_type.value,
            project_id=project_id,
        )
        if chat.user_id != caller.id:
            turn.transition(TurnState.FORBIDDEN)
            raise ChatError("forbidden:chat")
        turn.chat_created = created

        turn.transition(TurnState.PERSISTING_INBOUND)
        message = request.message
        parts = [part.model_dump(exclude_none=True) for part in message.parts]
        if not parts and message.content:
            parts = [{"type": "text", "text": message.content}]
        inserted = await self.store.save_messages(
            [
                {
                    "id": message.id,
                    "chat_id": chat.id,
                    "role": MessageRole.USER.value,
                    "parts": parts,
                    "attachments": [
                        attachment.model_dump(mode="json", by_alias=True)
                        for attachment in message.experimental_attachments
                    ],
                    "text_content": user_text,
                    "created_at": utcnow(),
                }
            ]
        )
        if not inserted:
            # A concurrent turn may have stored this id in another chat
            await self._check_message_chat(message.id, chat.id)
        await self.store.touch_chat(chat.id)

        turn.stream_id = await self.streams.allocate(chat.id, caller.id)
        turn.history = await self._load_history(chat.id)
        turn.system_prompt = system_prompt(request.selected_chat_model, project_name)
        turn.tools = self.tools if get_chat_model(request.selected_chat_model).supports_tools else None
        return turn

    async def open_stream(self, turn: Turn) -> AsyncIterator[str]:
        """Frames for a prepared turn.

        With a resumable transport the generation runs in the background and
        the returned iterator follows its buffer; otherwise the caller drives
        the generation directly and closing the iterator stops it.
        """
        if self.stream_context.is_available:
            return await self.stream_context.resumable_stream(turn.stream_id, lambda: self._produce(turn))
        return self._produce(turn)

    async def delete_chat(self, chat_id: UUID, caller: Caller) -> ChatResponse:
        """Delete an owned chat along with its messages and streams."""
        chat = await self.store.get_chat(chat_id)
        if chat is None:
            raise ChatError("not_found:chat")
        if chat.user_id != caller.id:
            raise ChatError("forbidden:chat")

        deleted = ChatResponse.model_validate(chat)
        await self.store.delete_chat(chat_id)
        logger.info(f"Deleted chat {chat_id} for user {caller.id}")
        return deleted

    async def get_history(self, chat_id: UUID, caller: Caller) -> ChatHistoryResponse:
        """Chat metadata and messages in chronological order."""
        chat = await self.store.get_chat(chat_id)
        if chat is None:
            raise ChatError("not_found:chat")
        if not chat.is_public and chat.user_id != caller.id:
            raise ChatError("forbidden:chat")

        messages = await self.store.get_messages_by_chat(chat_id)
        return ChatHistoryResponse(
            chat=ChatResponse.model_validate(chat),
            message_count=len(messages),
            messages=[MessageResponse.model_validate(message) for message in messages],
        )

    # Private helper methods

    async def _produce(self, turn: Turn) -> AsyncIterator[str]:
        turn.transition(TurnState.PRODUCING)
        accumulator = ReplyAccumulator()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + settings.chat_max_duration_seconds
        concluded = False

        try:
            yield frames.start_step(str(accumulator.message_id))

            finish = None
            stream = self.producer.stream(turn.model_id, turn.system_prompt, turn.history, tools=turn.tools)
            async with aclosing(stream) as chunks:
                while finish is None:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        raise AITimeoutError("Chat turn exceeded its time limit")
                    try:
                        chunk = await asyncio.wait_for(anext(chunks), timeout=remaining)
                    except StopAsyncIteration:
                        break
                    except TimeoutError as e:
                        raise AITimeoutError("Chat turn exceeded its time limit") from e

                    if isinstance(chunk, Finish):
                        finish = chunk
                        continue
                    accumulator.add(chunk)
                    if isinstance(chunk, TextDelta):
                        yield frames.text(chunk.text)
                    elif isinstance(chunk, ToolCallDelta):
                        yield frames.tool_call(chunk.tool_call_id, chunk.tool_name, chunk.args)
                    elif isinstance(chunk, ToolResultChunk):
                        yield frames.tool_result(chunk.tool_call_id, chunk.result)

            if finish is None:
                raise AIServiceError("Model stream ended without finishing")

            turn.transition(TurnState.PERSISTING_OUTBOUND)
            reply = AssistantReply(
                id=accumulator.message_id,
                content=finish.reply.content,
                parts=finish.reply.parts or accumulator.to_reply().parts,
            )
            await self._persist_reply(turn, reply)

            usage = finish.usage
            yield frames.finish_step(finish.finish_reason, usage.prompt_tokens, usage.completion_tokens)
            yield frames.finish_message(finish.finish_reason, usage.prompt_tokens, usage.completion_tokens)
            turn.transition(TurnState.COMPLETED)
            concluded = True

        except Exception as e:
            logger.error(f"Stream {turn.stream_id} for chat {turn.chat_id} failed: {str(e)}", exc_info=True)
            if accumulator.has_content and turn.state != TurnState.COMPLETED:
                await self._persist_reply(turn, accumulator.to_reply())
            turn.transition(TurnState.ERRORED_BUT_PERSISTED)
            concluded = True
            yield frames.error()

        finally:
            if not concluded:
                logger.info(f"Stream {turn.stream_id} for chat {turn.chat_id} was abandoned")
            await asyncio.shield(self._conclude_stream(turn.stream_id, concluded))

    async def _persist_reply(self, turn: Turn, reply: AssistantReply) -> bool:
        """Save the assistant message with a fresh session. Failures are logged only."""
        try:
            async with self.session_factory() as session:
                store = ChatStore(session)
                await store.save_messages(
                    [
                        {
                            "id": reply.id,
                            "chat_id": turn.chat_id,
                            "role": MessageRole.ASSISTANT.value,
                            "parts": reply.parts,
                            "attachments": [],
                            "text_content": reply.text_content,
                            "created_at": utcnow(),
                        }
                    ]
                )
                await store.touch_chat(turn.chat_id)
            return True
        except (ChatError, SQLAlchemyError) as e:
            logger.error(f"Failed to save assistant message for chat {turn.chat_id}: {str(e)}")
            return False

    async def _conclude_stream(self, stream_id: UUID | None, concluded: bool) -> None:
        if stream_id is None:
            return
        try:
            async with self.session_factory() as session:
                registry = StreamRegistry(session)
                if concluded:
                    await registry.mark_completed(stream_id)
                else:
                    await registry.mark_inactive(stream_id)
        except SQLAlchemyError as e:
            logger.warning(f"Failed to update stream {stream_id}: {str(e)}")

    async def _resolve_project(self, project_id: str | None, caller: Caller) -> Project | None:
        """Owned project for a raw project id; anything else is dropped with a warning."""
        if not project_id:
            return None
        if not _UUID_PATTERN.match(project_id):
            logger.warning(f"Ignoring malformed project id {project_id!r}")
            return None
        project = await self.store.get_project_for_user(UUID(project_id), caller.id)
        if project is None:
            logger.warning(f"Ignoring project {project_id} not owned by user {caller.id}")
        return project

    async def _check_message_chat(self, message_id: UUID, chat_id: UUID) -> None:
        """Reject a message id that is already stored in a different chat."""
        existing = await self.store.get_message(message_id)
        if existing is not None and existing.chat_id != chat_id:
            logger.warning(f"Message {message_id} already belongs to chat {existing.chat_id}, not {chat_id}")
            raise ChatError("bad_request:api", "The message id is already used in another chat.")

    async def _load_history(self, chat_id: UUID) -> list[ConversationMessage]:
        """Recent messages for the model, oldest first.

        Rows with a role outside user/assistant/system are skipped rather than
        guessed at.
        """
        messages = await self.store.get_messages_by_chat(chat_id)
        history = []
        for message in messages[-settings.chat_history_limit :]:
            role = MessageRole.parse(message.role)
            if role is None:
                logger.warning(f"Skipping message {message.id} with unknown role {message.role!r}")
                continue
            parts = message.parts or []
            history.append(
                ConversationMessage(
                    role=role,
                    content=message.text_content or extract_text_content(None, parts),
                    parts=parts,
                )
            )
        return history
