"""Token producer adapter.

A producer turns a conversation into a lazy, finite sequence of chunks: text
deltas, tool calls and tool results, then exactly one terminal ``Finish``
carrying the assembled reply and token usage. Consumers fold over the sequence
instead of registering completion callbacks, and stop production by closing the
iterator.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

import google.generativeai as genai
from google.generativeai.types import HarmBlockThreshold, HarmCategory
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.core.config import settings
from app.domains.chat.catalog import resolve_provider_model
from app.domains.chat.tools import ToolRegistry
from app.exceptions.ai import (
    AIConfigurationError,
    AIContentFilterError,
    AIQuotaExceededError,
    AIRateLimitError,
    AIServiceError,
    classify_ai_error,
    map_ai_error,
)
from app.schemas.chat import extract_text_content
from models.message import MessageRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationMessage:
    """A history entry handed to the producer."""

    role: MessageRole
    content: str
    parts: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0


@dataclass
class AssistantReply:
    id: UUID
    content: str
    parts: list[dict[str, Any]]

    @property
    def text_content(self) -> str:
        return extract_text_content(self.content, self.parts)


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallDelta:
    tool_call_id: str
    tool_name: str
    args: dict[str, Any]


@dataclass(frozen=True)
class ToolResultChunk:
    tool_call_id: str
    tool_name: str
    result: Any


@dataclass(frozen=True)
class Finish:
    reply: AssistantReply
    usage: Usage
    finish_reason: str = "stop"


Chunk = TextDelta | ToolCallDelta | ToolResultChunk | Finish


class ReplyAccumulator:
    """Folds chunks into an assistant reply.

    Consecutive text deltas share one text segment; tool calls and results get
    a segment each, in arrival order.
    """

    def __init__(self, message_id: UUID | None = None):
        self.message_id = message_id or uuid.uuid4()
        self.parts: list[dict[str, Any]] = []
        self._text: list[str] = []

    def add(self, chunk: Chunk) -> None:
        if isinstance(chunk, TextDelta):
            self._text.append(chunk.text)
            if self.parts and self.parts[-1]["type"] == "text":
                self.parts[-1]["text"] += chunk.text
            else:
                self.parts.append({"type": "text", "text": chunk.text})
        elif isinstance(chunk, ToolCallDelta):
            self.parts.append(
                {
                    "type": "tool-invocation",
                    "toolInvocation": {
                        "state": "call",
                        "toolCallId": chunk.tool_call_id,
                        "toolName": chunk.tool_name,
                        "args": chunk.args,
                    },
                }
            )
        elif isinstance(chunk, ToolResultChunk):
            self.parts.append(
                {
                    "type": "tool-result",
                    "toolCallId": chunk.tool_call_id,
                    "toolName": chunk.tool_name,
                    "result": chunk.result,
                }
            )

    @property
    def has_content(self) -> bool:
        return bool(self.parts)

    def to_reply(self) -> AssistantReply:
        return AssistantReply(
            id=self.message_id,
            content="".join(self._text),
            parts=[dict(part) for part in self.parts],
        )


class TokenProducer(ABC):
    """Uniform streaming interface over a model provider."""

    @abstractmethod
    def stream(
        self,
        model_id: str,
        system_prompt: str,
        messages: list[ConversationMessage],
        tools: ToolRegistry | None = None,
    ) -> AsyncIterator[Chunk]:
        """Lazy chunk sequence for one reply. Close it to stop production."""


SAFETY_SETTINGS = {
    HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
}


class GeminiTokenProducer(TokenProducer):
    """Token producer backed by Google Gemini streaming."""

    def __init__(self, api_key: str | None = None):
        api_key = api_key or settings.gemini_api_key
        if not api_key:
            raise AIConfigurationError("Gemini API key not configured")

        try:
            genai.configure(api_key=api_key)
        except Exception as e:
            logger.error(f"Failed to configure Gemini client: {str(e)}")
            raise AIConfigurationError(f"Failed to initialize AI service: {str(e)}") from e

    async def stream(
        self,
        model_id: str,
        system_prompt: str,
        messages: list[ConversationMessage],
        tools: ToolRegistry | None = None,
    ) -> AsyncIterator[Chunk]:
        instruction, contents = to_gemini_contents(system_prompt, messages)
        model = self._build_model(model_id, instruction, tools)
        accumulator = ReplyAccumulator()
        usage = Usage()
        finish_reason = "stop"

        for step in range(settings.chat_max_steps):
            response = await self._start_stream(model, contents)
            function_calls = []
            step_usage = Usage()

            try:
                async for chunk in response:
                    for part in _response_parts(chunk):
                        text = getattr(part, "text", "") or ""
                        if text:
                            delta = TextDelta(text)
                            accumulator.add(delta)
                            yield delta
                        function_call = getattr(part, "function_call", None)
                        if function_call is not None and getattr(function_call, "name", ""):
                            function_calls.append(function_call)
                    _read_usage(chunk, step_usage)
            except AIServiceError:
                raise
            except Exception as e:
                logger.error(f"Gemini stream failed: {str(e)}")
                raise self._map_error(e) from e

            usage.prompt_tokens += step_usage.prompt_tokens
            usage.completion_tokens += step_usage.completion_tokens

            if not function_calls or not tools:
                break

            if step == settings.chat_max_steps - 1:
                logger.warning(f"Reached {settings.chat_max_steps} tool steps, stopping")
                finish_reason = "tool-calls"
                break

            model_parts = []
            response_parts = []
            for function_call in function_calls:
                args = _to_dict(function_call.args)
                call = ToolCallDelta(str(uuid.uuid4()), function_call.name, args)
                accumulator.add(call)
                yield call

                result = await tools.invoke(call.tool_name, args)
                result_chunk = ToolResultChunk(call.tool_call_id, call.tool_name, result)
                accumulator.add(result_chunk)
                yield result_chunk

                model_parts.append({"function_call": {"name": call.tool_name, "args": args}})
                response_parts.append(
                    {"function_response": {"name": call.tool_name, "response": {"result": result}}}
                )

            contents.append({"role": "model", "parts": model_parts})
            contents.append({"role": "user", "parts": response_parts})

        yield Finish(reply=accumulator.to_reply(), usage=usage, finish_reason=finish_reason)

    def _build_model(self, model_id: str, system_instruction: str, tools: ToolRegistry | None):
        model_name = resolve_provider_model(model_id)
        return genai.GenerativeModel(
            model_name=model_name,
            system_instruction=system_instruction or None,
            safety_settings=SAFETY_SETTINGS,
            generation_config=genai.types.GenerationConfig(
                candidate_count=1,
                max_output_tokens=settings.gemini_max_tokens,
                temperature=0.8,
            ),
            tools=tools.declarations() if tools else None,
        )

    @retry(
        retry=retry_if_exception_type((AIRateLimitError, AIQuotaExceededError)),
        stop=stop_after_attempt(settings.ai_max_retry_attempts),
        wait=wait_exponential(
            multiplier=settings.ai_retry_backoff_factor,
            min=settings.ai_retry_min_wait,
            max=settings.ai_retry_max_wait,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _start_stream(self, model, contents: list[dict[str, Any]]):
        """Open a streaming generation, retrying while rate limited."""
        try:
            return await model.generate_content_async(contents, stream=True)
        except AIServiceError:
            raise
        except Exception as e:
            logger.error(f"Gemini API call failed: {str(e)}")
            raise self._map_error(e) from e

    @staticmethod
    def _map_error(error: Exception) -> AIServiceError:
        return map_ai_error(classify_ai_error(error), f"AI generation failed: {str(error)}")


def to_gemini_contents(
    system_prompt: str, messages: list[ConversationMessage]
) -> tuple[str, list[dict[str, Any]]]:
    """Split history into a system instruction and Gemini ``contents``.

    Stored system messages are appended to the instruction; Gemini has no
    system role in contents. Messages without text are skipped.
    """
    instruction = [system_prompt] if system_prompt else []
    contents = []
    for message in messages:
        if not message.content:
            continue
        if message.role == MessageRole.SYSTEM:
            instruction.append(message.content)
            continue
        role = "model" if message.role == MessageRole.ASSISTANT else "user"
        contents.append({"role": role, "parts": [message.content]})
    return "\n\n".join(instruction), contents


def _response_parts(chunk) -> list:
    candidates = getattr(chunk, "candidates", None)
    if not candidates:
        feedback = getattr(chunk, "prompt_feedback", None)
        if feedback is not None and getattr(feedback, "block_reason", None):
            logger.error(f"Prompt blocked by safety filters: {feedback}")
            raise AIContentFilterError("Content was blocked by AI safety filters. Please rephrase your request.")
        return []
    content = getattr(candidates[0], "content", None)
    return list(getattr(content, "parts", None) or [])


def _read_usage(chunk, usage: Usage) -> None:
    # Streaming usage metadata is cumulative; keep the latest values
    metadata = getattr(chunk, "usage_metadata", None)
    if metadata is None:
        return
    usage.prompt_tokens = int(getattr(metadata, "prompt_token_count", 0) or 0)
    usage.completion_tokens = int(getattr(metadata, "candidates_token_count", 0) or 0)


def _to_dict(args) -> dict[str, Any]:
    if args is None:
        return {}
    if hasattr(args, "items"):
        return {key: value for key, value in args.items()}
    return dict(args)
