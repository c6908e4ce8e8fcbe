"""Chat models offered to clients and the provider models behind them."""

from dataclasses import dataclass

from app.core.config import settings
from app.exceptions.ai import AIConfigurationError

DEFAULT_CHAT_MODEL = "chat-model"
REASONING_CHAT_MODEL = "chat-model-reasoning"


@dataclass(frozen=True)
class ChatModel:
    id: str
    name: str
    description: str
    supports_tools: bool = True


CHAT_MODELS: dict[str, ChatModel] = {
    DEFAULT_CHAT_MODEL: ChatModel(
        id=DEFAULT_CHAT_MODEL,
        name="Chat",
        description="Primary model for all-purpose chat",
    ),
    REASONING_CHAT_MODEL: ChatModel(
        id=REASONING_CHAT_MODEL,
        name="Reasoning",
        description="Advanced reasoning model for complex tasks",
        supports_tools=False,
    ),
}


def get_chat_model(model_id: str) -> ChatModel:
    try:
        return CHAT_MODELS[model_id]
    except KeyError:
        raise AIConfigurationError(f"Unknown chat model: {model_id}") from None


def resolve_provider_model(model_id: str) -> str:
    """Gemini model name for a chat model id."""
    get_chat_model(model_id)
    if model_id == REASONING_CHAT_MODEL:
        return settings.gemini_reasoning_model
    return settings.gemini_model
