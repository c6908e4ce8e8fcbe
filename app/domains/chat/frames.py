"""Data stream protocol frames.

Each frame is one line ``<type>:<json>\\n``. Clients render text deltas as they
arrive, tool frames as structured events, and stop on the finish frame.
"""

import json
from typing import Any

DATA_STREAM_HEADERS = {"x-vercel-ai-data-stream": "v1"}
DATA_STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"

GENERIC_ERROR_MESSAGE = "An error occurred."

TEXT = "0"
DATA = "2"
ERROR = "3"
TOOL_CALL = "9"
TOOL_RESULT = "a"
FINISH_STEP = "e"
START_STEP = "f"
FINISH_MESSAGE = "d"


def _frame(code: str, value: Any) -> str:
    return f"{code}:{json.dumps(value, separators=(',', ':'), default=str)}\n"


def start_step(message_id: str) -> str:
    return _frame(START_STEP, {"messageId": str(message_id)})


def text(delta: str) -> str:
    return _frame(TEXT, delta)


def tool_call(tool_call_id: str, tool_name: str, args: dict[str, Any]) -> str:
    return _frame(TOOL_CALL, {"toolCallId": tool_call_id, "toolName": tool_name, "args": args})


def tool_result(tool_call_id: str, result: Any) -> str:
    return _frame(TOOL_RESULT, {"toolCallId": tool_call_id, "result": result})


def data(items: list[Any]) -> str:
    return _frame(DATA, items)


def error(message: str = GENERIC_ERROR_MESSAGE) -> str:
    return _frame(ERROR, message)


def _usage(prompt_tokens: int, completion_tokens: int) -> dict[str, int]:
    return {"promptTokens": prompt_tokens, "completionTokens": completion_tokens}


def finish_step(finish_reason: str, prompt_tokens: int = 0, completion_tokens: int = 0) -> str:
    return _frame(
        FINISH_STEP,
        {
            "finishReason": finish_reason,
            "usage": _usage(prompt_tokens, completion_tokens),
            "isContinued": False,
        },
    )


def finish_message(finish_reason: str, prompt_tokens: int = 0, completion_tokens: int = 0) -> str:
    return _frame(
        FINISH_MESSAGE,
        {"finishReason": finish_reason, "usage": _usage(prompt_tokens, completion_tokens)},
    )


def append_message(message: dict[str, Any]) -> str:
    """Synthetic frame telling the client to render an already-finished reply."""
    return data([{"type": "append-message", "message": json.dumps(message, default=str)}])


def parse(frame: str) -> tuple[str, Any]:
    """Split a frame into its type code and decoded value."""
    code, _, payload = frame.rstrip("\n").partition(":")
    return code, json.loads(payload)
