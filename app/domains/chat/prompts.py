"""System prompts."""

from app.domains.chat.catalog import REASONING_CHAT_MODEL

REGULAR_PROMPT = (
    "You are a friendly assistant! Keep your responses concise and helpful."
)

TOOLS_PROMPT = """
You can look up the current weather for a location with the getWeather tool.
Only call it when the user asks about weather, and pass the latitude and
longitude of the place they mention.
"""

REASONING_PROMPT = """
Think through the problem step by step before answering. Show the final answer
clearly at the end of your response.
"""


def system_prompt(selected_chat_model: str, project_name: str | None = None) -> str:
    """Build the system instruction for a turn."""
    if selected_chat_model == REASONING_CHAT_MODEL:
        prompt = f"{REGULAR_PROMPT}\n{REASONING_PROMPT}"
    else:
        prompt = f"{REGULAR_PROMPT}\n{TOOLS_PROMPT}"

    if project_name:
        prompt += f"\nThis conversation belongs to the project \"{project_name}\"."

    return prompt
