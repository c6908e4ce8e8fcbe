"""Tools the model may call during a turn."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    parameters: dict[str, Any]
    handler: ToolHandler

    def declaration(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "parameters": self.parameters}


async def get_weather(args: dict[str, Any]) -> dict[str, Any]:
    """Current weather for a coordinate from Open-Meteo."""
    params = {
        "latitude": args["latitude"],
        "longitude": args["longitude"],
        "current": "temperature_2m",
        "hourly": "temperature_2m",
        "daily": "sunrise,sunset",
        "timezone": "auto",
    }
    async with httpx.AsyncClient(timeout=settings.tool_request_timeout) as client:
        response = await client.get(str(settings.weather_api_url), params=params)
        response.raise_for_status()
        return response.json()


WEATHER_TOOL = Tool(
    name="getWeather",
    description="Get the current weather at a location",
    parameters={
        "type": "object",
        "properties": {
            "latitude": {"type": "number"},
            "longitude": {"type": "number"},
        },
        "required": ["latitude", "longitude"],
    },
    handler=get_weather,
)


class ToolRegistry:
    """Named tools exposed to the model as function declarations."""

    def __init__(self, tools: list[Tool] | None = None):
        self._tools = {tool.name: tool for tool in tools or []}

    def __bool__(self) -> bool:
        return bool(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def declarations(self) -> list[dict[str, Any]]:
        """Gemini ``tools`` payload."""
        if not self._tools:
            return []
        return [{"function_declarations": [tool.declaration() for tool in self._tools.values()]}]

    async def invoke(self, name: str, args: dict[str, Any]) -> dict[str, Any]:
        """Run a tool. Failures are reported back to the model as an error result."""
        tool = self._tools.get(name)
        if tool is None:
            logger.warning(f"Model requested unknown tool: {name}")
            return {"error": f"Unknown tool: {name}"}
        try:
            return await tool.handler(args)
        except (KeyError, TypeError, ValueError, httpx.HTTPError) as e:
            logger.warning(f"Tool {name} failed: {str(e)}")
            return {"error": f"Tool {name} failed: {str(e)}"}


def default_tool_registry() -> ToolRegistry:
    return ToolRegistry([WEATHER_TOOL])
