"""Clock and memory recall tools."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from clawpilot.memory import SemanticMemory
from clawpilot.tools.base import Tool


class GetCurrentDateTimeTool(Tool):
    """Returns current UTC time."""

    name = "get_current_datetime"
    description = "Get the current date and time in UTC and as a Unix timestamp."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {},
        "additionalProperties": False,
    }

    async def run(self, **kwargs: Any) -> str:
        now = datetime.now(timezone.utc)
        return f"UTC: {now:%Y-%m-%d %H:%M:%S}, Unix: {int(now.timestamp())}"


class RecallMemoryTool(Tool):
    name = "recall_memory"
    description = "Search conversation memory for relevant past context."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "chat_id": {"type": "string", "description": "Filled in automatically."},
            "query": {"type": "string", "description": "What to look for in past conversations."},
        },
        "required": ["chat_id", "query"],
        "additionalProperties": False,
    }

    def __init__(self, memory: SemanticMemory, limit: int = 5) -> None:
        self._memory = memory
        self._limit = limit

    async def run(self, **kwargs: Any) -> str:
        results = await self._memory.recall(kwargs["chat_id"], kwargs["query"], limit=self._limit)
        return "\n---\n".join(results) if results else "No relevant memories found."
