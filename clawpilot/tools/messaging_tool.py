"""Messaging and history search tools."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from clawpilot.db import Database
from clawpilot.tools.base import Tool

if TYPE_CHECKING:
    from clawpilot.channels.base import Transport


class SendMessageTool(Tool):
    """Send a side message into the current chat."""

    name = "send_message"
    description = "Send an additional text message to the current chat."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "chat_id": {"type": "string", "description": "Filled in automatically."},
            "text": {"type": "string", "description": "The message text to send."},
        },
        "required": ["chat_id", "text"],
        "additionalProperties": False,
    }

    def __init__(self, transport: Transport, allowed_chat_ids: frozenset[str]) -> None:
        self._transport = transport
        self._allowed_chat_ids = allowed_chat_ids

    async def run(self, **kwargs: Any) -> str:
        chat_id: str = kwargs["chat_id"]
        if self._allowed_chat_ids and chat_id not in self._allowed_chat_ids:
            return f"Error: chat {chat_id} is not in the allowed chat list."
        sent = await self._transport.send_text(chat_id, kwargs["text"])
        return "Message sent successfully." if sent else "Message could not be delivered."


class SearchMessagesTool(Tool):
    """Keyword search over stored conversation history."""

    name = "search_messages"
    description = "Search conversation history for messages containing a keyword."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "keyword": {"type": "string", "description": "The keyword to search for."},
            "limit": {"type": "integer", "description": "Maximum number of results (default 10)."},
        },
        "required": ["keyword"],
        "additionalProperties": False,
    }

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, **kwargs: Any) -> str:
        limit = int(kwargs.get("limit") or 10)
        results = self._db.search_messages(kwargs["keyword"], limit=limit)
        return json.dumps(results) if results else "No messages found."
