"""Tool registry: argument validation, execution and the audit trail."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, create_model

from clawpilot.db import Database
from clawpilot.tools.base import Tool

LOGGER = logging.getLogger(__name__)

_JSON_TYPES: dict[str, type[Any]] = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "object": dict,
    "array": list,
}


class ToolArgumentsError(ValueError):
    """Requested arguments do not fit the tool's schema."""


@dataclass(frozen=True, slots=True)
class _Entry:
    tool: Tool
    arguments: type[BaseModel]


class ToolRegistry:
    """Tools the model may call, keyed by name.

    Each tool's JSON schema is compiled into a pydantic model once, at
    registration, and every call is validated against it before running.
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self._entries: dict[str, _Entry] = {}

    def __contains__(self, tool_name: str) -> bool:
        return tool_name in self._entries

    def register(self, tool: Tool) -> None:
        if tool.name in self._entries:
            LOGGER.warning("Tool %s registered twice, replacing", tool.name)
        self._entries[tool.name] = _Entry(tool, arguments_model(tool))

    def accepts(self, tool_name: str, argument: str) -> bool:
        """Whether the named tool declares ``argument`` in its schema."""

        entry = self._entries.get(tool_name)
        return entry is not None and entry.tool.accepts(argument)

    def list_tool_specs(self) -> list[dict[str, Any]]:
        return [entry.tool.to_spec() for entry in self._entries.values()]

    async def execute(self, conversation_key: str, tool_name: str, arguments: dict[str, Any]) -> Any:
        entry = self._entries.get(tool_name)
        if entry is None:
            raise KeyError(f"Unknown tool: {tool_name}")

        try:
            validated = entry.arguments.model_validate(arguments).model_dump(exclude_none=True)
        except ValidationError as exc:
            self._db.log_tool_execution(conversation_key, tool_name, arguments, {"error": str(exc)}, succeeded=False)
            raise ToolArgumentsError(f"Invalid input for tool {tool_name}: {exc}") from exc

        LOGGER.info("Running tool %s for chat %s", tool_name, conversation_key)
        try:
            result = await entry.tool.run(**validated)
        except Exception as exc:  # noqa: BLE001
            self._db.log_tool_execution(conversation_key, tool_name, validated, {"error": str(exc)}, succeeded=False)
            raise
        self._db.log_tool_execution(conversation_key, tool_name, validated, result, succeeded=True)
        return result


def arguments_model(tool: Tool) -> type[BaseModel]:
    """Compile a tool's ``parameters_schema`` into a pydantic model.

    Optional properties default to None and are dropped before the call.
    ``additionalProperties: false`` rejects unknown arguments.
    """
    schema = tool.parameters_schema
    required = set(schema.get("required", []))
    fields: dict[str, Any] = {}
    for name, prop in schema.get("properties", {}).items():
        typ = _JSON_TYPES.get(prop.get("type", "string"), str)
        fields[name] = (typ, ...) if name in required else (typ | None, None)

    extra = "forbid" if schema.get("additionalProperties") is False else "ignore"
    model_name = "".join(part.title() for part in tool.name.split("_")) + "Arguments"
    return create_model(model_name, __config__=ConfigDict(extra=extra), **fields)
