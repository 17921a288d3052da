"""Allow/deny gate consulted before every tool call."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

LOGGER = logging.getLogger(__name__)

BLOCKED_TOOL_PATTERNS = ("shell", "bash", "exec", "run_command")
DANGEROUS_ARG_PATTERNS = ("rm -rf", "sudo", "chmod 777", "mkfs", "> /dev/")

TOOL_BLOCKED_REASON = "Tool blocked by security policy."
ARGS_BLOCKED_REASON = "Arguments blocked by security policy."


@dataclass(frozen=True, slots=True)
class GateDecision:
    allowed: bool
    reason: str | None = None


ALLOW = GateDecision(allowed=True)


class ToolGate:
    """Rejects shell-like tools and arguments that look destructive."""

    def __init__(
        self,
        blocked_tool_patterns: tuple[str, ...] = BLOCKED_TOOL_PATTERNS,
        dangerous_arg_patterns: tuple[str, ...] = DANGEROUS_ARG_PATTERNS,
    ) -> None:
        self._blocked_tool_patterns = tuple(p.lower() for p in blocked_tool_patterns)
        self._dangerous_arg_patterns = tuple(p.lower() for p in dangerous_arg_patterns)

    def check(self, tool_name: str, arguments: dict[str, Any]) -> GateDecision:
        lowered = tool_name.lower()
        if any(pattern in lowered for pattern in self._blocked_tool_patterns):
            LOGGER.warning("Tool gate blocked tool: %s", tool_name)
            return GateDecision(allowed=False, reason=TOOL_BLOCKED_REASON)

        for value in arguments.values():
            if not isinstance(value, str):
                continue
            value = value.lower()
            if any(pattern in value for pattern in self._dangerous_arg_patterns):
                LOGGER.warning("Tool gate blocked dangerous arguments for tool: %s", tool_name)
                return GateDecision(allowed=False, reason=ARGS_BLOCKED_REASON)

        return ALLOW
