"""Core domain models used across layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_DONE = "done"
STATUS_ERROR = "error"

# Messages in these states never made it into a finished exchange.
UNSETTLED_STATUSES = (STATUS_PENDING, STATUS_PROCESSING)


@dataclass(frozen=True, slots=True)
class InboundMessage:
    """Message normalized by the transport for pipeline usage."""

    conversation_key: str
    message_id: str | None
    sender_name: str
    sender_id: str
    text: str
    timestamp: datetime
    is_group: bool = False
    group_name: str | None = None


@dataclass(frozen=True, slots=True)
class Turn:
    """One role-tagged unit of a session's working history."""

    role: str
    content: str

    def to_chat_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True)
class Conversation:
    """Durable per-chat record."""

    key: str
    display_name: str | None = None
    is_group: bool = False
    system_prompt: str | None = None


@dataclass(slots=True)
class PersistedMessage:
    """A sent or received message as stored in the database."""

    conversation_key: str
    role: str
    content: str
    status: str = STATUS_PENDING
    transport_message_id: str | None = None
    sender_name: str | None = None
    sender_id: str | None = None
    id: int | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class ScheduledTask:
    """Represents a persisted recurring task."""

    id: int
    conversation_key: str
    description: str
    cron_expression: str
    is_active: bool = True
    last_run_at: datetime | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class LLMToolCall:
    """Tool invocation returned by an LLM provider."""

    name: str
    arguments: dict[str, Any]
    call_id: str | None = None


@dataclass(slots=True)
class LLMResponse:
    """Result from an LLM generation request."""

    content: str
    tool_calls: list[LLMToolCall] = field(default_factory=list)
    raw: dict[str, Any] | None = None
