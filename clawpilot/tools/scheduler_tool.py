"""Tools for managing recurring scheduled tasks."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from clawpilot.cron import is_valid_cron
from clawpilot.db import Database
from clawpilot.tools.base import Tool

_CHAT_ID = {
    "type": "string",
    "description": "Chat ID of the current conversation (filled in automatically).",
}
_TASK_ID = {"type": "integer", "description": "Task ID as shown by list_tasks."}


class ScheduleTaskTool(Tool):
    """Create a recurring task for the current chat."""

    name = "schedule_task"
    description = (
        "Schedule a recurring task with a cron expression for the current chat. "
        "Times are UTC."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "chat_id": _CHAT_ID,
            "description": {"type": "string", "description": "A human-readable description of the task."},
            "cron_expression": {
                "type": "string",
                "description": "A 5-field cron expression, e.g. '0 9 * * *' for daily at 9:00 UTC.",
            },
        },
        "required": ["chat_id", "description", "cron_expression"],
        "additionalProperties": False,
    }

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, **kwargs: Any) -> str:
        description: str = kwargs["description"]
        cron_expression = " ".join(kwargs["cron_expression"].split())
        if not is_valid_cron(cron_expression):
            return (
                f"Invalid cron expression \"{cron_expression}\". Use 5 fields "
                "(minute hour day-of-month month day-of-week) made of *, numbers, "
                "lists (a,b), ranges (a-b) or steps (*/n)."
            )
        task_id = self._db.create_scheduled_task(kwargs["chat_id"], description, cron_expression)
        return f"Task {task_id} scheduled: \"{description}\" with cron \"{cron_expression}\"."


class ListTasksTool(Tool):
    """List active tasks of the current chat."""

    name = "list_tasks"
    description = "List all active scheduled tasks for the current chat."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"chat_id": _CHAT_ID},
        "required": ["chat_id"],
        "additionalProperties": False,
    }

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, **kwargs: Any) -> str:
        return format_task_list(self._db, kwargs["chat_id"])


class PauseTaskTool(Tool):
    name = "pause_task"
    description = "Pause a scheduled task for the current chat."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"chat_id": _CHAT_ID, "task_id": _TASK_ID},
        "required": ["chat_id", "task_id"],
        "additionalProperties": False,
    }

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, **kwargs: Any) -> str:
        task_id: int = kwargs["task_id"]
        if not self._db.set_task_active(kwargs["chat_id"], task_id, active=False):
            return f"No active scheduled task with ID {task_id}."
        return f"Paused scheduled task {task_id}."


class ResumeTaskTool(Tool):
    name = "resume_task"
    description = "Resume a paused scheduled task for the current chat."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"chat_id": _CHAT_ID, "task_id": _TASK_ID},
        "required": ["chat_id", "task_id"],
        "additionalProperties": False,
    }

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, **kwargs: Any) -> str:
        task_id: int = kwargs["task_id"]
        if not self._db.set_task_active(kwargs["chat_id"], task_id, active=True):
            return f"No paused scheduled task with ID {task_id}."
        return f"Resumed scheduled task {task_id}."


class CancelTaskTool(Tool):
    name = "cancel_task"
    description = "Cancel (delete) a scheduled task for the current chat."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"chat_id": _CHAT_ID, "task_id": _TASK_ID},
        "required": ["chat_id", "task_id"],
        "additionalProperties": False,
    }

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, **kwargs: Any) -> str:
        task_id: int = kwargs["task_id"]
        if not self._db.delete_task(kwargs["chat_id"], task_id):
            return f"No scheduled task with ID {task_id}."
        return f"Cancelled scheduled task {task_id}."


def format_task_list(db: Database, conversation_key: str) -> str:
    tasks = db.list_tasks(conversation_key)
    if not tasks:
        return "No active scheduled tasks found."
    lines = ["Active scheduled tasks:"]
    lines.extend(f"ID: {t.id} - {t.description} (Cron: {t.cron_expression})" for t in tasks)
    lines.append(f"Current time: {datetime.now(timezone.utc):%Y-%m-%d %H:%M:%S} UTC")
    return "\n".join(lines)
