"""Cron-driven scheduler for proactive messages."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from clawpilot.agent_runtime import AgentRuntime
from clawpilot.channels.base import Transport
from clawpilot.cron import is_due, is_valid_cron
from clawpilot.db import Database
from clawpilot.keyed import KeyedLocks
from clawpilot.models import ScheduledTask
from clawpilot.prompts import SystemPromptBuilder

LOGGER = logging.getLogger(__name__)


def build_task_prompt(task: ScheduledTask) -> str:
    return (
        f'You have a scheduled task: "{task.description}". '
        "Please execute or respond to this task now."
    )


class TaskScheduler:
    """Evaluates active tasks once per tick and runs the due ones."""

    def __init__(
        self,
        db: Database,
        runtime: AgentRuntime,
        transport: Transport,
        locks: KeyedLocks,
        prompts: SystemPromptBuilder,
        restore_limit: int = 50,
        interval_seconds: float = 60.0,
    ) -> None:
        self._db = db
        self._runtime = runtime
        self._transport = transport
        self._locks = locks
        self._prompts = prompts
        self._restore_limit = restore_limit
        self._interval_seconds = interval_seconds
        self._stop_event = asyncio.Event()

    async def run_forever(self) -> None:
        """Run scheduler loop until stop() is called."""

        LOGGER.info("Task scheduler started")
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except asyncio.CancelledError:
                LOGGER.info("Task scheduler cancelled")
                raise
            except Exception:  # noqa: BLE001
                LOGGER.exception("Error in task scheduler loop")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval_seconds)
            except asyncio.TimeoutError:
                pass
        LOGGER.info("Task scheduler stopped")

    def stop(self) -> None:
        """Signal the loop to stop."""

        self._stop_event.set()

    async def tick(self, now: datetime | None = None) -> list[int]:
        """Evaluate every active task against ``now``; return ids that ran."""

        now = now or datetime.now(timezone.utc)
        executed: list[int] = []
        for task in self._db.load_active_tasks():
            if not is_valid_cron(task.cron_expression):
                LOGGER.warning(
                    "Scheduled task %s has malformed cron expression %r", task.id, task.cron_expression
                )
                continue
            if not is_due(task.cron_expression, task.last_run_at, now):
                continue
            if await self._execute(task, now):
                executed.append(task.id)
        return executed

    async def _execute(self, task: ScheduledTask, now: datetime) -> bool:
        LOGGER.info("Executing scheduled task %s: %s", task.id, task.description)
        try:
            async with self._locks.hold(task.conversation_key):
                reply = await self._run_turn(task)
            if not await self._transport.send_text(task.conversation_key, reply):
                LOGGER.warning("Reply for scheduled task %s was not delivered", task.id)
            self._db.update_task_last_run(task.id, now)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            LOGGER.exception("Failed to execute scheduled task %s", task.id)
            return False
        return True

    async def _run_turn(self, task: ScheduledTask) -> str:
        key = task.conversation_key
        system_prompt = self._prompts.build(self._db.get_or_create_conversation(key))
        if not self._runtime.is_restored(key):
            history = self._db.load_recent_messages(key, self._restore_limit)
            self._runtime.restore_session(key, system_prompt, history)
        return await self._runtime.send_message(key, build_task_prompt(task), system_prompt)
