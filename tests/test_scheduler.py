import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from clawpilot.agent_runtime import AgentRuntime
from clawpilot.completion import CompletionService
from clawpilot.config import Settings
from clawpilot.db import Database
from clawpilot.keyed import KeyedLocks
from clawpilot.models import STATUS_DONE, InboundMessage, LLMResponse, PersistedMessage
from clawpilot.pipeline import MessagePipeline
from clawpilot.prompts import SystemPromptBuilder
from clawpilot.scheduler import TaskScheduler
from clawpilot.security import ToolGate
from clawpilot.session import SessionManager
from clawpilot.tools.registry import ToolRegistry

NOW = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)
SETTINGS = Settings(TELEGRAM_BOT_TOKEN="token", OPENROUTER_API_KEY="key", SYSTEM_PROMPT="You are Claw.")


def _db(tmp_path) -> Database:
    db = Database(tmp_path / "clawpilot.db")
    db.initialize()
    return db


def _transport() -> MagicMock:
    transport = MagicMock()
    transport.send_text = AsyncMock(return_value=True)
    return transport


def _scheduler(db, runtime, transport, locks=None) -> TaskScheduler:
    return TaskScheduler(
        db=db,
        runtime=runtime,
        transport=transport,
        locks=locks if locks is not None else KeyedLocks(),
        prompts=SystemPromptBuilder(SETTINGS),
    )


@pytest.mark.asyncio
async def test_due_task_runs_and_records_last_run(tmp_path):
    db = _db(tmp_path)
    task_id = db.create_scheduled_task("chat-1", "morning briefing", "0 9 * * *")
    runtime = MagicMock()
    runtime.send_message = AsyncMock(return_value="Good morning!")
    transport = _transport()

    executed = await _scheduler(db, runtime, transport).tick(NOW)

    assert executed == [task_id]
    key, prompt, system_prompt = runtime.send_message.call_args.args
    assert key == "chat-1"
    assert "morning briefing" in prompt
    assert system_prompt.startswith("You are Claw.")
    assert "Current chat ID: chat-1" in system_prompt
    transport.send_text.assert_awaited_once_with("chat-1", "Good morning!")
    assert db.load_active_tasks()[0].last_run_at == NOW


@pytest.mark.asyncio
async def test_task_not_matching_is_skipped(tmp_path):
    db = _db(tmp_path)
    db.create_scheduled_task("chat-1", "evening", "0 18 * * *")
    runtime = MagicMock()
    runtime.send_message = AsyncMock(return_value="x")

    executed = await _scheduler(db, runtime, _transport()).tick(NOW)

    assert executed == []
    runtime.send_message.assert_not_called()


@pytest.mark.asyncio
async def test_second_tick_in_same_minute_does_not_refire(tmp_path):
    db = _db(tmp_path)
    db.create_scheduled_task("chat-1", "ping", "* * * * *")
    runtime = MagicMock()
    runtime.send_message = AsyncMock(return_value="pong")
    scheduler = _scheduler(db, runtime, _transport())

    await scheduler.tick(NOW)
    await scheduler.tick(NOW + timedelta(seconds=30))
    await scheduler.tick(NOW + timedelta(seconds=60))

    assert runtime.send_message.await_count == 2


@pytest.mark.asyncio
async def test_paused_and_malformed_tasks_never_run(tmp_path):
    db = _db(tmp_path)
    paused = db.create_scheduled_task("chat-1", "paused", "* * * * *")
    db.set_task_active("chat-1", paused, active=False)
    db.create_scheduled_task("chat-1", "broken", "every minute please")
    runtime = MagicMock()
    runtime.send_message = AsyncMock(return_value="x")

    executed = await _scheduler(db, runtime, _transport()).tick(NOW)

    assert executed == []
    runtime.send_message.assert_not_called()


@pytest.mark.asyncio
async def test_failing_task_does_not_block_others(tmp_path):
    db = _db(tmp_path)
    bad = db.create_scheduled_task("chat-1", "will fail", "0 9 * * *")
    good = db.create_scheduled_task("chat-2", "will work", "0 9 * * *")
    runtime = MagicMock()
    runtime.send_message = AsyncMock(side_effect=[RuntimeError("model down"), "done"])
    transport = _transport()

    executed = await _scheduler(db, runtime, transport).tick(NOW)

    assert executed == [good]
    assert runtime.send_message.await_count == 2
    transport.send_text.assert_awaited_once_with("chat-2", "done")
    last_runs = {t.id: t.last_run_at for t in db.load_active_tasks()}
    assert last_runs == {bad: None, good: NOW}


@pytest.mark.asyncio
async def test_undelivered_reply_still_records_run(tmp_path):
    db = _db(tmp_path)
    db.create_scheduled_task("chat-1", "ping", "0 9 * * *")
    runtime = MagicMock()
    runtime.send_message = AsyncMock(return_value="pong")
    transport = _transport()
    transport.send_text = AsyncMock(return_value=False)

    await _scheduler(db, runtime, transport).tick(NOW)

    assert db.load_active_tasks()[0].last_run_at == NOW


@pytest.mark.asyncio
async def test_task_waits_for_conversation_lock(tmp_path):
    db = _db(tmp_path)
    db.create_scheduled_task("chat-1", "ping", "0 9 * * *")
    runtime = MagicMock()
    runtime.send_message = AsyncMock(return_value="pong")
    locks = KeyedLocks()
    scheduler = _scheduler(db, runtime, _transport(), locks)

    async with locks.hold("chat-1"):
        tick = asyncio.create_task(scheduler.tick(NOW))
        await asyncio.sleep(0.01)
        runtime.send_message.assert_not_called()

    await tick
    runtime.send_message.assert_awaited_once()


@pytest.mark.asyncio
async def test_run_forever_stops(tmp_path):
    db = _db(tmp_path)
    runtime = MagicMock()
    runtime.send_message = AsyncMock(return_value="x")
    scheduler = TaskScheduler(
        db=db,
        runtime=runtime,
        transport=_transport(),
        locks=KeyedLocks(),
        prompts=SystemPromptBuilder(SETTINGS),
        interval_seconds=10,
    )

    loop_task = asyncio.create_task(scheduler.run_forever())
    await asyncio.sleep(0.01)
    scheduler.stop()

    await asyncio.wait_for(loop_task, timeout=1)


class ScriptedProvider:
    def __init__(self) -> None:
        self.requests: list[list[dict]] = []

    async def generate(self, messages, tools=None, max_tokens=None):  # noqa: ANN001, ANN201
        self.requests.append(list(messages))
        return LLMResponse(content="Hi there!")


@pytest.mark.asyncio
async def test_scheduled_turn_before_first_message_restores_history(tmp_path):
    db = _db(tmp_path)
    db.add_message(PersistedMessage("chat-1", "user", "my name is Bob", STATUS_DONE))
    db.add_message(PersistedMessage("chat-1", "assistant", "Nice to meet you Bob", STATUS_DONE))
    db.create_scheduled_task("chat-1", "ping", "* * * * *")
    provider = ScriptedProvider()
    runtime = AgentRuntime(
        sessions=SessionManager(SETTINGS.history_capacity),
        completion=CompletionService(provider, ToolRegistry(db), ToolGate()),
        max_response_tokens=256,
        request_timeout_seconds=5,
    )
    transport = _transport()
    transport.send_typing = AsyncMock()
    locks = KeyedLocks()
    prompts = SystemPromptBuilder(SETTINGS)
    scheduler = TaskScheduler(db=db, runtime=runtime, transport=transport, locks=locks, prompts=prompts)
    pipeline = MessagePipeline(
        settings=SETTINGS,
        db=db,
        runtime=runtime,
        transport=transport,
        locks=locks,
        prompts=prompts,
        typing_interval_seconds=60,
    )

    await scheduler.tick(NOW)
    await pipeline.process(
        InboundMessage(
            conversation_key="chat-1",
            message_id="5",
            sender_name="Bob",
            sender_id="7",
            text="what is my name?",
            timestamp=NOW,
        )
    )

    scheduled, followup = provider.requests
    assert [m["content"] for m in scheduled[1:3]] == ["my name is Bob", "Nice to meet you Bob"]
    assert followup[0]["role"] == "system"
    assert followup[0]["content"].startswith("You are Claw.")
    assert "Current chat ID: chat-1" in followup[0]["content"]
    assert [m["content"] for m in followup[1:3]] == ["my name is Bob", "Nice to meet you Bob"]
    assert followup[-1] == {"role": "user", "content": "what is my name?"}
