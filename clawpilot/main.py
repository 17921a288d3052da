"""Application entrypoint."""

from __future__ import annotations

import asyncio
import functools
import logging

from clawpilot.agent_runtime import AgentRuntime
from clawpilot.channels.telegram import TelegramChannel
from clawpilot.commands import CommandDispatcher
from clawpilot.completion import CompletionService
from clawpilot.config import Settings, allowed_chat_ids, load_settings
from clawpilot.db import Database
from clawpilot.health import HealthCheck
from clawpilot.keyed import GroupQueue, KeyedLocks
from clawpilot.llm.openrouter import OpenRouterEmbeddings, OpenRouterProvider
from clawpilot.memory import SemanticMemory
from clawpilot.pipeline import MessagePipeline
from clawpilot.prompts import SystemPromptBuilder
from clawpilot.scheduler import TaskScheduler
from clawpilot.security import ToolGate
from clawpilot.session import SessionManager
from clawpilot.skills import SkillLoader
from clawpilot.tools.messaging_tool import SearchMessagesTool, SendMessageTool
from clawpilot.tools.registry import ToolRegistry
from clawpilot.tools.scheduler_tool import (
    CancelTaskTool,
    ListTasksTool,
    PauseTaskTool,
    ResumeTaskTool,
    ScheduleTaskTool,
)
from clawpilot.tools.utility_tool import GetCurrentDateTimeTool, RecallMemoryTool

LOGGER = logging.getLogger(__name__)


def build_tools(
    settings: Settings,
    db: Database,
    channel: TelegramChannel,
    memory: SemanticMemory | None,
) -> ToolRegistry:
    tools = ToolRegistry(db)
    tools.register(ScheduleTaskTool(db))
    tools.register(ListTasksTool(db))
    tools.register(PauseTaskTool(db))
    tools.register(ResumeTaskTool(db))
    tools.register(CancelTaskTool(db))
    tools.register(SendMessageTool(channel, allowed_chat_ids(settings)))
    tools.register(SearchMessagesTool(db))
    tools.register(GetCurrentDateTimeTool())
    if memory is not None:
        tools.register(RecallMemoryTool(memory, limit=settings.memory_recall_limit))
    return tools


async def run() -> None:
    """Initialize app layers and start processing loops."""

    settings = load_settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    db = Database(settings.database_path)
    db.initialize()

    channel = TelegramChannel(settings)
    provider = OpenRouterProvider(settings)

    memory: SemanticMemory | None = None
    if settings.embedding_model:
        memory = SemanticMemory(db, OpenRouterEmbeddings(settings), min_score=settings.memory_min_score)
    else:
        LOGGER.warning("No embedding model configured, semantic memory disabled")

    skills = SkillLoader(settings.skills_dir, db)
    skills.load_all()

    completion = CompletionService(
        llm=provider,
        tool_registry=build_tools(settings, db, channel, memory),
        gate=ToolGate(),
        max_tool_rounds=settings.max_tool_rounds,
    )
    runtime = AgentRuntime(
        sessions=SessionManager(settings.history_capacity),
        completion=completion,
        max_response_tokens=settings.max_response_tokens,
        request_timeout_seconds=settings.request_timeout_seconds,
        memory=memory,
        memory_recall_limit=settings.memory_recall_limit,
    )

    locks = KeyedLocks()
    prompts = SystemPromptBuilder(settings, skills)
    pipeline = MessagePipeline(
        settings=settings,
        db=db,
        runtime=runtime,
        transport=channel,
        locks=locks,
        prompts=prompts,
        commands=CommandDispatcher(db, runtime, skills, bot_username=settings.bot_username),
    )
    inbound = GroupQueue(idle_timeout_seconds=settings.queue_idle_timeout_seconds, name="inbound")

    scheduler = TaskScheduler(
        db=db,
        runtime=runtime,
        transport=channel,
        locks=locks,
        prompts=prompts,
        restore_limit=settings.restore_limit,
        interval_seconds=settings.scheduler_interval_seconds,
    )
    health = HealthCheck(
        db,
        probes={"telegram": channel.get_me, "openrouter": provider.ping},
        interval_seconds=settings.health_check_interval_seconds,
    )

    scheduler_task = asyncio.create_task(scheduler.run_forever(), name="task-scheduler")
    health_task = asyncio.create_task(health.run_forever(), name="health-check")

    try:
        async for message in channel.poll_messages():
            await inbound.enqueue(message.conversation_key, functools.partial(pipeline.process, message))
    except asyncio.CancelledError:
        LOGGER.info("Shutdown requested, draining in-flight messages")
        raise
    finally:
        scheduler.stop()
        health_task.cancel()
        await inbound.join()
        await asyncio.gather(scheduler_task, health_task, return_exceptions=True)
        LOGGER.info("Assistant shutdown complete")


def main() -> None:
    """Synchronous wrapper for asyncio entrypoint."""

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        LOGGER.info("Interrupted")


if __name__ == "__main__":
    main()
