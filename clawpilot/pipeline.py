"""Per-conversation message pipeline."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sqlite3

import httpx

from clawpilot.agent_runtime import AgentRuntime
from clawpilot.channels.base import Transport, TransportError
from clawpilot.commands import CommandDispatcher
from clawpilot.config import Settings
from clawpilot.db import Database
from clawpilot.keyed import KeyedLocks
from clawpilot.models import (
    ROLE_ASSISTANT,
    ROLE_USER,
    STATUS_DONE,
    STATUS_PROCESSING,
    InboundMessage,
    PersistedMessage,
)
from clawpilot.prompts import SystemPromptBuilder

LOGGER = logging.getLogger(__name__)

APOLOGY = "Sorry, something went wrong. Please try again."
TYPING_INTERVAL_SECONDS = 4.0

FAILURE_COMPLETION = "completion"
FAILURE_STORE = "store"
FAILURE_TRANSPORT = "transport"
FAILURE_UNEXPECTED = "unexpected"


def classify_failure(exc: BaseException) -> str:
    if isinstance(exc, TransportError):
        return FAILURE_TRANSPORT
    if isinstance(exc, (httpx.HTTPError, asyncio.TimeoutError)):
        return FAILURE_COMPLETION
    if isinstance(exc, sqlite3.Error):
        return FAILURE_STORE
    return FAILURE_UNEXPECTED


class MessagePipeline:
    """Turns each inbound message into a persisted exchange and one reply.

    Messages for the same conversation never overlap; the lock table is
    shared with the scheduler so scheduled turns interleave cleanly too.
    """

    def __init__(
        self,
        settings: Settings,
        db: Database,
        runtime: AgentRuntime,
        transport: Transport,
        locks: KeyedLocks,
        prompts: SystemPromptBuilder | None = None,
        commands: CommandDispatcher | None = None,
        typing_interval_seconds: float = TYPING_INTERVAL_SECONDS,
    ) -> None:
        self._settings = settings
        self._db = db
        self._runtime = runtime
        self._transport = transport
        self._locks = locks
        self._prompts = prompts if prompts is not None else SystemPromptBuilder(settings)
        self._commands = commands
        self._typing_interval_seconds = typing_interval_seconds

    async def process(self, message: InboundMessage) -> None:
        key = message.conversation_key
        async with self._locks.hold(key):
            try:
                await self._process_locked(message)
            except asyncio.CancelledError:
                LOGGER.info("Message processing cancelled for chat %s", key)
                raise
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception(
                    "%s failure processing message %s for chat %s",
                    classify_failure(exc),
                    message.message_id,
                    key,
                )
                if not isinstance(exc, TransportError):
                    await self._send_apology(message)

    async def _process_locked(self, message: InboundMessage) -> None:
        key = message.conversation_key
        conversation = self._db.get_or_create_conversation(
            key,
            display_name=message.group_name if message.is_group else message.sender_name,
            is_group=message.is_group,
        )

        if self._commands is not None:
            command_reply = await self._commands.dispatch(message)
            if command_reply is not None:
                await self._deliver(message, command_reply)
                return

        system_prompt = self._prompts.build(conversation, message)
        if not self._runtime.is_restored(key):
            history = self._db.load_recent_messages(key, self._settings.restore_limit)
            self._runtime.restore_session(key, system_prompt, history)

        inbound = PersistedMessage(
            conversation_key=key,
            role=ROLE_USER,
            content=message.text,
            status=STATUS_PROCESSING,
            transport_message_id=message.message_id,
            sender_name=message.sender_name,
            sender_id=message.sender_id,
        )
        inbound_id = self._db.add_message(inbound)

        async with self._typing(key):
            reply = await self._runtime.send_message(key, message.text, system_prompt)

        self._db.add_message(
            PersistedMessage(conversation_key=key, role=ROLE_ASSISTANT, content=reply, status=STATUS_DONE)
        )
        self._db.update_message_status(inbound_id, STATUS_DONE)
        self._db.touch_conversation(key)

        await self._deliver(message, reply)

    async def _deliver(self, message: InboundMessage, text: str) -> None:
        sent = await self._transport.send_text(message.conversation_key, text, message.message_id)
        if not sent:
            LOGGER.warning(
                "Reply to message %s in chat %s was not delivered",
                message.message_id,
                message.conversation_key,
            )

    async def _send_apology(self, message: InboundMessage) -> None:
        try:
            await self._transport.send_text(message.conversation_key, APOLOGY)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Failed to send error message to chat %s", message.conversation_key)

    @contextlib.asynccontextmanager
    async def _typing(self, conversation_key: str):  # noqa: ANN202
        task = asyncio.create_task(self._keep_typing(conversation_key), name=f"typing:{conversation_key}")
        try:
            yield
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def _keep_typing(self, conversation_key: str) -> None:
        while True:
            try:
                await self._transport.send_typing(conversation_key)
            except Exception as exc:  # noqa: BLE001
                LOGGER.debug("Failed to send typing indicator to chat %s: %s", conversation_key, exc)
            await asyncio.sleep(self._typing_interval_seconds)
