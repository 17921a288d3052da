"""Core agent runtime."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from clawpilot.completion import CompletionService
from clawpilot.memory import SemanticMemory
from clawpilot.models import ROLE_ASSISTANT, ROLE_SYSTEM, ROLE_USER, PersistedMessage, Turn
from clawpilot.session import SessionManager

LOGGER = logging.getLogger(__name__)


class AgentRuntime:
    """Drives one exchange against a conversation's session.

    Callers are responsible for serializing calls per conversation key.
    """

    def __init__(
        self,
        sessions: SessionManager,
        completion: CompletionService,
        max_response_tokens: int,
        request_timeout_seconds: float,
        memory: SemanticMemory | None = None,
        memory_recall_limit: int = 5,
    ) -> None:
        self._sessions = sessions
        self._completion = completion
        self._max_response_tokens = max_response_tokens
        self._request_timeout_seconds = request_timeout_seconds
        self._memory = memory
        self._memory_recall_limit = memory_recall_limit

    def is_restored(self, conversation_key: str) -> bool:
        return self._sessions.is_restored(conversation_key)

    def restore_session(
        self, conversation_key: str, system_prompt: str, messages: Sequence[PersistedMessage]
    ) -> bool:
        return self._sessions.restore(conversation_key, system_prompt, messages)

    def reset_conversation(self, conversation_key: str) -> bool:
        return self._sessions.reset(conversation_key)

    async def send_message(self, conversation_key: str, text: str, system_prompt: str) -> str:
        """Append ``text`` as a user turn, complete, and return the reply."""

        session = self._sessions.get_or_create(conversation_key, system_prompt)

        memories = await self._recall(conversation_key, text)
        session.append(ROLE_USER, text)

        request = session.turns
        if memories:
            context = "\n".join(f"- {m}" for m in memories)
            request.insert(-1, Turn(ROLE_SYSTEM, f"Relevant context from memory:\n{context}"))

        reply = await asyncio.wait_for(
            self._completion.complete(request, self._max_response_tokens, conversation_key),
            timeout=self._request_timeout_seconds,
        )
        session.append(ROLE_ASSISTANT, reply)

        await self._remember(conversation_key, text, reply)
        return reply

    async def _recall(self, conversation_key: str, query: str) -> list[str]:
        if self._memory is None:
            return []
        try:
            return await self._memory.recall(conversation_key, query, limit=self._memory_recall_limit)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Failed to recall memory for %s: %s", conversation_key, exc)
            return []

    async def _remember(self, conversation_key: str, user_text: str, reply: str) -> None:
        if self._memory is None:
            return
        try:
            await self._memory.save(conversation_key, user_text, reply)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Failed to save memory for %s: %s", conversation_key, exc)
