"""In-memory rolling conversation history."""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from clawpilot.models import ROLE_ASSISTANT, ROLE_SYSTEM, ROLE_USER, PersistedMessage, Turn

LOGGER = logging.getLogger(__name__)

_RESTORABLE_ROLES = (ROLE_USER, ROLE_ASSISTANT)


def trim_turns(turns: Sequence[Turn], capacity: int) -> list[Turn]:
    """Keep every system turn and the newest ``capacity`` other turns, in order."""

    non_system = sum(1 for turn in turns if turn.role != ROLE_SYSTEM)
    excess = max(non_system - max(capacity, 0), 0)
    kept: list[Turn] = []
    for turn in turns:
        if turn.role != ROLE_SYSTEM and excess > 0:
            excess -= 1
            continue
        kept.append(turn)
    return kept


class ConversationSession:
    """Working history for one conversation, led by the system preamble."""

    def __init__(self, key: str, system_prompt: str, capacity: int) -> None:
        self.key = key
        self.capacity = capacity
        self.restored = False
        self._turns: list[Turn] = [Turn(ROLE_SYSTEM, system_prompt)]

    @property
    def turns(self) -> list[Turn]:
        return list(self._turns)

    @property
    def non_system_count(self) -> int:
        return sum(1 for turn in self._turns if turn.role != ROLE_SYSTEM)

    def append(self, role: str, content: str) -> Turn:
        turn = Turn(role, content)
        self._turns.append(turn)
        if role == ROLE_USER:
            self._turns = trim_turns(self._turns, self.capacity)
        return turn

    def replay(self, messages: Iterable[PersistedMessage]) -> int:
        count = 0
        for message in messages:
            if message.role not in _RESTORABLE_ROLES:
                continue
            self._turns.append(Turn(message.role, message.content))
            count += 1
        self._turns = trim_turns(self._turns, self.capacity)
        return count


class SessionManager:
    """Cache of live sessions keyed by conversation.

    The database is the source of truth; a session can be discarded at any
    time and rebuilt with ``restore``.
    """

    def __init__(self, capacity: int) -> None:
        self._capacity = capacity
        self._sessions: dict[str, ConversationSession] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._sessions

    def get(self, key: str) -> ConversationSession | None:
        return self._sessions.get(key)

    def is_restored(self, key: str) -> bool:
        session = self._sessions.get(key)
        return session is not None and session.restored

    def get_or_create(self, key: str, system_prompt: str) -> ConversationSession:
        session = self._sessions.get(key)
        if session is None:
            session = self._sessions[key] = ConversationSession(key, system_prompt, self._capacity)
            LOGGER.info("Created session for conversation %s", key)
        return session

    def restore(self, key: str, system_prompt: str, messages: Iterable[PersistedMessage]) -> bool:
        """Replay persisted messages into the session, once per session.

        Returns False when the session had already been restored.
        """
        session = self.get_or_create(key, system_prompt)
        if session.restored:
            return False
        count = session.replay(messages)
        session.restored = True
        if count:
            LOGGER.info("Restored %d messages for conversation %s", count, key)
        return True

    def reset(self, key: str) -> bool:
        removed = self._sessions.pop(key, None) is not None
        if removed:
            LOGGER.info("Reset session for conversation %s", key)
        return removed
