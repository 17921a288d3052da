"""Per-key mutual exclusion and per-key FIFO work queues.

Both tables are plain dicts mutated only between awaits, so a lookup and
the insert that follows it on a miss happen atomically with respect to
every other coroutine on the loop.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable

LOGGER = logging.getLogger(__name__)

Work = Callable[[], Awaitable[object]]


@dataclass(slots=True)
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class KeyedLocks:
    """One asyncio.Lock per key, created on first use and dropped when unused."""

    def __init__(self) -> None:
        self._entries: dict[str, _LockEntry] = {}

    @property
    def active_keys(self) -> frozenset[str]:
        return frozenset(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def is_locked(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""

        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _LockEntry()
        # Counted before acquiring so waiters keep the entry alive.
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0 and self._entries.get(key) is entry:
                del self._entries[key]


class GroupQueue:
    """Runs work submitted under the same key one at a time, in order.

    Work under different keys runs concurrently. Each key gets a worker task
    on demand; a worker that stays idle for ``idle_timeout_seconds`` removes
    itself and the next enqueue for that key starts a fresh one.
    """

    def __init__(self, idle_timeout_seconds: float = 30.0, name: str = "group-queue") -> None:
        self._idle_timeout_seconds = idle_timeout_seconds
        self._name = name
        self._queues: dict[str, asyncio.Queue[Work]] = {}
        self._workers: dict[str, asyncio.Task[None]] = {}

    @property
    def active_keys(self) -> frozenset[str]:
        return frozenset(self._workers)

    def pending(self, key: str) -> int:
        queue = self._queues.get(key)
        return queue.qsize() if queue is not None else 0

    async def enqueue(self, key: str, work: Work) -> None:
        """Queue ``work`` for ``key``; returns as soon as it is queued."""

        queue = self._queues.get(key)
        if queue is None:
            queue = self._queues[key] = asyncio.Queue()
        queue.put_nowait(work)
        if key not in self._workers:
            self._workers[key] = asyncio.create_task(
                self._drain(key, queue), name=f"{self._name}:{key}"
            )

    async def _drain(self, key: str, queue: asyncio.Queue[Work]) -> None:
        try:
            while True:
                try:
                    work = await asyncio.wait_for(queue.get(), timeout=self._idle_timeout_seconds)
                except asyncio.TimeoutError:
                    # No await between this check and deregistration below,
                    # so an enqueue either lands before it or finds no worker.
                    if queue.empty():
                        return
                    continue
                try:
                    await work()
                except Exception:  # noqa: BLE001
                    LOGGER.exception("Error processing queued work for key %s", key)
                finally:
                    queue.task_done()
        finally:
            if self._workers.get(key) is asyncio.current_task():
                del self._workers[key]
                if queue.empty():
                    self._queues.pop(key, None)

    async def join(self) -> None:
        """Wait until every queued item has run, then stop idle workers."""

        while True:
            queues = list(self._queues.values())
            for queue in queues:
                await queue.join()
            if all(queue.empty() for queue in self._queues.values()):
                break
        workers = list(self._workers.values())
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
