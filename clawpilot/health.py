"""Periodic dependency health checks."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from clawpilot.db import Database

LOGGER = logging.getLogger(__name__)

Probe = Callable[[], Awaitable[object]]


class HealthCheck:
    """Probes the database and remote APIs and logs the overall state."""

    def __init__(self, db: Database, probes: dict[str, Probe], interval_seconds: float = 300.0) -> None:
        self._db = db
        self._probes = probes
        self._interval_seconds = interval_seconds

    async def run_checks(self) -> bool:
        healthy = True
        try:
            self._db.ping()
            LOGGER.debug("Health check: database OK")
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Health check: database FAILED: %s", exc)
            healthy = False

        for name, probe in self._probes.items():
            try:
                await probe()
                LOGGER.debug("Health check: %s OK", name)
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Health check: %s FAILED: %s", name, exc)
                healthy = False

        if healthy:
            LOGGER.info("Health check: all systems operational")
        else:
            LOGGER.warning("Health check: degraded state detected")
        return healthy

    async def run_forever(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            await self.run_checks()
