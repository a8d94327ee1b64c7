"""
In-process scheduler supervisor.

Runs one sweep loop per registered kind, re-arms persisted waits and runs
housekeeping, but only in the process holding the Postgres advisory lock, so
`uvicorn --workers N` and multiple replicas never run the loops twice. On
SQLite (single process by nature) the lock is skipped.
"""

import asyncio
import hashlib

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from frontdesk.retry.dispatcher import HandlerRegistry
from frontdesk.scheduling.housekeeping import Housekeeper
from frontdesk.scheduling.sweep import SweepScheduler
from frontdesk.scheduling.wake import WakeScheduler
from frontdesk.shared.logging import get_logger

logger = get_logger(__name__)


def advisory_lock_id(key: str) -> int:
    """Stable signed-bigint-safe lock id for an arbitrary string key."""
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=False) & 0x7FFF_FFFF_FFFF_FFFF


class SchedulerSupervisor:
    """Owns the background tasks of the in-process scheduler."""

    def __init__(
        self,
        engine: AsyncEngine,
        registry: HandlerRegistry,
        sweeper: SweepScheduler,
        waker: WakeScheduler,
        housekeeper: Housekeeper,
        *,
        lock_key: str = "frontdesk-scheduler",
        housekeeping_interval: float = 86400.0,
        retry_sleep: float = 5.0,
    ) -> None:
        self._engine = engine
        self._registry = registry
        self._sweeper = sweeper
        self._waker = waker
        self._housekeeper = housekeeper
        self._lock_id = advisory_lock_id(lock_key)
        self._housekeeping_interval = housekeeping_interval
        self._retry_sleep = retry_sleep
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            logger.warning("Scheduler supervisor already running")
            return
        self._task = asyncio.create_task(self._supervise())
        logger.info("Scheduler supervisor started", extra={"kinds": self._registry.kinds()})

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._waker.disarm_all()
        logger.info("Scheduler supervisor stopped")

    async def _supervise(self) -> None:
        if self._engine.dialect.name != "postgresql":
            await self._run_loops()
            return

        while True:
            try:
                # Dedicated connection holding the advisory lock while leader.
                async with self._engine.connect() as conn:
                    result = await conn.execute(
                        text("SELECT pg_try_advisory_lock(:lock_id)"),
                        {"lock_id": self._lock_id},
                    )
                    if not bool(result.scalar()):
                        logger.info(
                            "Scheduler leader lock busy; standby",
                            extra={"lock_id": self._lock_id, "sleep_seconds": self._retry_sleep},
                        )
                        await asyncio.sleep(self._retry_sleep)
                        continue

                    logger.info("Scheduler leader lock acquired", extra={"lock_id": self._lock_id})
                    await self._run_loops()
            except asyncio.CancelledError:
                logger.info("Scheduler supervisor cancelled; stopping")
                raise
            except Exception:
                logger.exception(
                    "Scheduler supervisor error; retrying",
                    extra={"sleep_seconds": self._retry_sleep},
                )
                self._waker.disarm_all()
                await asyncio.sleep(self._retry_sleep)

    async def _run_loops(self) -> None:
        tasks = [
            asyncio.create_task(
                self._sweeper.run_forever(registration.kind, registration.sweep_interval)
            )
            for registration in self._registry
        ]
        tasks.append(asyncio.create_task(self._housekeeping_loop()))
        try:
            await self._waker.restore()
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _housekeeping_loop(self) -> None:
        while True:
            try:
                await self._housekeeper.run()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Housekeeping failed")
            await asyncio.sleep(self._housekeeping_interval)
