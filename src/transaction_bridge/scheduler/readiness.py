"""Startup barrier: dispatch waits until every worker is operational."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from transaction_bridge.dispatcher.config import DispatcherSettings
from transaction_bridge.errors import ReadinessTimeoutError
from transaction_bridge.workers.base import Worker

logger = logging.getLogger(__name__)


class ReadinessGate:
    def __init__(
        self,
        workers: Sequence[Worker],
        *,
        timeout_seconds: float = 30.0,
        poll_seconds: float = 1.0,
    ) -> None:
        self.workers = workers
        self.timeout_seconds = timeout_seconds
        self.poll_seconds = poll_seconds
        self.ready = False

    @classmethod
    def from_settings(cls, workers: Sequence[Worker], settings: DispatcherSettings) -> ReadinessGate:
        return cls(
            workers,
            timeout_seconds=settings.readiness_timeout_seconds,
            poll_seconds=settings.readiness_poll_seconds,
        )

    def ready_count(self) -> int:
        return sum(1 for w in self.workers if w.is_operational())

    async def wait(self) -> None:
        """Poll until all workers are operational.

        Raises:
            ReadinessTimeoutError: not every worker became operational in time.
        """

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds
        total = len(self.workers)
        while True:
            count = self.ready_count()
            if count == total:
                self.ready = True
                logger.info("Bridge is ready", extra={"ready": count, "total": total})
                return
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.critical(
                    "Bridge is not ready",
                    extra={"ready": count, "total": total, "timeout": self.timeout_seconds},
                )
                raise ReadinessTimeoutError(count, total, self.timeout_seconds)
            await asyncio.sleep(min(self.poll_seconds, remaining))

    async def open(self) -> None:
        """Run every worker's self test concurrently and wait for readiness."""

        self_tests = asyncio.gather(*(w.self_test() for w in self.workers))
        try:
            await self.wait()
        except BaseException:
            self_tests.cancel()
            await asyncio.gather(self_tests, return_exceptions=True)
            raise
        await self_tests
