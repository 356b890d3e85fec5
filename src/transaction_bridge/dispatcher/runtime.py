"""Composition of the queue, the fleet, the scheduler and the readiness gate.

Both the HTTP server and the CLI run the dispatcher through :class:`BridgeRuntime`.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Any

from transaction_bridge import __version__
from transaction_bridge.dispatcher.config import DispatcherSettings
from transaction_bridge.errors import NoCapableWorkerError
from transaction_bridge.notify.callback import HttpCallbackNotifier, Notifier
from transaction_bridge.notify.fanout import NotificationFanout
from transaction_bridge.scheduler.dispatch import DispatchScheduler
from transaction_bridge.scheduler.readiness import ReadinessGate
from transaction_bridge.workers.registry import WorkerRegistry, build_workers
from transaction_bridge.workqueue.models import (
    OutcomeEntry,
    WorkItem,
    WorkItemStatus,
    create_work_item,
)
from transaction_bridge.workqueue.store import QueueStore

logger = logging.getLogger(__name__)


class BridgeRuntime:
    def __init__(
        self,
        settings: DispatcherSettings,
        *,
        workers: WorkerRegistry | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.settings = settings
        self.store = QueueStore(state_dir=settings.state_path, log_size=settings.outcome_log_size)
        self.workers = workers if workers is not None else build_workers(settings)
        self.notifier = notifier if notifier is not None else HttpCallbackNotifier()
        self.fanout = NotificationFanout()
        self.scheduler = DispatchScheduler.from_settings(
            self.store, self.workers, self.notifier, settings
        )
        self.gate = ReadinessGate.from_settings(list(self.workers), settings)
        # Terminal outcomes of items someone is waiting on; the outcome log may evict them.
        self._awaited: dict[str, OutcomeEntry | None] = {}
        self._waiters: Counter[str] = Counter()
        self.store.add_listener(self._on_transition)

    def _on_transition(self, event: str, item: WorkItem) -> None:
        if item.id in self._awaited and item.status.is_terminal:
            self._awaited[item.id] = OutcomeEntry.from_item(item)
        self.scheduler.wake()
        self.fanout.publish("status", self.snapshot())

    @property
    def ready(self) -> bool:
        return self.gate.ready

    def snapshot(self) -> dict[str, Any]:
        return {"version": __version__, "ready": self.gate.ready, **self.scheduler.snapshot()}

    def submit(
        self,
        *,
        kind: str,
        payload: dict[str, Any] | None = None,
        callback: str | None = None,
        dedup_key: str | None = None,
        item_id: str | None = None,
    ) -> WorkItem:
        """Create and queue an item.

        Raises:
            UnknownKindError: ``kind`` is not registered.
            DuplicateSubmissionError: the same transaction is already pending or active.
        """

        item = create_work_item(
            kind=kind,
            payload=payload,
            callback=callback,
            dedup_key=dedup_key,
            item_id=item_id,
        )
        return self.store.submit(item)

    async def start(self) -> None:
        """Self-test the fleet, wait for readiness, restore the queue and start dispatching.

        Raises:
            ReadinessTimeoutError: the fleet did not become operational in time.
        """

        await self.gate.open()
        if self.settings.persist_queue:
            self.store.restore()
        if self.settings.noop:
            logger.warning("Noop mode, items are queued but never dispatched")
            return
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        if self.settings.persist_queue:
            self.store.persist()
        close = getattr(self.notifier, "close", None)
        if callable(close):
            close()

    async def wait_for(
        self,
        item_id: str,
        *,
        poll_seconds: float = 0.1,
        pending_deadline: float | None = None,
    ) -> OutcomeEntry:
        """Wait until the item reaches a terminal status and return that outcome.

        Raises:
            KeyError: the item is unknown, or its outcome left the bounded outcome
                log before the wait started.
            NoCapableWorkerError: the item is still pending after ``pending_deadline`` seconds.
        """

        loop = asyncio.get_running_loop()
        give_up_at = loop.time() + pending_deadline if pending_deadline else None
        self._awaited.setdefault(item_id, None)
        self._waiters[item_id] += 1
        try:
            while True:
                finished = self._awaited.get(item_id)
                if finished is not None:
                    return finished
                record = self.store.lookup(item_id)
                if isinstance(record, OutcomeEntry) and record.status.is_terminal:
                    return record
                if record is None:
                    raise KeyError(item_id)
                if (
                    give_up_at is not None
                    and record.status is WorkItemStatus.PENDING
                    and loop.time() >= give_up_at
                ):
                    raise NoCapableWorkerError(
                        f"No bridge took {record.kind} item {item_id} within {pending_deadline:g}s"
                    )
                await asyncio.sleep(poll_seconds)
        finally:
            self._waiters[item_id] -= 1
            if self._waiters[item_id] <= 0:
                del self._waiters[item_id]
                self._awaited.pop(item_id, None)
