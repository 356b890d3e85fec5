"""Dispatch scheduler.

One cooperative loop matches pending items to idle workers. Each tick walks the
pending list oldest first:

1. nothing happens while no worker is operational;
2. callback items skip the workers and go to the notifier;
3. workers of the item's year that explicitly accept its kind are preferred,
   default workers (no ``accepts``) of that year are the fallback;
4. one idle candidate is picked at random and the item is handed to it in its
   own task;
5. items without a candidate stay pending for a later tick.

A worker runs one item at a time; the fleet runs as many items as there are
busy workers, unless serial dispatch is configured.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from transaction_bridge.dispatcher.config import DispatcherSettings
from transaction_bridge.errors import BridgeError, ItemTimeoutError, RetryableStepError
from transaction_bridge.notify.callback import Notifier
from transaction_bridge.workers.base import Worker
from transaction_bridge.workqueue.models import (
    KIND_CALLBACK,
    WorkItem,
    WorkItemStatus,
    create_work_item,
    kind_spec,
)
from transaction_bridge.workqueue.store import QueueStore

logger = logging.getLogger(__name__)

Chooser = Callable[[Sequence[Worker]], Worker]


def _consume_result(task: asyncio.Task[Any]) -> None:
    if not task.cancelled():
        task.exception()


class DispatchScheduler:
    def __init__(
        self,
        store: QueueStore,
        workers: Iterable[Worker],
        notifier: Notifier,
        *,
        item_timeout_seconds: float = 600.0,
        max_retries: int = 3,
        tick_seconds: float = 0.5,
        serial: bool = False,
        choose: Chooser = random.choice,
    ) -> None:
        self.store = store
        self.workers = workers
        self.notifier = notifier
        self.item_timeout_seconds = item_timeout_seconds
        self.max_retries = max_retries
        self.tick_seconds = tick_seconds
        self.serial = serial
        self.choose = choose

        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._wake = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_task: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(
        cls,
        store: QueueStore,
        workers: Iterable[Worker],
        notifier: Notifier,
        settings: DispatcherSettings,
    ) -> DispatchScheduler:
        return cls(
            store,
            workers,
            notifier,
            item_timeout_seconds=settings.item_timeout_seconds,
            max_retries=settings.max_retries,
            tick_seconds=settings.tick_seconds,
            serial=settings.serial_dispatch,
        )

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def candidates(self, item: WorkItem) -> list[Worker]:
        """Idle operational workers able to take ``item``, specific workers first."""

        eligible = [
            w
            for w in self.workers
            if w.is_operational() and w.year_affinity == item.year and w.is_idle()
        ]
        specific = [w for w in eligible if w.accepted_kinds is not None and w.accepts(item.kind)]
        if specific:
            return specific
        return [w for w in eligible if w.accepted_kinds is None]

    def tick(self) -> list[WorkItem]:
        """Dispatch every pending item that can be dispatched now.

        Must be called from the event loop; returns the items handed off.
        """

        if not any(w.is_operational() for w in self.workers):
            return []

        dispatched: list[WorkItem] = []
        for item in self.store.pending():
            if self.serial and self._tasks:
                break
            if kind_spec(item.kind).bypass:
                self.store.mark_active(item, None)
                self._spawn(item, self._deliver(item))
                dispatched.append(item)
                continue

            candidates = self.candidates(item)
            if not candidates:
                continue
            worker = self.choose(candidates)
            self.store.mark_active(item, worker.name)
            worker.current_item = item
            self._spawn(item, self._run_item(item, worker))
            dispatched.append(item)
        return dispatched

    def _spawn(self, item: WorkItem, coro: Any) -> None:
        task = asyncio.create_task(coro, name=f"item-{item.id}")
        self._tasks[item.id] = task

        def _done(t: asyncio.Task[None]) -> None:
            self._tasks.pop(item.id, None)
            _consume_result(t)

        task.add_done_callback(_done)

    async def _deliver(self, item: WorkItem) -> None:
        try:
            result = await self.notifier.notify(item)
        except asyncio.CancelledError:
            self.store.mark_failed(item, "Dispatcher stopped", error_type="cancelled")
            raise
        except Exception as e:
            self.store.mark_failed(item, e, error_type="notify")
        else:
            self.store.mark_done(item, result)
        self.wake()

    async def _run_item(self, item: WorkItem, worker: Worker) -> None:
        """Run ``item`` on ``worker`` and record its outcome.

        The worker stays claimed by ``item`` until the outcome is recorded, through
        retries and forced session stops alike.
        """

        worker.current_item = item
        timeout = item.timeout_seconds(self.item_timeout_seconds)
        try:
            result = await self._execute_with_retry(item, worker, timeout)
        except ItemTimeoutError as e:
            self.store.mark_failed(item, e, error_type="timeout")
        except asyncio.CancelledError:
            await worker.terminate()
            self.store.mark_failed(item, "Dispatcher stopped", error_type="cancelled")
            raise
        except Exception as e:
            self.store.mark_failed(item, e)
        else:
            self.store.mark_done(item, result)
        finally:
            if worker.current_item is item:
                worker.current_item = None
        self._submit_completion_callback(item)
        self.wake()

    async def _execute_with_retry(self, item: WorkItem, worker: Worker, timeout: float) -> Any:
        retries = 0
        while True:
            try:
                return await self._attempt(item, worker, timeout)
            except RetryableStepError as e:
                if not kind_spec(item.kind).retryable or retries >= self.max_retries:
                    raise
                retries += 1
                self.store.mark_retry(item, e)
                # The item stays claimed while its session is torn down.
                worker.current_item = item
                await worker.terminate()

    async def _attempt(self, item: WorkItem, worker: Worker, timeout: float) -> Any:
        task = asyncio.create_task(worker.execute(item), name=f"execute-{item.id}")
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout or None)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task in done:
            return task.result()

        # The session may never settle on its own: stop it and abandon the run.
        task.add_done_callback(_consume_result)
        task.cancel()
        await worker.terminate()
        logger.error(
            "Item timed out",
            extra={"item_id": item.id, "kind": item.kind, "worker": worker.name, "timeout": timeout},
        )
        raise ItemTimeoutError(item.id, timeout)

    def _submit_completion_callback(self, item: WorkItem) -> None:
        if not item.callback or kind_spec(item.kind).bypass:
            return
        data: dict[str, Any] = {
            "id": item.correlation_id,
            "queue": item.id,
            "status": item.status.value,
        }
        if item.status is WorkItemStatus.DONE:
            data["result"] = item.result
        else:
            data["error"] = item.error
            data["error_type"] = item.error_type
        try:
            self.store.submit(create_work_item(kind=KIND_CALLBACK, payload=data, callback=item.callback))
        except BridgeError:
            logger.exception("Completion callback not queued", extra={"item_id": item.id})

    def snapshot(self) -> dict[str, Any]:
        return {
            "pending_count": self.store.pending_count,
            "active_count": self.store.active_count,
            "workers": [
                {
                    "name": w.name,
                    "year": w.year_affinity,
                    "accepts": sorted(w.accepted_kinds) if w.accepted_kinds is not None else None,
                    "operational": w.is_operational(),
                    "current_item_id": w.current_item.id if w.current_item is not None else None,
                }
                for w in self.workers
            ],
        }

    def wake(self) -> None:
        """Request an early tick; safe to call from any thread."""

        if self._loop is None:
            self._wake.set()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._wake.set()
        else:
            self._loop.call_soon_threadsafe(self._wake.set)

    async def run_forever(self) -> None:
        while True:
            self._wake.clear()
            try:
                self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.tick_seconds)
            except TimeoutError:
                pass

    def start(self) -> None:
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._loop_task = asyncio.create_task(self.run_forever(), name="dispatch-scheduler")
        logger.info("Scheduler started", extra={"serial": self.serial})

    async def stop(self) -> None:
        """Stop ticking and cancel in-flight items."""

        if self._loop_task is not None:
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._loop = None
        logger.info("Scheduler stopped", extra={"cancelled": len(tasks)})

    async def drain(self) -> None:
        """Wait until no item is in flight."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
