"""In-memory work queue with dedup, a bounded outcome log and file persistence.

Pending items are kept in submission order. Active items are indexed by id.
Items that reach a terminal status leave the store; what remains of them is
their entries in the bounded outcome log.

Persistence is best-effort and meant for the graceful shutdown path: pending
items are written to ``saved-queue.json`` and the outcome log to a numbered
``outcomes-<n>.json``. There is no atomic write or crash-safety guarantee.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from transaction_bridge.errors import BridgeError, DuplicateSubmissionError
from transaction_bridge.workqueue.models import (
    OutcomeEntry,
    SavedItem,
    WorkItem,
    WorkItemStatus,
    create_work_item,
    kind_spec,
)

logger = logging.getLogger(__name__)

SAVED_QUEUE_FILENAME = "saved-queue.json"

QueueListener = Callable[[str, WorkItem], None]


class IllegalTransitionError(ValueError):
    pass


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _error_text(error: BaseException | str) -> str:
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return error


class QueueStore:
    def __init__(self, *, state_dir: Path, log_size: int = 200) -> None:
        self.state_dir = state_dir
        self._lock = threading.Lock()
        self._pending: list[WorkItem] = []
        self._active: dict[str, WorkItem] = {}
        self._outcomes: deque[OutcomeEntry] = deque(maxlen=log_size)
        self._listeners: list[QueueListener] = []

    @property
    def saved_queue_file(self) -> Path:
        return self.state_dir / SAVED_QUEUE_FILENAME

    def add_listener(self, listener: QueueListener) -> None:
        """Register a callback invoked as ``listener(event, item)`` after each transition.

        Events: ``queued``, ``active``, ``retry``, ``done``, ``failed``.
        """

        self._listeners.append(listener)

    def _emit(self, event: str, item: WorkItem) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, item)
            except Exception:
                logger.exception(
                    "Queue listener failed", extra={"event": event, "item_id": item.id}
                )

    def _find_live_unlocked(self, dedup_key: str) -> WorkItem | None:
        for item in self._pending:
            if item.dedup_key == dedup_key:
                return item
        for item in self._active.values():
            if item.dedup_key == dedup_key:
                return item
        return None

    def submit(self, item: WorkItem) -> WorkItem:
        """Append a new item to the pending list.

        Raises:
            DuplicateSubmissionError: an item with the same dedup key is pending or active.
        """

        with self._lock:
            existing = self._find_live_unlocked(item.dedup_key)
            if existing is not None:
                raise DuplicateSubmissionError(existing)
            if item.id in self._active or any(p.id == item.id for p in self._pending):
                raise IllegalTransitionError(f"Item id already in use: {item.id}")
            item.status = WorkItemStatus.PENDING
            self._pending.append(item)
        logger.info(
            "Item queued",
            extra={"item_id": item.id, "kind": item.kind, "dedup_key": item.dedup_key},
        )
        self._emit("queued", item)
        return item

    def peek_next(self) -> WorkItem | None:
        """Oldest pending item, left in place."""

        with self._lock:
            return self._pending[0] if self._pending else None

    def pending(self) -> list[WorkItem]:
        with self._lock:
            return list(self._pending)

    def active(self) -> list[WorkItem]:
        with self._lock:
            return list(self._active.values())

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    def lookup(self, item_id: str) -> WorkItem | OutcomeEntry | None:
        """Live item by id, or its most recent outcome entry once it has left the store."""

        with self._lock:
            for item in self._pending:
                if item.id == item_id:
                    return item
            if item_id in self._active:
                return self._active[item_id]
            for entry in reversed(self._outcomes):
                if entry.item_id == item_id:
                    return entry
        return None

    def logs(self, correlation_id: str | None = None) -> list[OutcomeEntry]:
        with self._lock:
            entries = list(self._outcomes)
        if correlation_id is None:
            return entries
        return [e for e in entries if correlation_id in (e.correlation_id, e.item_id)]

    def mark_active(self, item: WorkItem, worker: str | None) -> WorkItem:
        with self._lock:
            for idx, pending in enumerate(self._pending):
                if pending.id == item.id:
                    del self._pending[idx]
                    break
            else:
                raise IllegalTransitionError(f"Item {item.id} is not pending")
            item.status = WorkItemStatus.ACTIVE
            item.assigned_worker = worker
            item.started_at = _utc_now()
            item.attempts += 1
            self._active[item.id] = item
            self._outcomes.append(OutcomeEntry.from_item(item))
        logger.info(
            "Item active",
            extra={"item_id": item.id, "kind": item.kind, "worker": worker},
        )
        self._emit("active", item)
        return item

    def mark_retry(self, item: WorkItem, error: BaseException | str) -> WorkItem:
        """Record a failed attempt of an item that stays active for another try."""

        with self._lock:
            self._check_active_unlocked(item)
            item.attempts += 1
            item.error = _error_text(error)
            self._outcomes.append(OutcomeEntry.from_item(item))
        logger.warning(
            "Item retrying",
            extra={"item_id": item.id, "kind": item.kind, "attempt": item.attempts, "error": item.error},
        )
        self._emit("retry", item)
        return item

    def _check_active_unlocked(self, item: WorkItem) -> None:
        if item.id not in self._active:
            raise IllegalTransitionError(f"Item {item.id} is not active")

    def _finish_unlocked(self, item: WorkItem) -> None:
        del self._active[item.id]
        item.completed_at = _utc_now()
        self._outcomes.append(OutcomeEntry.from_item(item))

    def mark_done(self, item: WorkItem, result: Any) -> WorkItem:
        with self._lock:
            self._check_active_unlocked(item)
            item.status = WorkItemStatus.DONE
            item.result = result
            item.error = None
            item.error_type = None
            self._finish_unlocked(item)
        logger.info(
            "Item done",
            extra={"item_id": item.id, "kind": item.kind, "worker": item.assigned_worker},
        )
        self._emit("done", item)
        return item

    def mark_failed(
        self, item: WorkItem, error: BaseException | str, *, error_type: str = "execution"
    ) -> WorkItem:
        with self._lock:
            self._check_active_unlocked(item)
            item.status = WorkItemStatus.FAILED
            item.error = _error_text(error)
            item.error_type = error_type
            self._finish_unlocked(item)
        logger.warning(
            "Item failed",
            extra={
                "item_id": item.id,
                "kind": item.kind,
                "worker": item.assigned_worker,
                "error": item.error,
                "error_type": error_type,
            },
        )
        self._emit("failed", item)
        return item

    def persist(self) -> list[Path]:
        """Write persistable pending items and the outcome log to the state directory."""

        with self._lock:
            saved = [
                SavedItem.from_item(item)
                for item in self._pending
                if kind_spec(item.kind).persistable
            ]
            outcomes = list(self._outcomes)

        written: list[Path] = []
        if saved:
            self._write_json(self.saved_queue_file, [s.model_dump(mode="json") for s in saved])
            written.append(self.saved_queue_file)
        if outcomes:
            path = self._next_outcome_file()
            self._write_json(path, [e.model_dump(mode="json") for e in outcomes])
            written.append(path)
        logger.info(
            "Queue persisted",
            extra={"saved_items": len(saved), "outcomes": len(outcomes)},
        )
        return written

    def restore(self) -> int:
        """Resubmit items saved by :meth:`persist`, then remove the saved file.

        Items are resubmitted in their saved order as fresh pending items.
        Duplicates and items of unknown kinds are logged and skipped.
        """

        path = self.saved_queue_file
        if not path.exists():
            return 0
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Saved queue is not valid JSON, leaving it in place", extra={"path": str(path)})
            return 0
        if not isinstance(raw, list):
            logger.warning("Saved queue has unexpected shape", extra={"path": str(path)})
            return 0

        restored = 0
        for entry in raw:
            try:
                saved = SavedItem.model_validate(entry)
                item = create_work_item(
                    kind=saved.kind,
                    payload=saved.payload,
                    callback=saved.callback,
                    dedup_key=saved.dedup_key,
                    item_id=saved.id,
                )
                self.submit(item)
            except (ValidationError, BridgeError, IllegalTransitionError) as e:
                logger.warning("Saved item skipped", extra={"entry": entry, "error": str(e)})
                continue
            restored += 1
        path.unlink()
        logger.info("Queue restored", extra={"restored": restored, "path": str(path)})
        return restored

    def _next_outcome_file(self) -> Path:
        seq = 0
        while True:
            seq += 1
            candidate = self.state_dir / f"outcomes-{seq}.json"
            if not candidate.exists():
                return candidate

    def _write_json(self, path: Path, payload: list[dict[str, Any]]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )
