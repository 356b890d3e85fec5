"""Exception types shared across the dispatcher.

Callers can tell submission problems (duplicates, unknown kinds) apart from
execution problems (step failures, timeouts) and from fatal startup problems
(readiness, configuration).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from transaction_bridge.workqueue.models import WorkItem


class BridgeError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(BridgeError):
    pass


class DuplicateSubmissionError(BridgeError):
    """A work item with the same dedup key is already pending or active."""

    def __init__(self, existing: WorkItem) -> None:
        super().__init__(f"{existing.kind} {existing.dedup_key} is already queued as {existing.id}")
        self.existing = existing


class UnknownKindError(BridgeError):
    pass


class ExecutionError(BridgeError):
    """A pipeline step failed."""


class RetryableStepError(ExecutionError):
    """A step failed in a way that a fresh session may fix."""


class RoleError(ExecutionError):
    pass


class ItemTimeoutError(BridgeError):
    """The item exceeded its deadline and its worker was forcibly stopped."""

    def __init__(self, item_id: str, timeout_seconds: float) -> None:
        super().__init__(f"Item {item_id} timed out after {timeout_seconds:g}s")
        self.item_id = item_id
        self.timeout_seconds = timeout_seconds


class NoCapableWorkerError(BridgeError):
    """An item stayed pending past a caller-imposed deadline.

    The scheduler never raises this; it leaves such items pending.
    """


class ReadinessTimeoutError(BridgeError):
    def __init__(self, ready: int, total: int, timeout_seconds: float) -> None:
        super().__init__(
            f"Bridge is not ready within {timeout_seconds:g} seconds timeout "
            f"({ready}/{total} operational)"
        )
        self.ready = ready
        self.total = total
        self.timeout_seconds = timeout_seconds
