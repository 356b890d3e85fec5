"""Work items and the queue store that holds them."""

from transaction_bridge.workqueue.models import (
    KIND_CALLBACK,
    KIND_LPJ,
    KIND_LPJ_QUERY,
    KIND_NOOP,
    KIND_SPP,
    KIND_SPP_QUERY,
    KIND_VENDOR,
    KindSpec,
    OutcomeEntry,
    WorkItem,
    WorkItemStatus,
    create_work_item,
    kind_spec,
    register_kind,
)
from transaction_bridge.workqueue.store import IllegalTransitionError, QueueStore

__all__ = [
    "KIND_CALLBACK",
    "KIND_LPJ",
    "KIND_LPJ_QUERY",
    "KIND_NOOP",
    "KIND_SPP",
    "KIND_SPP_QUERY",
    "KIND_VENDOR",
    "IllegalTransitionError",
    "KindSpec",
    "OutcomeEntry",
    "QueueStore",
    "WorkItem",
    "WorkItemStatus",
    "create_work_item",
    "kind_spec",
    "register_kind",
]
