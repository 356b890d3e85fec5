"""Work item models and the registry of transaction kinds."""

from __future__ import annotations

import hashlib
import json
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from transaction_bridge.errors import UnknownKindError

KIND_SPP = "spp"
KIND_SPP_QUERY = "spp-query"
KIND_LPJ = "lpj"
KIND_LPJ_QUERY = "lpj-query"
KIND_VENDOR = "rekanan"
KIND_NOOP = "noop"
KIND_CALLBACK = "callback"


@dataclass(frozen=True, slots=True)
class KindSpec:
    """Metadata for one transaction kind.

    - persistable: pending items survive a graceful restart
    - retryable: a RetryableStepError re-runs the item on a fresh session
    - dedup: the dedup key is derived from the payload (otherwise it is unique per item)
    - bypass: handled by the notifier, never by a worker
    """

    kind: str
    persistable: bool = False
    retryable: bool = False
    dedup: bool = False
    bypass: bool = False


_KINDS: dict[str, KindSpec] = {}


def register_kind(spec: KindSpec) -> KindSpec:
    _KINDS[spec.kind] = spec
    return spec


def kind_spec(kind: str) -> KindSpec:
    spec = _KINDS.get(kind)
    if spec is None:
        known = ", ".join(registered_kinds())
        raise UnknownKindError(f"Unknown work item kind: {kind} (known: {known})")
    return spec


def registered_kinds() -> list[str]:
    return sorted(_KINDS)


register_kind(KindSpec(KIND_SPP, persistable=True, retryable=True, dedup=True))
register_kind(KindSpec(KIND_SPP_QUERY, persistable=True, dedup=True))
register_kind(KindSpec(KIND_LPJ, persistable=True, retryable=True, dedup=True))
register_kind(KindSpec(KIND_LPJ_QUERY, persistable=True, dedup=True))
register_kind(KindSpec(KIND_VENDOR, persistable=True, dedup=True))
register_kind(KindSpec(KIND_NOOP))
register_kind(KindSpec(KIND_CALLBACK, bypass=True))


class WorkItemStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkItemStatus.DONE, WorkItemStatus.FAILED)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def new_item_id() -> str:
    return uuid.uuid4().hex[:12]


def derive_dedup_key(kind: str, payload: dict[str, Any], item_id: str) -> str:
    """Derive the identity used to reject duplicate concurrent submissions."""

    if not kind_spec(kind).dedup:
        return f"{kind}:{item_id}"
    title = payload.get("title")
    if isinstance(title, str) and title.strip():
        return f"{kind}:{title.strip()}"
    canonical = json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str)
    return f"{kind}:{hashlib.sha1(canonical.encode('utf-8')).hexdigest()}"


class WorkItem(BaseModel):
    id: str
    kind: str
    payload: dict[str, Any] = Field(default_factory=dict)
    dedup_key: str
    status: WorkItemStatus = WorkItemStatus.PENDING

    # Name of the worker handling the item; the worker itself is not owned here.
    assigned_worker: str | None = None
    callback: str | None = None

    created_at: datetime = Field(default_factory=_utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    attempts: int = 0

    result: Any = None
    error: str | None = None
    # "execution", "timeout" or "notify"
    error_type: str | None = None

    @property
    def year(self) -> int | None:
        raw = self.payload.get("year")
        if isinstance(raw, bool):
            return None
        if isinstance(raw, int):
            return raw
        if isinstance(raw, str) and raw.strip().isdigit():
            return int(raw.strip())
        return None

    @property
    def correlation_id(self) -> str:
        raw = self.payload.get("id")
        if raw is None or raw == "":
            return self.id
        return str(raw)

    def timeout_seconds(self, default: float) -> float:
        """Per-item deadline in seconds; 0 disables it."""

        raw = self.payload.get("timeout")
        if isinstance(raw, (int, float)) and not isinstance(raw, bool) and raw >= 0:
            return float(raw)
        return default

    def describe(self) -> str:
        return f"{self.kind}:{self.id}"


def create_work_item(
    *,
    kind: str,
    payload: dict[str, Any] | None = None,
    callback: str | None = None,
    dedup_key: str | None = None,
    item_id: str | None = None,
) -> WorkItem:
    kind_spec(kind)
    payload = dict(payload or {})
    item_id = item_id or new_item_id()
    key = dedup_key.strip() if dedup_key and dedup_key.strip() else None
    return WorkItem(
        id=item_id,
        kind=kind,
        payload=payload,
        dedup_key=key or derive_dedup_key(kind, payload, item_id),
        callback=callback or None,
    )


class OutcomeEntry(BaseModel):
    """One status transition, as kept in the bounded outcome log."""

    item_id: str
    correlation_id: str
    kind: str
    status: WorkItemStatus
    worker: str | None = None
    at: datetime = Field(default_factory=_utc_now)
    result: Any = None
    error: str | None = None
    error_type: str | None = None

    @classmethod
    def from_item(cls, item: WorkItem) -> OutcomeEntry:
        return cls(
            item_id=item.id,
            correlation_id=item.correlation_id,
            kind=item.kind,
            status=item.status,
            worker=item.assigned_worker,
            result=item.result,
            error=item.error,
            error_type=item.error_type,
        )


class SavedItem(BaseModel):
    """Persisted form of a pending item: enough to resume dispatch."""

    id: str
    kind: str
    payload: dict[str, Any] = Field(default_factory=dict)
    dedup_key: str
    callback: str | None = None

    @classmethod
    def from_item(cls, item: WorkItem) -> SavedItem:
        return cls(
            id=item.id,
            kind=item.kind,
            payload=item.payload,
            dedup_key=item.dedup_key,
            callback=item.callback,
        )
