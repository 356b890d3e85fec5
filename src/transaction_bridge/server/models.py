"""Pydantic models for the REST server."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class SubmitRequest(BaseModel):
    kind: str
    payload: dict[str, Any] = Field(default_factory=dict)
    callback: str | None = None
    dedup_key: str | None = None
    id: str | None = Field(default=None, min_length=1, max_length=64)


class SubmitResponse(BaseModel):
    status: Literal["queued"] = "queued"
    id: str
    dedup_key: str


class BatchRequest(BaseModel):
    items: list[SubmitRequest] = Field(min_length=1)


BatchItemStatus = Literal["queued", "duplicate", "invalid"]


class BatchItemResult(BaseModel):
    index: int
    status: BatchItemStatus
    id: str | None = None
    error: str | None = None


class BatchResponse(BaseModel):
    queued: int
    rejected: int
    items: list[BatchItemResult]


class WorkerStatus(BaseModel):
    name: str
    year: int | None
    accepts: list[str] | None
    operational: bool
    current_item_id: str | None


class StatusSnapshot(BaseModel):
    version: str
    ready: bool
    pending_count: int
    active_count: int
    workers: list[WorkerStatus]
