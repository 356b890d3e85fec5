"""FastAPI app factory.

Endpoints are thin wrappers over :class:`BridgeRuntime`. The lifespan brings
the fleet up (self tests, readiness, queue restore, scheduler) before the first
request and shuts it down afterwards; startup fails when the fleet does not
become ready in time.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from transaction_bridge import __version__
from transaction_bridge.dispatcher.config import DispatcherSettings
from transaction_bridge.dispatcher.logging import configure_logging
from transaction_bridge.dispatcher.runtime import BridgeRuntime
from transaction_bridge.errors import DuplicateSubmissionError, UnknownKindError
from transaction_bridge.server.config import ServerSettings
from transaction_bridge.server.models import (
    BatchItemResult,
    BatchRequest,
    BatchResponse,
    StatusSnapshot,
    SubmitRequest,
    SubmitResponse,
)
from transaction_bridge.server.realtime import router as realtime_router
from transaction_bridge.workqueue.models import WorkItem
from transaction_bridge.workqueue.store import IllegalTransitionError

logger = logging.getLogger(__name__)


def require_token(request: Request) -> None:
    settings: ServerSettings = request.app.state.settings
    if not settings.accepts_token(request.headers.get("authorization")):
        raise HTTPException(status_code=401, detail="Invalid or missing token")


def _runtime(request: Request) -> BridgeRuntime:
    return request.app.state.runtime


def _submit(runtime: BridgeRuntime, req: SubmitRequest) -> WorkItem:
    return runtime.submit(
        kind=req.kind,
        payload=req.payload,
        callback=req.callback,
        dedup_key=req.dedup_key,
        item_id=req.id,
    )


def create_app(
    settings: ServerSettings | None = None,
    runtime: BridgeRuntime | None = None,
) -> FastAPI:
    settings = settings or ServerSettings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.runtime is None:
            dispatcher_settings = DispatcherSettings()
            configure_logging(dispatcher_settings.log_level, fmt=dispatcher_settings.log_format)
            app.state.runtime = BridgeRuntime(dispatcher_settings)
        await app.state.runtime.start()
        try:
            yield
        finally:
            await app.state.runtime.stop()

    app = FastAPI(
        title="Transaction Bridge",
        version=__version__,
        description="Queue and dispatch finance-system transactions to automation bridges.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/v1/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    api = APIRouter(prefix="/api/v1", dependencies=[Depends(require_token)])

    @api.post("/items", response_model=SubmitResponse)
    async def submit_item(req: SubmitRequest, request: Request) -> SubmitResponse:
        try:
            item = _submit(_runtime(request), req)
        except DuplicateSubmissionError as e:
            raise HTTPException(
                status_code=409, detail={"message": str(e), "existing_id": e.existing.id}
            ) from e
        except IllegalTransitionError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        except UnknownKindError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        return SubmitResponse(id=item.id, dedup_key=item.dedup_key)

    @api.post("/items/batch", response_model=BatchResponse)
    async def submit_batch(req: BatchRequest, request: Request) -> BatchResponse:
        runtime = _runtime(request)
        results: list[BatchItemResult] = []
        for index, entry in enumerate(req.items):
            try:
                item = _submit(runtime, entry)
            except DuplicateSubmissionError as e:
                results.append(
                    BatchItemResult(index=index, status="duplicate", id=e.existing.id, error=str(e))
                )
            except IllegalTransitionError as e:
                results.append(BatchItemResult(index=index, status="duplicate", error=str(e)))
            except UnknownKindError as e:
                results.append(BatchItemResult(index=index, status="invalid", error=str(e)))
            else:
                results.append(BatchItemResult(index=index, status="queued", id=item.id))
        queued = sum(1 for r in results if r.status == "queued")
        return BatchResponse(queued=queued, rejected=len(results) - queued, items=results)

    @api.get("/items/{item_id}")
    async def get_item(item_id: str, request: Request) -> dict[str, Any]:
        record = _runtime(request).store.lookup(item_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Item not found")
        return record.model_dump(mode="json")

    @api.get("/status", response_model=StatusSnapshot)
    async def get_status(request: Request) -> dict[str, Any]:
        return _runtime(request).snapshot()

    @api.get("/logs")
    async def get_logs(request: Request, correlation_id: str | None = None) -> list[dict[str, Any]]:
        entries = _runtime(request).store.logs(correlation_id)
        return [e.model_dump(mode="json") for e in entries]

    app.include_router(api)
    app.include_router(realtime_router)
    return app
