"""Real-time channel over WebSocket.

The server pushes ``{"event": "status", "data": <snapshot>}`` on every queue
transition. Clients may also send commands and get a direct reply:

- ``{"command": "status"}``
- ``{"command": "logs", "correlation_id": "..."}``
- ``{"command": "submit", "kind": "...", "payload": {...}, "callback": "..."}``
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from transaction_bridge.dispatcher.runtime import BridgeRuntime
from transaction_bridge.errors import DuplicateSubmissionError, UnknownKindError
from transaction_bridge.server.models import SubmitRequest
from transaction_bridge.workqueue.store import IllegalTransitionError

logger = logging.getLogger(__name__)

router = APIRouter()


def _error(message: str, **data: Any) -> dict[str, Any]:
    return {"event": "error", "data": {"message": message, **data}}


def handle_command(runtime: BridgeRuntime, message: Any) -> dict[str, Any]:
    if not isinstance(message, dict):
        return _error("Message must be a JSON object")
    command = message.get("command")

    if command == "status":
        return {"event": "status", "data": runtime.snapshot()}

    if command == "logs":
        entries = runtime.store.logs(message.get("correlation_id"))
        return {"event": "logs", "data": [e.model_dump(mode="json") for e in entries]}

    if command == "submit":
        fields = {k: v for k, v in message.items() if k != "command"}
        try:
            req = SubmitRequest.model_validate(fields)
            item = runtime.submit(
                kind=req.kind,
                payload=req.payload,
                callback=req.callback,
                dedup_key=req.dedup_key,
                item_id=req.id,
            )
        except DuplicateSubmissionError as e:
            return _error(str(e), existing_id=e.existing.id)
        except (UnknownKindError, IllegalTransitionError, ValidationError) as e:
            return _error(str(e))
        return {"event": "queued", "data": {"id": item.id, "dedup_key": item.dedup_key}}

    return _error(f"Unknown command: {command}")


async def _push(websocket: WebSocket, queue: asyncio.Queue[dict[str, Any]]) -> None:
    while True:
        message = await queue.get()
        await websocket.send_json(message)


@router.websocket("/api/v1/ws")
async def realtime(websocket: WebSocket) -> None:
    settings = websocket.app.state.settings
    if not settings.accepts_token(websocket.headers.get("authorization")):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    runtime: BridgeRuntime = websocket.app.state.runtime
    await websocket.accept()
    queue = runtime.fanout.subscribe()
    await websocket.send_json({"event": "status", "data": runtime.snapshot()})
    pusher = asyncio.create_task(_push(websocket, queue))
    try:
        while True:
            text = await websocket.receive_text()
            try:
                message = json.loads(text)
            except json.JSONDecodeError:
                await websocket.send_json(_error("Message is not valid JSON"))
                continue
            await websocket.send_json(handle_command(runtime, message))
    except WebSocketDisconnect:
        logger.debug("Real-time client disconnected")
    finally:
        pusher.cancel()
        runtime.fanout.unsubscribe(queue)
