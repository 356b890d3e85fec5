"""Outbound notification of requesters.

Callback items carry the requester's URL in ``callback`` and the data to deliver
in ``payload``. Delivery is a single JSON POST; failures fail the callback item
and are not retried. Deliveries run in worker threads and are serialized over
one shared HTTP session.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Protocol

import requests

from transaction_bridge.workqueue.models import WorkItem

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify(self, item: WorkItem) -> Any: ...


class HttpCallbackNotifier:
    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.session = session or requests.Session()
        self.timeout_seconds = timeout_seconds
        # requests.Session is shared by the delivery threads; one POST at a time.
        self._lock = threading.Lock()

    def _post(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            response = self.session.post(url, json=payload, timeout=self.timeout_seconds)
        response.raise_for_status()
        return {"status_code": response.status_code}

    async def notify(self, item: WorkItem) -> dict[str, Any]:
        if not item.callback:
            raise ValueError(f"Callback item {item.id} has no callback address")
        logger.debug("Delivering callback", extra={"item_id": item.id, "url": item.callback})
        return await asyncio.to_thread(self._post, item.callback, item.payload)

    def close(self) -> None:
        with self._lock:
            self.session.close()
