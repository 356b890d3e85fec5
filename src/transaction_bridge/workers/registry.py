"""The worker fleet, built from configuration and owned by the runtime."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence

from transaction_bridge.dispatcher.config import DispatcherSettings, load_bridge_options
from transaction_bridge.workers.base import Worker
from transaction_bridge.workers.roles import load_roles
from transaction_bridge.workers.session import load_session_factory
from transaction_bridge.workers.transactions import TransactionWorker

logger = logging.getLogger(__name__)


class WorkerRegistry:
    def __init__(self, workers: Sequence[Worker]) -> None:
        names = [w.name for w in workers]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate worker names: {names}")
        self._workers = list(workers)

    def __iter__(self) -> Iterator[Worker]:
        return iter(self._workers)

    def __len__(self) -> int:
        return len(self._workers)

    def get(self, name: str) -> Worker | None:
        for worker in self._workers:
            if worker.name == name:
                return worker
        return None

    def operational(self) -> list[Worker]:
        return [w for w in self._workers if w.is_operational()]

    def ready_count(self) -> int:
        return len(self.operational())


def build_workers(settings: DispatcherSettings) -> WorkerRegistry:
    """Create one :class:`TransactionWorker` per enabled bridge.

    Raises:
        ConfigurationError: the bridge file, roles file or session factory is invalid.
    """

    options = load_bridge_options(settings.config_file)
    roles = load_roles(settings.roles_file)
    factory = load_session_factory(settings.session_factory)

    workers: list[Worker] = []
    for name, opts in options.items():
        workers.append(
            TransactionWorker(
                name,
                session=factory(name, opts),
                year=opts.year,
                accepts=opts.accepts,
                roles=roles,
                terminate_grace_seconds=settings.terminate_grace_seconds,
            )
        )
        logger.info(
            "Worker created",
            extra={"worker": name, "year": opts.year, "accepts": opts.accepts},
        )
    return WorkerRegistry(workers)
