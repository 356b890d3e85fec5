"""Workers (bridges): one automation session each, running transaction pipelines."""

from transaction_bridge.workers.base import Worker
from transaction_bridge.workers.registry import WorkerRegistry, build_workers
from transaction_bridge.workers.roles import Credential, RolesDocument, load_roles
from transaction_bridge.workers.session import DryRunSession, Session, load_session_factory
from transaction_bridge.workers.transactions import TransactionWorker

__all__ = [
    "Credential",
    "DryRunSession",
    "RolesDocument",
    "Session",
    "TransactionWorker",
    "Worker",
    "WorkerRegistry",
    "build_workers",
    "load_roles",
    "load_session_factory",
]
