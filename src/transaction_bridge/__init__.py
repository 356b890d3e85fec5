"""Transaction Bridge.

Queues finance-system transactions and dispatches them to a fleet of automation
workers ("bridges"):
- a queue store with dedup, an outcome log and file persistence
- a dispatch scheduler with year/kind affinity and per-item timeouts
- a readiness gate in front of dispatch
- a step pipeline each worker uses to express one transaction
"""

__version__ = "0.1.0"

from transaction_bridge.dispatcher.config import DispatcherSettings

__all__ = ["__version__", "DispatcherSettings"]
