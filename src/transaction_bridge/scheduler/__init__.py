"""Dispatch loop and the readiness barrier in front of it."""

from transaction_bridge.scheduler.dispatch import DispatchScheduler
from transaction_bridge.scheduler.readiness import ReadinessGate

__all__ = ["DispatchScheduler", "ReadinessGate"]
