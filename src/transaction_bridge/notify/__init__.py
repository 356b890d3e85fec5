"""Outbound callbacks and the real-time status channel."""

from transaction_bridge.notify.callback import HttpCallbackNotifier, Notifier
from transaction_bridge.notify.fanout import NotificationFanout

__all__ = ["HttpCallbackNotifier", "NotificationFanout", "Notifier"]
