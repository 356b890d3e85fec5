"""Automation session contract.

A session drives the finance system's UI on behalf of one bridge. Its
internals (browser, form filling, captcha) live outside this package; the
dispatcher only relies on the coroutines below.
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

from transaction_bridge.errors import ConfigurationError

if TYPE_CHECKING:
    from transaction_bridge.dispatcher.config import BridgeOptions
    from transaction_bridge.workers.roles import Credential
    from transaction_bridge.workqueue.models import WorkItem

logger = logging.getLogger(__name__)


class Session(Protocol):
    async def open(self) -> None: ...

    async def login(self, role: str, credential: Credential) -> object: ...

    async def perform(self, operation: str, item: WorkItem) -> object: ...

    async def stop(self) -> None: ...


SessionFactory = Callable[[str, "BridgeOptions"], Session]


class DryRunSession:
    """A session that records calls instead of driving a browser.

    Useful to run the whole service without the automation driver; every
    operation succeeds with a deterministic reference number.
    """

    def __init__(self, bridge: str, options: BridgeOptions | None = None) -> None:
        self.bridge = bridge
        self.options = options
        self.opened = False
        self.user: str | None = None
        self.calls: list[tuple[str, ...]] = []

    async def open(self) -> None:
        self.opened = True
        self.calls.append(("open",))

    async def login(self, role: str, credential: Credential) -> object:
        if not self.opened:
            raise RuntimeError("Session is not open")
        self.user = credential.username
        self.calls.append(("login", role, credential.username))
        return credential.username

    async def perform(self, operation: str, item: WorkItem) -> object:
        if not self.opened:
            raise RuntimeError("Session is not open")
        self.calls.append(("perform", operation, item.id))
        return {"operation": operation, "reference": f"{operation.upper()}/{item.id}"}

    async def stop(self) -> None:
        self.opened = False
        self.user = None
        self.calls.append(("stop",))


def load_session_factory(path: str) -> SessionFactory:
    """Resolve ``'package.module:Factory'`` into a session factory."""

    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"Session factory must look like 'module:Factory': {path}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import session factory module {module_name}: {e}") from e
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigurationError(f"Session factory {path} is not callable")
    logger.debug("Session factory loaded", extra={"factory": path})
    return factory
