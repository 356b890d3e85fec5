"""Test configuration and fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from pathlib import Path

import pytest

from transaction_bridge.dispatcher.config import DispatcherSettings
from transaction_bridge.workers.roles import Credential, RolesDocument
from transaction_bridge.workers.transactions import TransactionWorker

BRIDGE_ENV_VARS = (
    "LOG_LEVEL",
    "LOG_FORMAT",
    "BRIDGE_STATE_PATH",
    "BRIDGE_PERSIST_QUEUE",
    "BRIDGE_NOOP",
    "BRIDGE_CONFIG_FILE",
    "BRIDGE_ROLES_FILE",
    "BRIDGE_SESSION_FACTORY",
    "BRIDGE_READINESS_TIMEOUT_SECONDS",
    "BRIDGE_READINESS_POLL_SECONDS",
    "BRIDGE_TICK_SECONDS",
    "BRIDGE_ITEM_TIMEOUT_SECONDS",
    "BRIDGE_TERMINATE_GRACE_SECONDS",
    "BRIDGE_MAX_RETRIES",
    "BRIDGE_OUTCOME_LOG_SIZE",
    "BRIDGE_SERIAL_DISPATCH",
    "BRIDGE_TOKEN",
    "BRIDGE_CORS_ORIGINS",
)


class FakeSession:
    """In-memory session; operations can be told to fail or to hang, and stop can be slow."""

    def __init__(
        self,
        *,
        fail_open: bool = False,
        hang_on: Iterable[str] = (),
        fail_on: dict[str, Exception] | None = None,
        hang_on_stop: bool = False,
        stop_delay: float = 0.0,
        results: dict[str, object] | None = None,
    ) -> None:
        self.fail_open = fail_open
        self.hang_on = set(hang_on)
        self.fail_on = dict(fail_on or {})
        self.hang_on_stop = hang_on_stop
        self.stop_delay = stop_delay
        self.results = dict(results or {})
        self.calls: list[tuple[str, ...]] = []
        self.opened = False

    @property
    def stop_count(self) -> int:
        return sum(1 for c in self.calls if c[0] == "stop")

    async def open(self) -> None:
        self.calls.append(("open",))
        if self.fail_open:
            raise RuntimeError("browser did not start")
        self.opened = True

    async def login(self, role: str, credential: Credential) -> object:
        self.calls.append(("login", role, credential.username))
        return credential.username

    async def perform(self, operation: str, item) -> object:
        self.calls.append(("perform", operation))
        if operation in self.hang_on:
            await asyncio.Event().wait()
        error = self.fail_on.get(operation)
        if error is not None:
            raise error
        if operation in self.results:
            return self.results[operation]
        return {"reference": f"{operation}-1"}

    async def stop(self) -> None:
        self.calls.append(("stop",))
        if self.hang_on_stop:
            await asyncio.Event().wait()
        if self.stop_delay:
            await asyncio.sleep(self.stop_delay)
        self.opened = False


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep host environment and .env files out of settings."""

    for name in BRIDGE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def roles() -> RolesDocument:
    return RolesDocument(
        roles={"dinas": {"bp": "budi", "ppk": "sari", "pa": "agus", "pptk": "tono"}},
        users={
            "budi": Credential(username="1990-bp", password="x"),
            "sari": Credential(username="1985-ppk", password="x"),
            "agus": Credential(username="1970-pa", password="x"),
            "tono": Credential(username="1992-pptk", password="x"),
        },
    )


@pytest.fixture
def make_worker(roles: RolesDocument) -> Callable[..., TransactionWorker]:
    """Build a worker around a :class:`FakeSession`, operational unless told otherwise."""

    def _make(
        name: str = "sipd-2025",
        *,
        year: int | None = 2025,
        accepts: Iterable[str] | None = None,
        session: FakeSession | None = None,
        operational: bool = True,
    ) -> TransactionWorker:
        worker = TransactionWorker(
            name,
            session=session or FakeSession(),
            year=year,
            accepts=accepts,
            roles=roles,
            terminate_grace_seconds=0.2,
        )
        worker._operational = operational
        return worker

    return _make


@pytest.fixture
def settings(tmp_path: Path) -> DispatcherSettings:
    """Fast timings, state under tmp_path, no config files."""

    return DispatcherSettings(
        _env_file=None,
        BRIDGE_STATE_PATH=tmp_path / "queue",
        BRIDGE_CONFIG_FILE=tmp_path / "bridges.json",
        BRIDGE_ROLES_FILE=tmp_path / "roles.json",
        BRIDGE_READINESS_TIMEOUT_SECONDS=1.0,
        BRIDGE_READINESS_POLL_SECONDS=0.01,
        BRIDGE_TICK_SECONDS=0.01,
        BRIDGE_TERMINATE_GRACE_SECONDS=0.2,
    )


@pytest.fixture
def fake_session() -> type[FakeSession]:
    return FakeSession
