"""Worker (bridge) base class.

A worker owns one automation session, advertises the year and kinds it can
handle, and runs at most one work item at a time. Each supported kind maps to
a pipeline builder; the builder returns a fresh :class:`Pipeline` per item.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence

from transaction_bridge.errors import RoleError, UnknownKindError
from transaction_bridge.pipeline import Pipeline, RecoveryPolicy, Step
from transaction_bridge.workers.roles import ROLE_TITLES, RolesDocument
from transaction_bridge.workers.session import Session
from transaction_bridge.workqueue.models import WorkItem

logger = logging.getLogger(__name__)

PipelineBuilder = Callable[[WorkItem], Pipeline]


class Worker:
    def __init__(
        self,
        name: str,
        *,
        session: Session,
        year: int | None = None,
        accepts: Iterable[str] | None = None,
        roles: RolesDocument | None = None,
        terminate_grace_seconds: float = 5.0,
    ) -> None:
        self.name = name
        self.session = session
        self.year_affinity = year
        # None means a default worker: it takes whatever specific workers don't claim.
        self.accepted_kinds: frozenset[str] | None = (
            frozenset(accepts) if accepts is not None else None
        )
        self.roles = roles or RolesDocument()
        self.terminate_grace_seconds = terminate_grace_seconds

        self.current_item: WorkItem | None = None
        self._operational = False
        self._role_set: dict[str, str] | None = None
        self._handlers: dict[str, PipelineBuilder] = {}
        self.initialize()

    def initialize(self) -> None:
        """Register pipeline builders; subclasses override."""

    def register(self, kind: str, builder: PipelineBuilder) -> None:
        self._handlers[kind] = builder

    def handled_kinds(self) -> list[str]:
        return sorted(self._handlers)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} year={self.year_affinity}>"

    def is_operational(self) -> bool:
        return self._operational

    def is_idle(self) -> bool:
        return self.current_item is None or self.current_item.status.is_terminal

    def accepts(self, kind: str) -> bool:
        return self.accepted_kinds is None or kind in self.accepted_kinds

    async def self_test(self) -> None:
        """Prove the session can open; failures leave the worker non-operational."""

        async def _operational(_results: object) -> bool:
            self._operational = True
            return True

        pipeline = Pipeline(
            steps=[
                Step("open", lambda r: self.session.open()),
                Step("operational", _operational),
            ],
            recovery=[Step("stop", lambda r: self.session.stop())],
            name=f"{self.name}:self-test",
        )
        try:
            await pipeline.run()
        except Exception:
            self._operational = False
            logger.exception("Self test failed", extra={"worker": self.name})
            return
        logger.info("Worker operational", extra={"worker": self.name})

    async def execute(self, item: WorkItem) -> object:
        """Run the pipeline for ``item``.

        A claim set by the caller (the scheduler) is left in place; the worker
        only releases a claim it took itself.
        """

        builder = self._handlers.get(item.kind)
        if builder is None:
            raise UnknownKindError(f"{self.name} has no pipeline for {item.kind}")
        claimed = self.current_item is not item
        self.current_item = item
        try:
            return await builder(item).run()
        finally:
            if self.current_item is item:
                self._role_set = None
                if claimed:
                    self.current_item = None

    async def terminate(self) -> None:
        """Force the session to stop; used when an item's deadline fires.

        The claim on ``current_item`` is kept: the item is still active until
        whoever claimed it records its outcome.
        """

        try:
            await asyncio.wait_for(self.session.stop(), timeout=self.terminate_grace_seconds)
        except TimeoutError:
            logger.error(
                "Session did not stop within grace period",
                extra={"worker": self.name, "grace_seconds": self.terminate_grace_seconds},
            )
        except Exception:
            logger.exception("Session stop failed", extra={"worker": self.name})
        finally:
            self._role_set = None

    def transaction(
        self,
        item: WorkItem,
        steps: Sequence[Step],
        *,
        on_error: RecoveryPolicy = RecoveryPolicy.RERAISE,
    ) -> Pipeline:
        """Wrap business steps so the session is opened first and always stopped."""

        return Pipeline(
            steps=[Step("open", lambda r: self.session.open()), *steps],
            recovery=[Step("stop", lambda r: self.session.stop())],
            on_error=on_error,
            name=f"{self.name}:{item.describe()}",
        )

    async def check_role(self, item: WorkItem) -> str:
        """Select the role set named by the item."""

        role = item.payload.get("role")
        if not isinstance(role, str) or not role.strip():
            raise RoleError("Invalid item, no role specified!")
        role_set = self.roles.role_set(role.strip())
        if role_set is None:
            raise RoleError(f"Role set not found: {role}!")
        self._role_set = role_set
        return role.strip()

    async def login_as(self, role: str) -> object:
        user = self._role_set.get(role) if self._role_set else None
        if not user:
            raise RoleError(f"Role not found: {role}!")
        credential = self.roles.credential(user)
        if credential is None:
            raise RoleError(f"User has no credential: {user}!")
        logger.debug(
            "Switching role",
            extra={"worker": self.name, "role": ROLE_TITLES.get(role, role), "user": user},
        )
        return await self.session.login(role, credential)
