"""Transaction pipelines for the finance system.

Each builder turns one work item into a pipeline. Multi-actor transactions are
split into role phases: a phase logs in as one role of the item's role set and
the steps after it act on behalf of that role.
"""

from __future__ import annotations

from typing import Any

from transaction_bridge.pipeline import Pipeline, Step, StepResults
from transaction_bridge.workers.base import Worker
from transaction_bridge.workers.roles import ROLE_BP, ROLE_PA, ROLE_PPK, ROLE_PPTK
from transaction_bridge.workqueue.models import (
    KIND_LPJ,
    KIND_LPJ_QUERY,
    KIND_NOOP,
    KIND_SPP,
    KIND_SPP_QUERY,
    KIND_VENDOR,
    WorkItem,
)

OP_NPD = "npd"
OP_TBP = "tbp"


def requested_operations(item: WorkItem) -> set[str] | None:
    """Operations listed in ``payload["operasi"]``; ``None`` means all of them."""

    raw = item.payload.get("operasi")
    if not isinstance(raw, str) or not raw.strip():
        return None
    return {op.strip() for op in raw.lower().split(",") if op.strip()}


def wants(item: WorkItem, operation: str) -> bool:
    ops = requested_operations(item)
    return ops is None or operation in ops


def _reference(value: Any) -> Any:
    if isinstance(value, dict) and "reference" in value:
        return value["reference"]
    return value


class TransactionWorker(Worker):
    """Worker for payment requests (SPP), accountability reports (LPJ) and vendors."""

    always_edit_vendor = False

    def initialize(self) -> None:
        self.register(KIND_SPP, self.create_spp)
        self.register(KIND_SPP_QUERY, self.query_spp)
        self.register(KIND_LPJ, self.create_lpj)
        self.register(KIND_LPJ_QUERY, self.query_lpj)
        self.register(KIND_VENDOR, self.query_vendor)
        self.register(KIND_NOOP, self.noop)

    def _perform(self, operation: str, item: WorkItem):
        return lambda r: self.session.perform(operation, item)

    def _as(self, role: str):
        return lambda r: self.login_as(role)

    def vendor(self, item: WorkItem) -> Pipeline:
        """Look the vendor up and create or update it when needed."""

        return Pipeline(
            steps=[
                Step("lookup", self._perform("check-vendor", item)),
                Step(
                    "save",
                    self._perform("save-vendor", item),
                    guard=lambda r: self.always_edit_vendor or not r["lookup"],
                ),
            ],
            name=f"{self.name}:{item.describe()}:vendor",
        )

    def create_spp(self, item: WorkItem) -> Pipeline:
        async def _result(r: StepResults) -> Any:
            spp = _reference(r["bp-spp"])
            if not spp:
                return False
            data: dict[str, Any] = {"id": item.correlation_id, "spp": spp}
            if r.get("pa-verify"):
                data["spm"] = _reference(r["pa-verify"])
            return data

        return self.transaction(
            item,
            [
                Step("role", lambda r: self.check_role(item)),
                # treasurer
                Step(ROLE_BP, self._as(ROLE_BP)),
                Step("bp-vendor", lambda r: self.vendor(item).run(), guard=lambda r: "rekanan" in item.payload),
                Step("bp-spp", self._perform("create-spp", item)),
                # commitment officer
                Step(ROLE_PPK, self._as(ROLE_PPK), guard=lambda r: bool(r["bp-spp"])),
                Step("ppk-verify", self._perform("verify-spp", item), guard=lambda r: r.ran(ROLE_PPK)),
                # budget user
                Step(ROLE_PA, self._as(ROLE_PA), guard=lambda r: bool(r.get("ppk-verify"))),
                Step("pa-verify", self._perform("verify-spm", item), guard=lambda r: r.ran(ROLE_PA)),
                Step("result", _result),
            ],
        )

    def query_spp(self, item: WorkItem) -> Pipeline:
        return self.transaction(
            item,
            [
                Step("role", lambda r: self.check_role(item)),
                Step(ROLE_BP, self._as(ROLE_BP)),
                Step("bp-query", self._perform("query-spp", item)),
            ],
        )

    def create_lpj(self, item: WorkItem) -> Pipeline:
        npd = wants(item, OP_NPD)
        tbp = wants(item, OP_TBP)
        return self.transaction(
            item,
            [
                Step("role", lambda r: self.check_role(item)),
                # activity officer drafts the NPD
                Step(ROLE_PPTK, self._as(ROLE_PPTK), guard=lambda r: npd),
                Step("pptk-npd", self._perform("create-npd", item), guard=lambda r: npd),
                # budget user approves it
                Step(ROLE_PA, self._as(ROLE_PA), guard=lambda r: tbp),
                Step("pa-approve-npd", self._perform("approve-npd", item), guard=lambda r: tbp),
                # treasurer validates and records the TBP
                Step(ROLE_BP, self._as(ROLE_BP), guard=lambda r: tbp),
                Step("bp-validate-npd", self._perform("validate-npd", item), guard=lambda r: tbp),
                Step("bp-vendor", lambda r: self.vendor(item).run(), guard=lambda r: tbp),
                Step("bp-tbp", self._perform("create-tbp", item), guard=lambda r: tbp),
            ],
        )

    def query_lpj(self, item: WorkItem) -> Pipeline:
        return self.transaction(
            item,
            [
                Step("role", lambda r: self.check_role(item)),
                Step(ROLE_BP, self._as(ROLE_BP)),
                Step("bp-check-npd", self._perform("check-npd", item), guard=lambda r: wants(item, OP_NPD)),
                Step("bp-check-tbp", self._perform("check-tbp", item), guard=lambda r: wants(item, OP_TBP)),
            ],
        )

    def query_vendor(self, item: WorkItem) -> Pipeline:
        return self.transaction(
            item,
            [
                Step("role", lambda r: self.check_role(item)),
                Step(ROLE_BP, self._as(ROLE_BP)),
                Step("bp-vendor", self._perform("check-vendor", item)),
            ],
        )

    def noop(self, item: WorkItem) -> Pipeline:
        async def _noop(r: StepResults) -> bool:
            return True

        return self.transaction(item, [Step("noop", _noop)])
