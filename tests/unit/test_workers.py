"""Unit tests for workers and their transaction pipelines."""

from __future__ import annotations

import asyncio

import pytest

from transaction_bridge.errors import RoleError, UnknownKindError
from transaction_bridge.workers.transactions import requested_operations
from transaction_bridge.workqueue import WorkItemStatus, create_work_item


def test_accepts_and_idle(make_worker) -> None:
    specific = make_worker(accepts=["spp"])
    default = make_worker("default", accepts=None)

    assert specific.accepts("spp")
    assert not specific.accepts("lpj")
    assert default.accepts("lpj")

    item = create_work_item(kind="spp")
    assert specific.is_idle()
    specific.current_item = item
    assert not specific.is_idle()
    item.status = WorkItemStatus.DONE
    assert specific.is_idle()


def test_self_test_marks_operational_and_releases_session(make_worker, fake_session) -> None:
    session = fake_session()
    worker = make_worker(session=session, operational=False)

    asyncio.run(worker.self_test())

    assert worker.is_operational()
    assert session.calls == [("open",), ("stop",)]


def test_self_test_failure_is_logged_not_raised(make_worker, fake_session, caplog) -> None:
    session = fake_session(fail_open=True)
    worker = make_worker(session=session, operational=False)

    asyncio.run(worker.self_test())

    assert not worker.is_operational()
    assert session.stop_count == 1
    assert "Self test failed" in caplog.text


def test_spp_runs_role_phases_in_order(make_worker, fake_session) -> None:
    session = fake_session()
    worker = make_worker(session=session)
    item = create_work_item(kind="spp", payload={"role": "dinas", "id": "REQ-1"})

    result = asyncio.run(worker.execute(item))

    assert result == {"id": "REQ-1", "spp": "create-spp-1", "spm": "verify-spm-1"}
    assert session.calls == [
        ("open",),
        ("login", "bp", "1990-bp"),
        ("perform", "create-spp"),
        ("login", "ppk", "1985-ppk"),
        ("perform", "verify-spp"),
        ("login", "pa", "1970-pa"),
        ("perform", "verify-spm"),
        ("stop",),
    ]
    assert worker.current_item is None


def test_spp_without_reference_skips_verification(make_worker, fake_session) -> None:
    session = fake_session(results={"create-spp": None})
    worker = make_worker(session=session)
    item = create_work_item(kind="spp", payload={"role": "dinas"})

    assert asyncio.run(worker.execute(item)) is False
    assert ("login", "ppk", "1985-ppk") not in session.calls


def test_vendor_is_saved_only_when_lookup_finds_nothing(make_worker, fake_session) -> None:
    session = fake_session(results={"check-vendor": None})
    worker = make_worker(session=session)
    item = create_work_item(kind="spp", payload={"role": "dinas", "rekanan": "CV Maju"})

    asyncio.run(worker.execute(item))

    performed = [c[1] for c in session.calls if c[0] == "perform"]
    assert performed[:3] == ["check-vendor", "save-vendor", "create-spp"]


def test_missing_role_fails_and_still_stops_session(make_worker, fake_session) -> None:
    session = fake_session()
    worker = make_worker(session=session)
    item = create_work_item(kind="spp", payload={})

    with pytest.raises(RoleError, match="no role specified"):
        asyncio.run(worker.execute(item))

    assert session.calls == [("open",), ("stop",)]
    assert worker.current_item is None


def test_unknown_role_set_fails(make_worker) -> None:
    worker = make_worker()
    item = create_work_item(kind="spp-query", payload={"role": "other"})

    with pytest.raises(RoleError, match="Role set not found"):
        asyncio.run(worker.execute(item))


def test_lpj_runs_only_requested_operations(make_worker, fake_session) -> None:
    session = fake_session()
    worker = make_worker(session=session)
    item = create_work_item(kind="lpj", payload={"role": "dinas", "operasi": "NPD"})

    result = asyncio.run(worker.execute(item))

    assert result == {"reference": "create-npd-1"}
    performed = [c[1] for c in session.calls if c[0] == "perform"]
    assert performed == ["create-npd"]


def test_lpj_without_operations_runs_everything(make_worker, fake_session) -> None:
    session = fake_session()
    worker = make_worker(session=session)
    item = create_work_item(kind="lpj", payload={"role": "dinas"})

    asyncio.run(worker.execute(item))

    performed = [c[1] for c in session.calls if c[0] == "perform"]
    assert performed == [
        "create-npd",
        "approve-npd",
        "validate-npd",
        "check-vendor",
        "create-tbp",
    ]


def test_requested_operations_parsing() -> None:
    assert requested_operations(create_work_item(kind="lpj", payload={})) is None
    assert requested_operations(
        create_work_item(kind="lpj", payload={"operasi": " npd , TBP "})
    ) == {"npd", "tbp"}


def test_noop_opens_and_stops(make_worker, fake_session) -> None:
    session = fake_session()
    worker = make_worker(session=session)

    assert asyncio.run(worker.execute(create_work_item(kind="noop"))) is True
    assert session.calls == [("open",), ("stop",)]


def test_kind_without_pipeline_is_rejected(make_worker) -> None:
    worker = make_worker()
    with pytest.raises(UnknownKindError):
        asyncio.run(worker.execute(create_work_item(kind="callback")))


def test_terminate_gives_up_on_hung_stop(make_worker, fake_session, caplog) -> None:
    session = fake_session(hang_on_stop=True)
    worker = make_worker(session=session)
    item = create_work_item(kind="noop")
    worker.current_item = item

    asyncio.run(worker.terminate())

    # Releasing the claim is left to whoever recorded it.
    assert worker.current_item is item
    assert "did not stop within grace period" in caplog.text


def test_execute_keeps_a_claim_made_by_the_caller(make_worker, fake_session) -> None:
    worker = make_worker(session=fake_session(fail_on={"query-spp": RuntimeError("row not found")}))
    claimed = create_work_item(kind="spp-query", payload={"role": "dinas"})
    worker.current_item = claimed

    with pytest.raises(RuntimeError):
        asyncio.run(worker.execute(claimed))
    assert worker.current_item is claimed

    own = create_work_item(kind="noop")
    worker.current_item = None
    asyncio.run(worker.execute(own))
    assert worker.current_item is None
