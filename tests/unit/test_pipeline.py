"""Unit tests for the conditional step pipeline."""

from __future__ import annotations

import asyncio

import pytest

from transaction_bridge.pipeline import Pipeline, RecoveryPolicy, Step, StepResults, run_pipeline


def _value(v: object):
    async def action(_r: StepResults) -> object:
        return v

    return action


def _fail(message: str):
    async def action(_r: StepResults) -> object:
        raise RuntimeError(message)

    return action


def test_false_guard_skips_step_and_result_is_last_ran_step() -> None:
    calls: list[str] = []

    def tracked(name: str, value: object):
        async def action(_r: StepResults) -> object:
            calls.append(name)
            return value

        return action

    result = asyncio.run(
        run_pipeline(
            [
                Step("a", tracked("a", 1), guard=lambda r: True),
                Step("b", tracked("b", 2), guard=lambda r: False),
                Step("c", tracked("c", 3), guard=lambda r: True),
            ]
        )
    )

    assert calls == ["a", "c"]
    assert result == 3


def test_skipped_step_is_distinguishable_from_falsy_result() -> None:
    seen: dict[str, object] = {}

    async def inspect_results(r: StepResults) -> object:
        seen["zero_ran"] = r.ran("zero")
        seen["zero"] = r["zero"]
        seen["skipped"] = r.skipped("skipped")
        seen["skipped_in"] = "skipped" in r
        seen["first"] = r.at(0)
        return None

    asyncio.run(
        run_pipeline(
            [
                Step("zero", _value(0)),
                Step("skipped", _value("x"), guard=lambda r: False),
                Step("inspect", inspect_results),
            ]
        )
    )

    assert seen == {
        "zero_ran": True,
        "zero": 0,
        "skipped": True,
        "skipped_in": False,
        "first": 0,
    }


def test_guard_sees_earlier_results() -> None:
    result = asyncio.run(
        run_pipeline(
            [
                Step("lookup", _value(None)),
                Step("create", _value("created"), guard=lambda r: not r["lookup"]),
                Step("edit", _value("edited"), guard=lambda r: bool(r["lookup"])),
            ]
        )
    )
    assert result == "created"


def test_failure_halts_and_recovery_runs_once_with_error() -> None:
    calls: list[str] = []
    recovered: list[BaseException | None] = []

    async def later(_r: StepResults) -> object:
        calls.append("later")
        return None

    async def cleanup(r: StepResults) -> object:
        recovered.append(r.error)
        assert r.main is not None and r.main.ran("first")
        return None

    with pytest.raises(RuntimeError, match="boom"):
        asyncio.run(
            run_pipeline(
                [Step("first", _value(1)), Step("bad", _fail("boom")), Step("later", later)],
                [Step("cleanup", cleanup)],
            )
        )

    assert calls == []
    assert len(recovered) == 1
    assert isinstance(recovered[0], RuntimeError)


def test_recovery_runs_on_success_without_error() -> None:
    recovered: list[BaseException | None] = []

    async def cleanup(r: StepResults) -> object:
        recovered.append(r.error)
        return "cleanup"

    result = asyncio.run(run_pipeline([Step("a", _value("done"))], [Step("cleanup", cleanup)]))

    assert result == "done"
    assert recovered == [None]


def test_suppress_policy_returns_last_completed_result() -> None:
    result = asyncio.run(
        run_pipeline(
            [Step("a", _value("partial")), Step("b", _fail("boom"))],
            [Step("cleanup", _value(None))],
            on_error=RecoveryPolicy.SUPPRESS,
        )
    )
    assert result == "partial"


def test_recovery_error_is_chained_to_halting_error() -> None:
    with pytest.raises(ValueError) as excinfo:
        asyncio.run(
            run_pipeline(
                [Step("a", _fail("first"))],
                [Step("cleanup", _fail_value_error("second"))],
            )
        )
    assert isinstance(excinfo.value.__cause__, RuntimeError)


def _fail_value_error(message: str):
    async def action(_r: StepResults) -> object:
        raise ValueError(message)

    return action


def test_nested_pipeline_keeps_its_own_results() -> None:
    seen: dict[str, bool] = {}

    def guard(r: StepResults) -> bool:
        seen["leak"] = r.ran("a")
        return r.ran("first")

    inner = Pipeline(
        steps=[
            Step("first", _value("inner")),
            Step("check", _value(True), guard=guard),
        ],
        name="inner",
    )

    async def run_inner(_r: StepResults) -> object:
        return await inner.run()

    result = asyncio.run(
        run_pipeline(
            [
                Step("a", _value(1)),
                Step("nested", run_inner),
                Step("after", _value("ok"), guard=lambda r: r["nested"] is True),
            ]
        )
    )

    assert seen["leak"] is False
    assert result == "ok"


def test_async_guard_is_rejected() -> None:
    async def guard(_r: StepResults) -> bool:
        return True

    with pytest.raises(TypeError, match="synchronous"):
        asyncio.run(run_pipeline([Step("a", _value(1), guard=guard)]))


def test_duplicate_step_names_are_rejected() -> None:
    with pytest.raises(ValueError, match="Duplicate"):
        Pipeline(steps=[Step("a", _value(1)), Step("a", _value(2))])


def test_empty_pipeline_returns_none() -> None:
    assert asyncio.run(run_pipeline([])) is None
