"""Conditional step pipeline.

A pipeline is an ordered list of named steps. Each step may carry a guard, a
synchronous predicate over the results produced so far; when the guard returns
false the step is skipped. The first failing step halts the list. An optional
recovery list then runs exactly once, on success and on failure alike, with the
halting error (if any) visible to it.

Results are addressed by step name (or by position in the step list). A skipped
step has no result at all, which is different from a step that ran and
returned a falsy value.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

StepAction = Callable[["StepResults"], Awaitable[object]]
StepGuard = Callable[["StepResults"], bool]


class RecoveryPolicy(str, Enum):
    """What happens to the halting error once the recovery list has run."""

    RERAISE = "reraise"
    SUPPRESS = "suppress"


@dataclass(frozen=True, slots=True)
class Step:
    name: str
    action: StepAction
    guard: StepGuard | None = None


class StepResults(Mapping[str, object]):
    """Results of the steps that actually ran, in run order.

    Only steps that ran are members of the mapping; ``results["x"]`` raises
    ``KeyError`` for a skipped (or not yet reached) step.
    """

    def __init__(
        self,
        names: Sequence[str],
        *,
        error: Exception | None = None,
        main: StepResults | None = None,
    ) -> None:
        self._names = list(names)
        self._values: dict[str, object] = {}
        self._skipped: set[str] = set()
        self._last: object = None
        self.error = error
        # Recovery lists get read access to the main list's results.
        self.main = main

    def __getitem__(self, name: str) -> object:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def ran(self, name: str) -> bool:
        return name in self._values

    def skipped(self, name: str) -> bool:
        return name in self._skipped

    def at(self, index: int) -> object:
        """Positional access, by index into the step list."""

        return self._values[self._names[index]]

    @property
    def last(self) -> object:
        """Result of the last step that ran, ``None`` if none did."""

        return self._last

    def _record(self, name: str, value: object) -> None:
        self._values[name] = value
        self._last = value

    def _skip(self, name: str) -> None:
        self._skipped.add(name)


def _check_names(steps: Sequence[Step], label: str) -> None:
    seen: set[str] = set()
    for step in steps:
        if not step.name:
            raise ValueError(f"{label} step names must not be empty")
        if step.name in seen:
            raise ValueError(f"Duplicate {label} step name: {step.name}")
        seen.add(step.name)


def _evaluate_guard(step: Step, results: StepResults) -> bool:
    if step.guard is None:
        return True
    decision = step.guard(results)
    if inspect.isawaitable(decision):
        close = getattr(decision, "close", None)
        if callable(close):
            close()
        raise TypeError(f"Guard of step {step.name!r} must be synchronous")
    return bool(decision)


async def _run_steps(steps: Sequence[Step], results: StepResults, pipeline: str) -> None:
    for step in steps:
        if not _evaluate_guard(step, results):
            results._skip(step.name)
            logger.debug("Step skipped", extra={"pipeline": pipeline, "step": step.name})
            continue
        logger.debug("Step started", extra={"pipeline": pipeline, "step": step.name})
        results._record(step.name, await step.action(results))


@dataclass(frozen=True, slots=True)
class Pipeline:
    steps: Sequence[Step]
    recovery: Sequence[Step] = ()
    on_error: RecoveryPolicy = RecoveryPolicy.RERAISE
    name: str = "pipeline"

    def __post_init__(self) -> None:
        _check_names(self.steps, "pipeline")
        _check_names(self.recovery, "recovery")

    async def run(self) -> object:
        """Run the steps, then the recovery list.

        Returns the result of the last main step that ran. With
        ``RecoveryPolicy.SUPPRESS`` a halting error is swallowed and the result
        of the last step that completed is returned instead. An error raised by
        a recovery step always propagates, chained to the halting error.

        Cancellation is not an error here: a cancelled run does not execute the
        recovery list. Whoever cancels owns the cleanup.
        """

        results = StepResults([s.name for s in self.steps])
        error: Exception | None = None
        try:
            await _run_steps(self.steps, results, self.name)
        except Exception as e:
            error = e
            logger.debug(
                "Pipeline halted",
                extra={"pipeline": self.name, "error": str(e)},
            )

        if self.recovery:
            recovery = StepResults([s.name for s in self.recovery], error=error, main=results)
            try:
                await _run_steps(self.recovery, recovery, f"{self.name}:recovery")
            except Exception as recovery_error:
                if error is not None:
                    raise recovery_error from error
                raise

        if error is not None and self.on_error is RecoveryPolicy.RERAISE:
            raise error
        return results.last


async def run_pipeline(
    steps: Sequence[Step],
    recovery: Sequence[Step] = (),
    *,
    on_error: RecoveryPolicy = RecoveryPolicy.RERAISE,
    name: str = "pipeline",
) -> object:
    return await Pipeline(steps=steps, recovery=recovery, on_error=on_error, name=name).run()
