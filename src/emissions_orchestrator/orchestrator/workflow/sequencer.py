"""Saga-style step sequencer.

Runs an ordered list of side-effecting steps against one context. There is
no compensation: a failure leaves the chain partially advanced and the run
abandoned. What the sequencer does provide is diagnosability. Before every
step the context is snapshotted; when a step fails, both the last good
snapshot and the current (possibly half-mutated) context are logged and
attached to the raised `StepFailedError`.

Steps are not required to be idempotent by the sequencer. Re-running the
whole sequence relies on each step's own preconditions (for example "refill
only when below the reserve") to avoid duplicate effects.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Generic, Protocol, TypeVar

from emissions_orchestrator.orchestrator.errors import StepFailedError

logger = logging.getLogger(__name__)


class SupportsSnapshot(Protocol):
    def snapshot(self) -> dict[str, object]: ...


C = TypeVar("C", bound=SupportsSnapshot)
C_contra = TypeVar("C_contra", bound=SupportsSnapshot, contravariant=True)


class SequenceOutcome(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class StepResult:
    ok: bool
    message: str = ""


class CancellationToken:
    """Lets a step end the sequence cleanly (e.g. a failed sanity check)."""

    def __init__(self) -> None:
        self._reason: str | None = None

    def cancel(self, reason: str) -> None:
        if self._reason is None:
            self._reason = reason

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> str | None:
        return self._reason


class Step(Protocol[C_contra]):
    """A named unit of work. Returning `StepResult(ok=False)` counts as failure."""

    @property
    def name(self) -> str: ...

    def execute(self, ctx: C_contra, token: CancellationToken) -> StepResult | None: ...


class StepSequencer(Generic[C]):
    def __init__(self, context: C) -> None:
        self._context = context
        self._steps: list[Step[C]] = []
        self._completed: list[str] = []
        self._started = False

    @property
    def context(self) -> C:
        return self._context

    @property
    def step_names(self) -> list[str]:
        return [s.name for s in self._steps]

    @property
    def completed_steps(self) -> list[str]:
        return list(self._completed)

    def add_step(self, step: Step[C]) -> None:
        if self._started:
            raise RuntimeError("Cannot add steps once the sequence has started")
        self._steps.append(step)

    def run(self) -> SequenceOutcome:
        """Run every step in order; stop at the first failure or cancellation."""

        if self._started:
            raise RuntimeError("A sequence runs at most once")
        self._started = True

        token = CancellationToken()
        logger.info(
            "Sequence start",
            extra={"steps": self.step_names, "context": self._context.snapshot()},
        )

        for step in self._steps:
            previous = self._context.snapshot()
            try:
                result = step.execute(self._context, token)
            except Exception as e:
                raise self._failed(step.name, previous) from e
            if result is not None and not result.ok:
                raise self._failed(step.name, previous, message=result.message)

            self._completed.append(step.name)
            if token.cancelled:
                logger.info(
                    "Sequence cancelled",
                    extra={
                        "step": step.name,
                        "reason": token.reason,
                        "context": self._context.snapshot(),
                    },
                )
                return SequenceOutcome.CANCELLED

        logger.info("Sequence completed", extra={"context": self._context.snapshot()})
        return SequenceOutcome.COMPLETED

    def _failed(
        self, step_name: str, previous: dict[str, object], *, message: str = ""
    ) -> StepFailedError:
        current = self._context.snapshot()
        logger.error(
            "Sequence failure",
            extra={
                "step": step_name,
                "reason": message,
                "previous_context": previous,
                "current_context": current,
            },
        )
        return StepFailedError(step_name, previous_context=previous, current_context=current)
