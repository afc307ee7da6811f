"""Per-block callback: decide, run the pipeline, advance the cursor.

A run that ends cleanly advances the cursor, whether it completed or a step
cancelled it (a sanity check found nothing to do). Only a failed step leaves
the cursor where it was, so the next eligible height retries with freshly
read balances.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence

from emissions_orchestrator.orchestrator.scheduler.cursor import CursorStore
from emissions_orchestrator.orchestrator.scheduler.trigger import (
    ForceStartSignal,
    TriggerDecision,
    TriggerPolicyConfig,
    evaluate,
)

from .context import WorkflowContext
from .sequencer import SequenceOutcome, Step, StepSequencer

logger = logging.getLogger(__name__)

ContextFactory = Callable[[int, int], WorkflowContext]
PipelineFactory = Callable[[], Sequence[Step[WorkflowContext]]]


class EmissionRunner:
    def __init__(
        self,
        *,
        policy: TriggerPolicyConfig,
        cursor: CursorStore,
        force_start: ForceStartSignal,
        context_factory: ContextFactory,
        pipeline_factory: PipelineFactory,
    ) -> None:
        self._policy = policy
        self._cursor = cursor
        self._force_start = force_start
        self._context_factory = context_factory
        self._pipeline_factory = pipeline_factory
        self._lock = threading.Lock()
        self._last_run_height = cursor.load()
        logger.info("Runner initialised", extra={"last_run_height": self._last_run_height})

    @property
    def last_run_height(self) -> int:
        return self._last_run_height

    def decide(self, height: int, *, force_start: bool = False) -> TriggerDecision:
        return evaluate(
            config=self._policy,
            height=height,
            last_run_height=self._last_run_height,
            force_start=force_start,
        )

    def on_block(self, height: int) -> None:
        """Block loop callback. Failures propagate to the loop's guard."""

        # Consumed up front so a force request fires exactly once whatever happens next.
        force_start = self._force_start.consume()
        decision = self.decide(height, force_start=force_start)

        if not decision.should_run:
            if force_start:
                logger.info(
                    "Force start ignored outside the trigger window", extra={"height": height}
                )
            return

        if decision.diff_blocks < 0:
            logger.warning(
                "Height is below the last run height; chain may have reorganised",
                extra={"height": height, "last_run_height": self._last_run_height},
            )

        logger.info(
            "Trigger fired",
            extra={
                "height": height,
                "diff_blocks": decision.diff_blocks,
                "trigger_reason": decision.reason,
            },
        )
        self.run_sequence(height, decision.diff_blocks)

    def run_sequence(self, height: int, diff_blocks: int) -> SequenceOutcome | None:
        """Build a fresh context and run the pipeline once; None if a run is active."""

        if not self._lock.acquire(blocking=False):
            logger.warning("A run is already in progress; skipping", extra={"height": height})
            return None
        try:
            ctx = self._context_factory(height, diff_blocks)
            sequencer = StepSequencer(ctx)
            for step in self._pipeline_factory():
                sequencer.add_step(step)

            outcome = sequencer.run()
            if outcome is SequenceOutcome.CANCELLED:
                logger.info("Trigger skipped", extra={"height": height})
            self._cursor.store(height)
            self._last_run_height = height
            return outcome
        finally:
            self._lock.release()
