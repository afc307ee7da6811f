from __future__ import annotations

from collections import deque
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class TriggerPolicyConfig:
    """Trigger window and interval. `end_height=None` means no upper bound."""

    interval_mod: int
    start_height: int
    end_height: int | None = None

    def __post_init__(self) -> None:
        if self.interval_mod <= 0:
            raise ValueError("interval_mod must be > 0")
        if self.start_height < 0:
            raise ValueError("start_height must be >= 0")
        if self.end_height is not None and self.end_height <= self.start_height:
            raise ValueError("end_height must be greater than start_height")

    def in_window(self, height: int) -> bool:
        if height <= self.start_height:
            return False
        return self.end_height is None or height < self.end_height


@dataclass(frozen=True, slots=True)
class TriggerDecision:
    should_run: bool
    diff_blocks: int
    reason: str


class ForceStartSignal:
    """One-shot request to run on the next in-window evaluation.

    Safe to call `request()` from a signal handler, including one that lands
    while the main thread is inside `consume()`: both sides only use atomic
    deque operations and never block. Requests raised before a `consume()`
    collapse into a single forced run.
    """

    def __init__(self, requested: bool = False) -> None:
        self._requests: deque[None] = deque()
        if requested:
            self._requests.append(None)

    def request(self) -> None:
        self._requests.append(None)

    def consume(self) -> bool:
        requested = False
        while True:
            try:
                self._requests.popleft()
            except IndexError:
                return requested
            requested = True

    @property
    def pending(self) -> bool:
        return bool(self._requests)


def diff_blocks(*, height: int, last_run_height: int, start_height: int) -> int:
    """Blocks since the later of the last successful run and the window start."""

    return height - max(last_run_height, start_height)


def evaluate(
    *,
    config: TriggerPolicyConfig,
    height: int,
    last_run_height: int,
    force_start: bool = False,
) -> TriggerDecision:
    """Policy: (height, cursor, force) -> run now?

    Pure. The caller owns consuming the force request.
    """

    diff = diff_blocks(
        height=height, last_run_height=last_run_height, start_height=config.start_height
    )
    if not config.in_window(height):
        return TriggerDecision(should_run=False, diff_blocks=diff, reason="outside_window")
    if force_start:
        return TriggerDecision(should_run=True, diff_blocks=diff, reason="forced")
    # Catch up when blocks were skipped, and realign on the modulus otherwise.
    if diff > config.interval_mod:
        return TriggerDecision(should_run=True, diff_blocks=diff, reason="interval_elapsed")
    if height % config.interval_mod == 0:
        return TriggerDecision(should_run=True, diff_blocks=diff, reason="interval_aligned")
    return TriggerDecision(should_run=False, diff_blocks=diff, reason="waiting")
