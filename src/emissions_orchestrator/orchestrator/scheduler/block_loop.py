"""Drive periodic work from chain height advancement.

The loop is an explicit state machine:

    IDLE -> RUNNING_CALLBACKS -> WAITING_FOR_HEIGHT -> RUNNING_CALLBACKS -> ...
                                                    -> STOPPED

Callbacks run sequentially in registration order, once per observed height.
A slow callback delays observing the next height but never skips running at
it: the loop always waits for `previous + 1`, and the waiter returns the
latest height it sees, which may be further ahead.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum

from emissions_orchestrator.orchestrator.chain.waiter import ConfirmationWaiter
from emissions_orchestrator.orchestrator.errors import ChainError

logger = logging.getLogger(__name__)

BlockCallback = Callable[[int], None]


class LoopState(str, Enum):
    IDLE = "idle"
    RUNNING_CALLBACKS = "running_callbacks"
    WAITING_FOR_HEIGHT = "waiting_for_height"
    STOPPED = "stopped"


def _callback_name(callback: BlockCallback) -> str:
    return getattr(callback, "__qualname__", None) or repr(callback)


class BlockEventLoop:
    def __init__(
        self,
        waiter: ConfirmationWaiter,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._waiter = waiter
        self._sleep = sleep
        self._callbacks: list[BlockCallback] = []
        self._state = LoopState.IDLE
        self._stop_requested = False

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def callbacks(self) -> tuple[BlockCallback, ...]:
        return tuple(self._callbacks)

    def register(self, callback: BlockCallback) -> None:
        """Add a per-block callback. Registering the same callable twice is a no-op."""

        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister(self, callback: BlockCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def stop(self) -> None:
        """Ask the loop to exit before it starts waiting for the next height."""

        self._stop_requested = True

    def run(self) -> None:
        self._stop_requested = False
        height = self._observe(self._waiter.current_height)

        while height is not None and self._callbacks and not self._stop_requested:
            self._state = LoopState.RUNNING_CALLBACKS
            logger.debug("Running block callbacks", extra={"height": height})
            self._run_callbacks(height)

            if not self._callbacks or self._stop_requested:
                break

            self._state = LoopState.WAITING_FOR_HEIGHT
            previous = height
            height = self._observe(lambda: self._waiter.wait_for_height(previous + 1))

        self._state = LoopState.STOPPED
        logger.info("Block event loop stopped")

    def _run_callbacks(self, height: int) -> None:
        # Snapshot so callbacks may (un)register others without affecting this height.
        for callback in list(self._callbacks):
            try:
                callback(height)
            except Exception:
                logger.exception(
                    "Block callback failed",
                    extra={"height": height, "callback": _callback_name(callback)},
                )

    def _observe(self, read: Callable[[], int]) -> int | None:
        while not self._stop_requested:
            try:
                return read()
            except ChainError as e:
                logger.warning(
                    "Chain height query failed; retrying",
                    extra={"error": str(e), "retry_seconds": self._waiter.poll_seconds},
                )
                self._sleep(self._waiter.poll_seconds)
        return None
