"""Exception hierarchy for the emissions orchestrator.

Chain errors are transient from the scheduler's point of view: the block loop
and the confirmation waiter retry them by polling. Step failures abort the
current sequence only. Configuration errors stop the process at startup.
"""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""


class ConfigurationError(OrchestratorError):
    """A setting is missing or inconsistent."""


class ChainError(OrchestratorError):
    """A query or command against the chain failed."""


class NodeUnavailableError(ChainError):
    """The node could not be reached at all."""


class NodeCommandError(ChainError):
    """The node was reachable but rejected the command."""

    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class EvmError(ChainError):
    """An EVM JSON-RPC call failed or a transaction reverted."""


class StepFailedError(OrchestratorError):
    """A workflow step raised; the sequence was abandoned at that step.

    Carries the last known good context snapshot (taken before the step ran)
    and the context as it looked when the step failed.
    """

    def __init__(
        self,
        step_name: str,
        *,
        previous_context: dict[str, object],
        current_context: dict[str, object],
    ) -> None:
        super().__init__(f"Step failed: {step_name}")
        self.step_name = step_name
        self.previous_context = previous_context
        self.current_context = current_context
