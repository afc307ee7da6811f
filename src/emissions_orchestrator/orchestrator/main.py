"""CLI entrypoint for the emissions orchestrator."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from types import FrameType

from pydantic import ValidationError

from emissions_orchestrator import __version__
from emissions_orchestrator.orchestrator.chain.evm import EvmClient
from emissions_orchestrator.orchestrator.chain.node import (
    CliTransport,
    NodeClient,
    NodeTransport,
    RpcTransport,
)
from emissions_orchestrator.orchestrator.chain.waiter import ConfirmationWaiter
from emissions_orchestrator.orchestrator.config import EmissionsSettings, resolve_env_file
from emissions_orchestrator.orchestrator.errors import ConfigurationError, OrchestratorError
from emissions_orchestrator.orchestrator.logging import configure_logging
from emissions_orchestrator.orchestrator.scheduler.block_loop import BlockEventLoop
from emissions_orchestrator.orchestrator.scheduler.cursor import CursorStore
from emissions_orchestrator.orchestrator.scheduler.trigger import (
    ForceStartSignal,
    TriggerPolicyConfig,
)
from emissions_orchestrator.orchestrator.workflow.context import WorkflowParams, create_context
from emissions_orchestrator.orchestrator.workflow.runner import EmissionRunner
from emissions_orchestrator.orchestrator.workflow.steps import StepDeps, build_pipeline

logger = logging.getLogger(__name__)


def _non_negative_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {value!r}") from None
    if parsed < 0:
        raise argparse.ArgumentTypeError(f"must be non-negative, got {parsed}")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="emissions-orchestrator",
        description="Block-triggered DFI → DUSD emissions bot",
    )
    parser.add_argument(
        "--version", action="version", version=f"emissions-orchestrator {__version__}"
    )
    parser.add_argument(
        "--plain-logs",
        action="store_true",
        help="Human readable log lines instead of JSON",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser(
        "run",
        help="Run the block event loop (SIGUSR1 requests a one-off forced run)",
    )

    run_once = subparsers.add_parser(
        "run-once",
        help="Evaluate the current height once and run the pipeline if triggered",
    )
    run_once.add_argument(
        "--force",
        action="store_true",
        help="Run even if the interval has not elapsed (still bounded by the window)",
    )

    subparsers.add_parser("status", help="Show height, cursor and the trigger decision")

    reset_cursor = subparsers.add_parser(
        "reset-cursor",
        help="Overwrite the persisted last-run height (operator recovery)",
    )
    reset_cursor.add_argument(
        "--height", type=_non_negative_int, default=0, help="New last-run height"
    )

    wait_tx = subparsers.add_parser(
        "wait-tx",
        help="Block until a node transaction is included; print the block height",
    )
    wait_tx.add_argument("txid", help="Transaction id")

    return parser


def _build_node(settings: EmissionsSettings) -> NodeClient:
    transport: NodeTransport
    if settings.node_rpc_password and not settings.node_rpc_user:
        raise ConfigurationError("BOT_NODE_RPC_PASSWORD is set without BOT_NODE_RPC_USER")
    if settings.node_rpc_url:
        transport = RpcTransport(
            settings.node_rpc_url,
            user=settings.node_rpc_user,
            password=settings.node_rpc_password,
        )
    else:
        transport = CliTransport(settings.cli_command())
    return NodeClient(transport)


def _build_runner(
    *,
    settings: EmissionsSettings,
    node: NodeClient,
    waiter: ConfirmationWaiter,
    cursor: CursorStore,
    force_start: ForceStartSignal,
) -> EmissionRunner:
    evm = EvmClient(rpc_url=settings.evm_json_rpc)
    params = WorkflowParams.from_settings(settings)
    deps = StepDeps(node=node, evm=evm, waiter=waiter)

    return EmissionRunner(
        policy=TriggerPolicyConfig(
            interval_mod=settings.run_interval_mod,
            start_height=settings.start_block,
            end_height=settings.end_height,
        ),
        cursor=cursor,
        force_start=force_start,
        context_factory=lambda height, diff: create_context(
            node=node, evm=evm, params=params, height=height, diff_blocks=diff
        ),
        pipeline_factory=lambda: build_pipeline(deps),
    )


def _install_signal_handlers(loop: BlockEventLoop, force_start: ForceStartSignal) -> None:
    def _request_force(_signum: int, _frame: FrameType | None) -> None:
        logger.info("Force start requested by signal")
        force_start.request()

    def _terminate(signum: int, _frame: FrameType | None) -> None:
        logger.info("Termination requested", extra={"signal": signum})
        loop.stop()
        raise SystemExit(0)

    if hasattr(signal, "SIGUSR1"):
        signal.signal(signal.SIGUSR1, _request_force)
    signal.signal(signal.SIGTERM, _terminate)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = EmissionsSettings(_env_file=resolve_env_file())
    except ValidationError as e:
        # Logging isn't configured yet.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level, json_output=not args.plain_logs)

    try:
        node = _build_node(settings)
        waiter = ConfirmationWaiter(node, poll_seconds=settings.poll_seconds)
        cursor = CursorStore(settings.cursor_file)

        if args.command == "reset-cursor":
            cursor.reset(args.height)
            print(f"Cursor reset to {args.height}")
            return 0

        if args.command == "wait-tx":
            height = waiter.wait_for_inclusion(args.txid)
            print(height)
            return 0

        force_start = ForceStartSignal(settings.force_start)
        runner = _build_runner(
            settings=settings, node=node, waiter=waiter, cursor=cursor, force_start=force_start
        )

        if args.command == "status":
            height = waiter.current_height()
            decision = runner.decide(height, force_start=force_start.pending)
            print(
                json.dumps(
                    {
                        "height": height,
                        "block_hash": node.get_block_hash(height),
                        "last_run_height": runner.last_run_height,
                        "should_run": decision.should_run,
                        "diff_blocks": decision.diff_blocks,
                        "reason": decision.reason,
                    },
                    indent=2,
                )
            )
            return 0

        if args.command == "run-once":
            height = waiter.current_height()
            decision = runner.decide(height, force_start=force_start.consume() or args.force)
            if not decision.should_run:
                print(f"Not triggered at {height} ({decision.reason})")
                return 0
            outcome = runner.run_sequence(height, decision.diff_blocks)
            print(f"Sequence at {height}: {outcome.value if outcome else 'skipped'}")
            return 0

        if args.command == "run":
            loop = BlockEventLoop(waiter)
            loop.register(runner.on_block)
            _install_signal_handlers(loop, force_start)
            logger.info(
                "Starting block event loop",
                extra={
                    "start_block": settings.start_block,
                    "end_block": settings.end_block,
                    "run_interval_mod": settings.run_interval_mod,
                    "last_run_height": runner.last_run_height,
                },
            )
            loop.run()
            return 0

        parser.error(f"Unknown command: {args.command}")
        return 2

    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 2
    except OrchestratorError:
        logger.exception("Command failed", extra={"command": args.command})
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
