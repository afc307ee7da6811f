"""Test configuration and fixtures."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest

from emissions_orchestrator.orchestrator.chain.responses import BlockHeaderV1, WalletTransaction
from emissions_orchestrator.orchestrator.chain.types import dst20_token_address
from emissions_orchestrator.orchestrator.errors import NodeCommandError
from emissions_orchestrator.orchestrator.scheduler.cursor import CursorStore
from emissions_orchestrator.orchestrator.workflow.calc import to_wei
from emissions_orchestrator.orchestrator.workflow.context import (
    WorkflowContext,
    WorkflowParams,
    WorkflowState,
)
from emissions_orchestrator.orchestrator.workflow.sequencer import CancellationToken

CONTRACT_1 = "0x" + "11" * 20
CONTRACT_2 = "0x" + "22" * 20
EMISSIONS_ERC55 = "0x" + "33" * 20
EMISSIONS_ADDRESS = "tf1qemissionsaddress"

BOT_ENV_VARS = (
    "ENV",
    "BOT_EVM_JSON_RPC",
    "BOT_EMISSIONS_ADDRESS",
    "BOT_SC_YEAR_1_ADDR",
    "BOT_SC_YEAR_1_SHARE",
    "BOT_SC_YEAR_2_ADDR",
    "BOT_SC_YEAR_2_SHARE",
    "BOT_RUN_INTERVAL_MOD",
    "BOT_FORCE_START",
    "BOT_START_BLOCK",
    "BOT_END_BLOCK",
    "BOT_MAX_DUSD_PER_BLOCK",
    "BOT_FEE_RESERVE",
    "BOT_BURN_LEFTOVER",
    "BOT_POLL_SECONDS",
    "BOT_EVM_GAS_LIMIT",
    "BOT_STATE_PATH",
    "DEFI_CLI",
    "BOT_NODE_ARGS",
    "BOT_NODE_RPC_URL",
    "BOT_NODE_RPC_USER",
    "BOT_NODE_RPC_PASSWORD",
    "LOG_LEVEL",
)


class FakeChain:
    """Scripted chain reader for waiter and loop tests.

    Heights are consumed one per `get_block_count` call; an exception in the
    script is raised instead of returned. Running out of script fails the
    test rather than spinning forever.
    """

    def __init__(self, heights: Iterable[int | Exception]) -> None:
        self._heights = iter(heights)
        self.transactions: dict[str, list[WalletTransaction | Exception]] = {}
        self.blocks: dict[str, int] = {}
        self.height_calls = 0
        self.transaction_calls = 0

    def get_block_count(self) -> int:
        self.height_calls += 1
        try:
            value = next(self._heights)
        except StopIteration:
            raise AssertionError("height script exhausted") from None
        if isinstance(value, Exception):
            raise value
        return value

    def get_transaction(self, txid: str) -> WalletTransaction:
        self.transaction_calls += 1
        script = self.transactions.get(txid)
        if not script:
            raise NodeCommandError("Invalid or non-wallet transaction id", code=-5)
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, Exception):
            raise item
        return item

    def get_block(self, block_hash: str) -> BlockHeaderV1:
        return BlockHeaderV1(hash=block_hash, height=self.blocks[block_hash], confirmations=1)


@dataclass
class ScriptedStep:
    """Step double that records its invocation and optionally fails or cancels."""

    name: str
    calls: list[str]
    error: Exception | None = None
    cancel_reason: str | None = None
    mutate: Any = None

    def execute(self, ctx: Any, token: CancellationToken) -> None:
        self.calls.append(self.name)
        if self.mutate is not None:
            self.mutate(ctx)
        if self.error is not None:
            raise self.error
        if self.cancel_reason is not None:
            token.cancel(self.cancel_reason)


@dataclass
class DictContext:
    values: dict[str, Any] = field(default_factory=dict)

    def snapshot(self) -> dict[str, object]:
        return {key: value for key, value in self.values.items()}


def no_sleep(_seconds: float) -> None:
    return None


def make_params(**overrides: Any) -> WorkflowParams:
    values: dict[str, Any] = {
        "emissions_address": EMISSIONS_ADDRESS,
        "contract_address_1": CONTRACT_1,
        "contract_address_2": CONTRACT_2,
        "contract_share_1": Decimal("0.6"),
        "max_dusd_per_block": Decimal("1"),
        "fee_reserve": Decimal("10"),
    }
    values.update(overrides)
    return WorkflowParams(**values)


def make_context(height: int = 150, diff_blocks: int = 10, **overrides: Any) -> WorkflowContext:
    values: dict[str, Any] = {
        "init_height": height,
        "diff_blocks": diff_blocks,
        "params": make_params(),
        "emissions_address_erc55": EMISSIONS_ERC55,
        "dusd_token_id": 15,
        "dusd_token_evm_address": dst20_token_address(15),
        "balance_init_dfi": Decimal("50"),
        "balance_evm_init_dfi": to_wei(Decimal("50")),
        "balance_evm_init_dusd": 0,
        "balance_tokens_init": {"DFI": Decimal("1000"), "DUSD": Decimal("0")},
        "balance_tokens_init_dfi": Decimal("1000"),
        "balance_tokens_init_dusd": Decimal("0"),
        "dfi_per_dusd": Decimal("2"),
        "dfi_for_dusd_capped_per_block": Decimal("2"),
        "dfi_to_swap_per_block": Decimal("2"),
        "dfi_to_swap_for_diff_blocks": Decimal("20"),
        "state": WorkflowState(current_height=height),
    }
    values.update(overrides)
    return WorkflowContext(**values)


@pytest.fixture
def temp_state_dir(tmp_path: Path) -> Path:
    """Provide a temporary state directory."""
    state_dir = tmp_path / ".state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def cursor(temp_state_dir: Path) -> CursorStore:
    return CursorStore(temp_state_dir / "state.sqlite3")


@pytest.fixture
def workflow_context() -> WorkflowContext:
    return make_context()


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Run from an empty directory with no bot variables set."""
    for name in BOT_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def bot_env(clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Minimal valid bot configuration in the environment."""
    monkeypatch.setenv("BOT_EVM_JSON_RPC", "http://127.0.0.1:20551")
    monkeypatch.setenv("BOT_EMISSIONS_ADDRESS", EMISSIONS_ADDRESS)
    monkeypatch.setenv("BOT_SC_YEAR_1_ADDR", CONTRACT_1)
    monkeypatch.setenv("BOT_SC_YEAR_1_SHARE", "0.6")
    monkeypatch.setenv("BOT_SC_YEAR_2_ADDR", CONTRACT_2)
    monkeypatch.setenv("BOT_SC_YEAR_2_SHARE", "0.4")
    monkeypatch.setenv("BOT_RUN_INTERVAL_MOD", "2")
    monkeypatch.setenv("BOT_START_BLOCK", "100")
    monkeypatch.setenv("BOT_STATE_PATH", str(clean_env / ".state"))
    return clean_env
