"""Configuration for the emissions orchestrator.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

The `ENV` variable redirects the env file: if it names an existing file that
file is used, otherwise `.env.<ENV>` is tried (e.g. `ENV=mainnet` loads
`.env.mainnet`).

Settings are loaded once at startup and are immutable afterwards. The
force-start flag only seeds the runtime `ForceStartSignal`; it is never
mutated here.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from decimal import Decimal
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CLI_ENV = Path("/usr/bin/env")
DEFAULT_CLI_NAME = "defi-cli"


def resolve_env_file(environ: Mapping[str, str] | None = None) -> Path:
    """Return the env file selected by the `ENV` variable (default `.env`)."""

    env = os.environ if environ is None else environ
    override = env.get("ENV", "").strip()
    if not override:
        return Path(".env")
    candidate = Path(override)
    if candidate.exists():
        return candidate
    return Path(f".env.{override}")


class EmissionsSettings(BaseSettings):
    """Settings for the block-triggered emissions bot.

    Required environment variables:
    - BOT_EVM_JSON_RPC
    - BOT_EMISSIONS_ADDRESS
    - BOT_SC_YEAR_1_ADDR, BOT_SC_YEAR_1_SHARE
    - BOT_SC_YEAR_2_ADDR, BOT_SC_YEAR_2_SHARE
    - BOT_RUN_INTERVAL_MOD
    - BOT_START_BLOCK

    Notes:
        Tests can point at a specific env file with
        `EmissionsSettings(_env_file=path_to_env)`.
    """

    evm_json_rpc: str = Field(
        validation_alias="BOT_EVM_JSON_RPC",
        min_length=1,
        description="EVM JSON-RPC endpoint URL",
    )
    emissions_address: str = Field(
        validation_alias="BOT_EMISSIONS_ADDRESS",
        description="DVM address holding the DFI to be emitted",
    )
    contract_address_1: str = Field(
        validation_alias="BOT_SC_YEAR_1_ADDR",
        description="First reward contract (EVM address)",
    )
    contract_share_1: Decimal = Field(
        validation_alias="BOT_SC_YEAR_1_SHARE",
        ge=0,
        le=1,
        description="Fraction of the DUSD sent to the first contract",
    )
    contract_address_2: str = Field(
        validation_alias="BOT_SC_YEAR_2_ADDR",
        description="Second reward contract (EVM address)",
    )
    contract_share_2: Decimal = Field(
        validation_alias="BOT_SC_YEAR_2_SHARE",
        ge=0,
        le=1,
        description=(
            "Nominal share of the second contract. The distribution sends the remainder "
            "after contract 1 here so rounding dust never gets stranded."
        ),
    )

    run_interval_mod: int = Field(
        validation_alias="BOT_RUN_INTERVAL_MOD",
        gt=0,
        description="Run when height is a multiple of this, or when more blocks than this elapsed",
    )
    force_start: bool = Field(
        default=False,
        validation_alias="BOT_FORCE_START",
        description="Run once on the first in-window block regardless of the interval",
    )
    start_block: int = Field(
        validation_alias="BOT_START_BLOCK",
        ge=0,
        description="Exclusive lower bound of the trigger window",
    )
    end_block: int = Field(
        default=-1,
        validation_alias="BOT_END_BLOCK",
        ge=-1,
        description="Exclusive upper bound of the trigger window (-1 = unbounded)",
    )

    max_dusd_per_block: Decimal = Field(
        default=Decimal(1),
        validation_alias="BOT_MAX_DUSD_PER_BLOCK",
        ge=0,
        description="Cap on DUSD bought per elapsed block",
    )
    fee_reserve: Decimal = Field(
        default=Decimal(10),
        validation_alias="BOT_FEE_RESERVE",
        ge=0,
        description="DFI kept as UTXO and as EVM balance to pay fees",
    )
    burn_leftover: bool = Field(
        default=True,
        validation_alias="BOT_BURN_LEFTOVER",
        description="Burn DFI left over after the swap (minus reserves)",
    )

    poll_seconds: float = Field(
        default=30.0,
        validation_alias="BOT_POLL_SECONDS",
        gt=0,
        description="Height polling interval; roughly one block time",
    )
    evm_gas_limit: int = Field(
        default=100_000,
        validation_alias="BOT_EVM_GAS_LIMIT",
        gt=0,
        description="Fixed gas limit for distribution transactions sent in parallel",
    )

    state_path: Path = Field(
        default=Path(".state"),
        validation_alias="BOT_STATE_PATH",
        description="Directory holding the persisted cursor",
    )

    defi_cli: Path | None = Field(
        default=None,
        validation_alias="DEFI_CLI",
        description="Path to the node CLI binary (default: `/usr/bin/env defi-cli`)",
    )
    node_args: str = Field(
        default="",
        validation_alias="BOT_NODE_ARGS",
        description="Extra CLI arguments, e.g. '-testnet' or '-rpcport=18554'",
    )
    node_rpc_url: str | None = Field(
        default=None,
        validation_alias="BOT_NODE_RPC_URL",
        description="Talk to the node over JSON-RPC instead of the CLI",
    )
    node_rpc_user: str | None = Field(default=None, validation_alias="BOT_NODE_RPC_USER")
    node_rpc_password: str | None = Field(default=None, validation_alias="BOT_NODE_RPC_PASSWORD")

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @model_validator(mode="after")
    def _check_window(self) -> EmissionsSettings:
        if self.end_block != -1 and self.end_block <= self.start_block:
            raise ValueError("BOT_END_BLOCK must be greater than BOT_START_BLOCK (or -1)")
        return self

    @property
    def end_height(self) -> int | None:
        """Upper window bound, or None when unbounded."""

        return None if self.end_block == -1 else self.end_block

    @property
    def cursor_file(self) -> Path:
        """Path of the embedded key-value store holding the cursor."""

        return self.state_path / "state.sqlite3"

    def cli_command(self) -> list[str]:
        """Full argv prefix used to invoke the node CLI."""

        extra = [a for a in re.split(r"[\s,]+", self.node_args) if a]
        if self.defi_cli is not None and self.defi_cli != DEFAULT_CLI_ENV:
            return [str(self.defi_cli), *extra]
        if extra and extra[0] == DEFAULT_CLI_NAME:
            extra = extra[1:]
        return [str(DEFAULT_CLI_ENV), DEFAULT_CLI_NAME, *extra]
