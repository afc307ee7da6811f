"""The record one workflow run reads and progressively fills in.

A context is created fresh for every triggered run and is owned by exactly
one sequencer. Initial balances are read as close together as possible so
the derived swap size reflects a single moment.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from pydantic import BaseModel, Field

from emissions_orchestrator.orchestrator.chain.evm import EvmClient
from emissions_orchestrator.orchestrator.chain.node import NodeClient
from emissions_orchestrator.orchestrator.chain.types import AddressMapKind, dst20_token_address
from emissions_orchestrator.orchestrator.config import EmissionsSettings

from .calc import size_swap

logger = logging.getLogger(__name__)

DFI = "DFI"
DUSD = "DUSD"
DUSD_DFI_POOL = "DUSD-DFI"


class WorkflowParams(BaseModel):
    """The slice of settings a run depends on."""

    emissions_address: str
    contract_address_1: str
    contract_address_2: str
    contract_share_1: Decimal
    max_dusd_per_block: Decimal
    fee_reserve: Decimal
    burn_leftover: bool = True
    evm_gas_limit: int = 100_000

    @staticmethod
    def from_settings(settings: EmissionsSettings) -> WorkflowParams:
        return WorkflowParams(
            emissions_address=settings.emissions_address,
            contract_address_1=settings.contract_address_1,
            contract_address_2=settings.contract_address_2,
            contract_share_1=settings.contract_share_1,
            max_dusd_per_block=settings.max_dusd_per_block,
            fee_reserve=settings.fee_reserve,
            burn_leftover=settings.burn_leftover,
            evm_gas_limit=settings.evm_gas_limit,
        )


class FeeReserveState(BaseModel):
    # None means no refill was needed.
    balance_dfi: Decimal | None = None
    utxo_refill_tx: str | None = None
    evm_refill_tx: str | None = None


class SwapState(BaseModel):
    tx: str | None = None
    swap_height: int | None = None


class PostSwapState(BaseModel):
    balance_tokens: dict[str, Decimal] | None = None
    balance_token_dfi: Decimal | None = None
    balance_token_dusd: Decimal | None = None
    dusd_to_transfer: Decimal | None = None
    burn_amount: Decimal | None = None
    burn_tx: str | None = None


class TransferState(BaseModel):
    tx: str | None = None
    height: int | None = None


class DistributionState(BaseModel):
    evm_dusd_diff_wei: int | None = None
    amount_1: Decimal | None = None
    amount_2: Decimal | None = None
    amount_1_wei: int | None = None
    amount_2_wei: int | None = None
    tx_hashes: dict[str, str] = Field(default_factory=dict)


class WorkflowState(BaseModel):
    current_height: int
    fee_reserves: FeeReserveState = Field(default_factory=FeeReserveState)
    swap: SwapState = Field(default_factory=SwapState)
    post_swap: PostSwapState = Field(default_factory=PostSwapState)
    transfer: TransferState = Field(default_factory=TransferState)
    distribution: DistributionState = Field(default_factory=DistributionState)


class WorkflowContext(BaseModel):
    init_height: int
    diff_blocks: int
    params: WorkflowParams

    emissions_address_erc55: str
    dusd_token_id: int
    dusd_token_evm_address: str

    balance_init_dfi: Decimal
    balance_evm_init_dfi: int
    balance_evm_init_dusd: int
    balance_tokens_init: dict[str, Decimal]
    balance_tokens_init_dfi: Decimal
    balance_tokens_init_dusd: Decimal

    dfi_per_dusd: Decimal
    dfi_for_dusd_capped_per_block: Decimal
    dfi_to_swap_per_block: Decimal
    dfi_to_swap_for_diff_blocks: Decimal

    state: WorkflowState

    def snapshot(self) -> dict[str, object]:
        """Deep, JSON-compatible copy (Decimals as strings, big ints intact)."""

        return self.model_dump(mode="json")


def create_context(
    *,
    node: NodeClient,
    evm: EvmClient,
    params: WorkflowParams,
    height: int,
    diff_blocks: int,
) -> WorkflowContext:
    emissions_address = params.emissions_address
    erc55 = node.address_map(emissions_address, AddressMapKind.DVM_TO_ERC55).erc55
    dusd_token = node.get_token(DUSD)
    dusd_evm_address = dst20_token_address(dusd_token.id)

    balance_init_dfi = node.get_balance()
    balance_tokens_init = node.get_account(emissions_address)
    pool = node.get_pool_pair(DUSD_DFI_POOL)
    balance_evm_init_dfi = evm.get_balance(erc55)
    balance_evm_init_dusd = evm.token_balance_of(dusd_evm_address, erc55)

    balance_tokens_init_dfi = balance_tokens_init.get(DFI, Decimal(0))
    balance_tokens_init_dusd = balance_tokens_init.get(DUSD, Decimal(0))

    sizing = size_swap(
        balance_dfi=balance_tokens_init_dfi,
        dfi_per_dusd=pool.reserve_b_per_a,
        max_dusd_per_block=params.max_dusd_per_block,
        diff_blocks=diff_blocks,
    )

    ctx = WorkflowContext(
        init_height=height,
        diff_blocks=diff_blocks,
        params=params,
        emissions_address_erc55=erc55,
        dusd_token_id=dusd_token.id,
        dusd_token_evm_address=dusd_evm_address,
        balance_init_dfi=balance_init_dfi,
        balance_evm_init_dfi=balance_evm_init_dfi,
        balance_evm_init_dusd=balance_evm_init_dusd,
        balance_tokens_init=balance_tokens_init,
        balance_tokens_init_dfi=balance_tokens_init_dfi,
        balance_tokens_init_dusd=balance_tokens_init_dusd,
        dfi_per_dusd=pool.reserve_b_per_a,
        dfi_for_dusd_capped_per_block=sizing.dfi_for_dusd_capped_per_block,
        dfi_to_swap_per_block=sizing.dfi_to_swap_per_block,
        dfi_to_swap_for_diff_blocks=sizing.dfi_to_swap_for_diff_blocks,
        state=WorkflowState(current_height=height),
    )
    logger.debug("Workflow context created", extra={"context": ctx.snapshot()})
    return ctx
