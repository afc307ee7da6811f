"""The emission pipeline steps.

Order: ensure fee reserves (+ sanity checks) -> swap DFI to DUSD -> post-swap
calculation (+ burn) -> transfer DUSD to EVM -> distribute to contracts.

Each step reads what earlier steps left in `ctx.state` and records its own
outcome there. Steps that find nothing to do cancel the sequence instead of
failing it.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from emissions_orchestrator.orchestrator.chain.evm import DST20_ABI, REWARDS_ABI, EvmClient
from emissions_orchestrator.orchestrator.chain.node import NodeClient
from emissions_orchestrator.orchestrator.chain.types import (
    AccountToUtxosArgs,
    BurnTokensArgs,
    PoolSwapArgs,
    TokenAmount,
    TransferDomainArgs,
    TransferDomainType,
)
from emissions_orchestrator.orchestrator.chain.waiter import ConfirmationWaiter
from emissions_orchestrator.orchestrator.errors import EvmError

from .calc import burn_amount, split_shares, to_wei, transfer_mismatch
from .context import DFI, DUSD, WorkflowContext
from .sequencer import CancellationToken, Step

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StepDeps:
    node: NodeClient
    evm: EvmClient
    waiter: ConfirmationWaiter


@dataclass(frozen=True, slots=True)
class EnsureFeeReserves:
    """Keep enough DFI for fees on both domains, then sanity-check the run.

    Idempotency: refills only happen when the observed balance is below the
    reserve, so re-running after a partial failure does not refill twice.
    """

    deps: StepDeps
    name: str = "ensure_fee_reserves"

    def execute(self, ctx: WorkflowContext, token: CancellationToken) -> None:
        node, evm, waiter = self.deps.node, self.deps.evm, self.deps.waiter
        params, state = ctx.params, ctx.state
        ss = state.fee_reserves
        address = params.emissions_address
        refilled = Decimal(0)

        if ctx.balance_init_dfi < params.fee_reserve:
            logger.info("Refilling UTXO fee reserve", extra={"amount": params.fee_reserve})
            tx = node.account_to_utxos(
                AccountToUtxosArgs(
                    from_address=address, to_address=address, amount=params.fee_reserve
                )
            )
            ss.utxo_refill_tx = tx
            waiter.wait_for_inclusion(tx)
            state.current_height = waiter.current_height()
            ss.balance_dfi = node.get_balance()
            refilled += params.fee_reserve

        if ctx.balance_evm_init_dfi < to_wei(params.fee_reserve):
            nonce = evm.get_transaction_count(ctx.emissions_address_erc55)
            logger.info(
                "Refilling EVM fee reserve",
                extra={"amount": params.fee_reserve, "nonce": nonce},
            )
            tx = node.transfer_domain(
                TransferDomainArgs(
                    amount=TokenAmount(params.fee_reserve, DFI),
                    from_address=address,
                    to_address=ctx.emissions_address_erc55,
                    domain_from=TransferDomainType.DVM,
                    domain_to=TransferDomainType.EVM,
                    nonce=nonce,
                )
            )
            ss.evm_refill_tx = tx
            waiter.wait_for_inclusion(tx)
            state.current_height = waiter.current_height()
            ss.balance_dfi = node.get_balance()
            refilled += params.fee_reserve

        balance_dfi = ctx.balance_init_dfi if ss.balance_dfi is None else ss.balance_dfi
        if balance_dfi < params.fee_reserve:
            token.cancel("DFI fee balance below reserve")
            return

        # Refills come out of the token balance the swap was sized against.
        available = ctx.balance_tokens_init_dfi - refilled
        if ctx.dfi_to_swap_for_diff_blocks > available:
            logger.info(
                "Clamping swap to remaining DFI",
                extra={"requested": ctx.dfi_to_swap_for_diff_blocks, "available": available},
            )
            ctx.dfi_to_swap_for_diff_blocks = max(available, Decimal(0))

        if ctx.dfi_to_swap_for_diff_blocks <= 0:
            token.cancel("no DFI to swap")


@dataclass(frozen=True, slots=True)
class SwapDfiToDusd:
    deps: StepDeps
    name: str = "swap_dfi_to_dusd"

    def execute(self, ctx: WorkflowContext, token: CancellationToken) -> None:
        state = ctx.state
        amount = ctx.dfi_to_swap_for_diff_blocks
        logger.info(
            "Swapping DFI to DUSD",
            extra={"amount": amount, "height": state.current_height},
        )
        tx = self.deps.node.pool_swap(
            PoolSwapArgs(
                from_address=ctx.params.emissions_address,
                token_from=DFI,
                token_to=DUSD,
                amount_from=amount,
            )
        )
        state.swap.tx = tx
        state.swap.swap_height = self.deps.waiter.wait_for_inclusion(tx)
        state.current_height = self.deps.waiter.current_height()


@dataclass(frozen=True, slots=True)
class PostSwapCalculation:
    """Work out the DUSD gained by the swap, then burn leftover DFI if enabled."""

    deps: StepDeps
    name: str = "post_swap_calculation"

    def execute(self, ctx: WorkflowContext, token: CancellationToken) -> None:
        node, waiter = self.deps.node, self.deps.waiter
        params = ctx.params
        ss = ctx.state.post_swap

        balances = node.get_account(params.emissions_address)
        ss.balance_tokens = balances
        ss.balance_token_dfi = balances.get(DFI, Decimal(0))
        ss.balance_token_dusd = balances.get(DUSD, Decimal(0))
        ss.dusd_to_transfer = ss.balance_token_dusd - ctx.balance_tokens_init_dusd
        logger.info("DUSD increase on address", extra={"dusd": ss.dusd_to_transfer})

        if not params.burn_leftover:
            return

        amount = min(
            burn_amount(
                balance_init_dfi=ctx.balance_tokens_init_dfi,
                swapped_dfi=ctx.dfi_to_swap_for_diff_blocks,
                fee_reserve=params.fee_reserve,
            ),
            ss.balance_token_dfi,
        )
        ss.burn_amount = amount
        if amount <= 0:
            logger.info("Burn skipped: nothing above reserves", extra={"amount": amount})
            return

        logger.info("Burning leftover DFI", extra={"amount": amount})
        tx = node.burn_tokens(
            BurnTokensArgs(from_address=params.emissions_address, amounts=TokenAmount(amount, DFI))
        )
        ss.burn_tx = tx
        waiter.wait_for_inclusion(tx)
        ctx.state.current_height = waiter.current_height()


@dataclass(frozen=True, slots=True)
class TransferDomainToEvm:
    deps: StepDeps
    name: str = "transfer_domain_to_evm"

    def execute(self, ctx: WorkflowContext, token: CancellationToken) -> None:
        amount = ctx.state.post_swap.dusd_to_transfer
        if amount is None or amount <= 0:
            token.cancel("no DUSD to transfer")
            return

        nonce = self.deps.evm.get_transaction_count(ctx.emissions_address_erc55)
        logger.info("Transferring DUSD to EVM", extra={"amount": amount, "nonce": nonce})
        tx = self.deps.node.transfer_domain(
            TransferDomainArgs(
                amount=TokenAmount(amount, DUSD),
                from_address=ctx.params.emissions_address,
                to_address=ctx.emissions_address_erc55,
                domain_from=TransferDomainType.DVM,
                domain_to=TransferDomainType.EVM,
                nonce=nonce,
            )
        )
        ss = ctx.state.transfer
        ss.tx = tx
        ss.height = self.deps.waiter.wait_for_inclusion(tx)
        ctx.state.current_height = ss.height


@dataclass(frozen=True, slots=True)
class _ContractTx:
    label: str
    contract: str
    abi: list[dict[str, Any]]
    method: str
    args: list[Any]


@dataclass(frozen=True, slots=True)
class DistributeToContracts:
    """Approve and hand the transferred DUSD to both reward contracts.

    All four transactions are generated against one stable height with
    consecutive nonces, sent, and their receipts awaited together.
    """

    deps: StepDeps
    name: str = "distribute_to_contracts"
    receipt_timeout_seconds: float = 600.0

    def execute(self, ctx: WorkflowContext, token: CancellationToken) -> None:
        evm = self.deps.evm
        params = ctx.params
        ds = ctx.state.distribution
        amount = ctx.state.post_swap.dusd_to_transfer
        if amount is None or amount <= 0:
            token.cancel("no DUSD to transfer")
            return

        balance_evm_dusd = evm.token_balance_of(
            ctx.dusd_token_evm_address, ctx.emissions_address_erc55
        )
        ds.evm_dusd_diff_wei = balance_evm_dusd - ctx.balance_evm_init_dusd
        if transfer_mismatch(evm_diff_wei=ds.evm_dusd_diff_wei, transferred=amount):
            logger.warning(
                "DUSD mismatch between transfer and EVM balance; manual verification required",
                extra={"transferred": amount, "evm_diff_wei": ds.evm_dusd_diff_wei},
            )

        ds.amount_1, ds.amount_2 = split_shares(amount, params.contract_share_1)
        ds.amount_1_wei, ds.amount_2_wei = to_wei(ds.amount_1), to_wei(ds.amount_2)
        logger.info(
            "Distributing DUSD",
            extra={"amount_1_wei": ds.amount_1_wei, "amount_2_wei": ds.amount_2_wei},
        )

        contract_1 = EvmClient.checksum(params.contract_address_1)
        contract_2 = EvmClient.checksum(params.contract_address_2)
        token_address = ctx.dusd_token_evm_address
        plan = [
            _ContractTx(
                "approve DUSD to contract 1",
                token_address,
                DST20_ABI,
                "approve",
                [contract_1, ds.amount_1_wei],
            ),
            _ContractTx(
                "approve DUSD to contract 2",
                token_address,
                DST20_ABI,
                "approve",
                [contract_2, ds.amount_2_wei],
            ),
            _ContractTx(
                "add rewards to contract 1",
                contract_1,
                REWARDS_ABI,
                "addRewards",
                [ds.amount_1_wei],
            ),
            _ContractTx(
                "add rewards to contract 2",
                contract_2,
                REWARDS_ABI,
                "addRewards",
                [ds.amount_2_wei],
            ),
        ]

        built = self._build(ctx, plan)
        self._send_and_wait(ctx, built)

    def _build(
        self, ctx: WorkflowContext, plan: list[_ContractTx]
    ) -> list[tuple[str, dict[str, Any]]]:
        evm, waiter = self.deps.evm, self.deps.waiter
        sender = ctx.emissions_address_erc55
        while True:
            height = waiter.current_height()
            # The node reports the same pending nonce for every build, so offset it.
            base_nonce = evm.get_transaction_count(sender)
            built = [
                (
                    item.label,
                    evm.build_contract_transaction(
                        contract=item.contract,
                        abi=item.abi,
                        method=item.method,
                        args=item.args,
                        sender=sender,
                        nonce=base_nonce + i,
                        gas_limit=ctx.params.evm_gas_limit,
                    ),
                )
                for i, item in enumerate(plan)
            ]
            if waiter.current_height() == height:
                return built
            logger.info("Block height changed, regenerating contract transactions")

    def _send_and_wait(self, ctx: WorkflowContext, built: list[tuple[str, dict[str, Any]]]) -> None:
        evm = self.deps.evm
        ds = ctx.state.distribution
        sent: list[tuple[str, str]] = []
        for label, tx in built:
            tx_hash = evm.send_transaction(tx)
            ds.tx_hashes[label] = tx_hash
            logger.info("Contract transaction sent", extra={"label": label, "tx_hash": tx_hash})
            sent.append((label, tx_hash))

        timeout = self.receipt_timeout_seconds
        with ThreadPoolExecutor(max_workers=len(sent), thread_name_prefix="receipt") as pool:
            futures = [
                (
                    label,
                    tx_hash,
                    pool.submit(evm.wait_for_receipt, tx_hash, timeout_seconds=timeout),
                )
                for label, tx_hash in sent
            ]
        # All receipts have been awaited by now; report the first failure.
        for label, tx_hash, future in futures:
            receipt = future.result()
            if receipt.get("status") != 1:
                raise EvmError(f"{label} reverted ({tx_hash})")
            logger.info(
                "Contract transaction confirmed", extra={"label": label, "tx_hash": tx_hash}
            )


def build_pipeline(deps: StepDeps) -> list[Step[WorkflowContext]]:
    return [
        EnsureFeeReserves(deps),
        SwapDfiToDusd(deps),
        PostSwapCalculation(deps),
        TransferDomainToEvm(deps),
        DistributeToContracts(deps),
    ]
