"""Economic calculations used by the workflow steps.

Pure functions over Decimal. They are kept apart from the steps so the
formulas can be swapped without touching scheduling or sequencing.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal

WEI_PER_UNIT = 10**18
SATS_PER_UNIT = 10**8
WEI_PER_SAT = WEI_PER_UNIT // SATS_PER_UNIT

_ZERO = Decimal(0)


@dataclass(frozen=True, slots=True)
class SwapSizing:
    dfi_for_dusd_capped_per_block: Decimal
    dfi_to_swap_per_block: Decimal
    dfi_to_swap_for_diff_blocks: Decimal


def size_swap(
    *,
    balance_dfi: Decimal,
    dfi_per_dusd: Decimal,
    max_dusd_per_block: Decimal,
    diff_blocks: int,
) -> SwapSizing:
    """How much DFI to swap for the blocks elapsed since the last run.

    Per block we swap at most what buys `max_dusd_per_block` DUSD, and never
    more than an even share of the balance. The total never exceeds the
    balance.
    """

    capped = dfi_per_dusd * max_dusd_per_block
    if diff_blocks <= 0 or balance_dfi <= 0:
        return SwapSizing(capped, _ZERO, _ZERO)
    per_block = min(balance_dfi / diff_blocks, capped)
    total = min(per_block * diff_blocks, balance_dfi)
    return SwapSizing(capped, per_block, total)


def burn_amount(
    *, balance_init_dfi: Decimal, swapped_dfi: Decimal, fee_reserve: Decimal
) -> Decimal:
    """DFI left to burn after the swap.

    A fee reserve is retained for each domain, plus one more DFI to absorb
    rounding.
    """

    return max(_ZERO, balance_init_dfi - swapped_dfi - fee_reserve * 2 - 1)


def split_shares(total: Decimal, share_1: Decimal) -> tuple[Decimal, Decimal]:
    """Split `total` by `share_1`; the remainder (incl. rounding dust) goes second."""

    first = total * share_1
    return first, total - first


def to_wei(amount: Decimal) -> int:
    return int((amount * WEI_PER_UNIT).to_integral_value(rounding=ROUND_DOWN))


def to_sats(amount: Decimal) -> int:
    return int((amount * SATS_PER_UNIT).to_integral_value(rounding=ROUND_DOWN))


def wei_to_sats(wei: int) -> int:
    return wei // WEI_PER_SAT


def transfer_mismatch(*, evm_diff_wei: int, transferred: Decimal) -> bool:
    """True when the EVM-side increase exceeds what we transferred by more than a sat.

    Compared in sats: float rounding on the node side can move the last sat
    either way.
    """

    return wei_to_sats(evm_diff_wei) - to_sats(transferred) > 1
