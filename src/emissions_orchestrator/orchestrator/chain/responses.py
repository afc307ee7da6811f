"""Typed node responses.

Each command's JSON is validated into an explicit model at the client
boundary so nothing downstream handles raw dictionaries.
"""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class _NodeModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class WalletTransaction(_NodeModel):
    """`gettransaction` result. `blockhash` is absent until the tx is mined."""

    txid: str
    confirmations: int = 0
    blockhash: str | None = None
    blockindex: int | None = None
    blocktime: int | None = None
    amount: Decimal | None = None
    fee: Decimal | None = None

    @property
    def included(self) -> bool:
        return bool(self.blockhash) and self.confirmations > 0


class BlockHeaderV1(_NodeModel):
    """`getblock <hash> 1`: block with transaction ids only."""

    hash: str
    height: int
    confirmations: int
    time: int | None = None
    previousblockhash: str | None = None
    nextblockhash: str | None = None
    tx: list[str] = Field(default_factory=list)


class PoolPair(_NodeModel):
    """One entry of `getpoolpair`."""

    id: str
    symbol: str
    status: bool = True
    id_token_a: str = Field(alias="idTokenA")
    id_token_b: str = Field(alias="idTokenB")
    reserve_a: Decimal = Field(alias="reserveA")
    reserve_b: Decimal = Field(alias="reserveB")
    reserve_a_per_b: Decimal = Field(alias="reserveA/reserveB")
    reserve_b_per_a: Decimal = Field(alias="reserveB/reserveA")
    trade_enabled: bool = Field(default=True, alias="tradeEnabled")


class TokenInfo(_NodeModel):
    """One entry of `gettoken`."""

    id: int
    symbol: str
    name: str = ""
    is_dat: bool = Field(default=False, alias="isDAT")
    decimal: int = 8


class AddressMapResult(_NodeModel):
    """`addressmap` result."""

    input: str
    type: int
    format: dict[str, str]

    @property
    def erc55(self) -> str:
        try:
            return self.format["erc55"]
        except KeyError as e:
            raise ValueError(f"No erc55 mapping for {self.input}") from e
