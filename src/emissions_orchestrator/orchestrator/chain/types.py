"""Value types and command arguments for the node command surface."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from enum import IntEnum

# Node amounts carry 8 decimal places; anything finer is rejected by the node.
AMOUNT_QUANTUM = Decimal("0.00000001")


def format_amount(amount: Decimal) -> str:
    """Render an amount the way the node accepts it (8 decimals, truncated)."""

    return str(amount.quantize(AMOUNT_QUANTUM, rounding=ROUND_DOWN))


class TransferDomainType(IntEnum):
    DVM = 2
    EVM = 3


class AddressMapKind(IntEnum):
    DVM_TO_ERC55 = 1


@dataclass(frozen=True, slots=True)
class TokenAmount:
    """An `amount@SYMBOL` pair."""

    amount: Decimal
    token: str

    @staticmethod
    def parse(value: str) -> TokenAmount:
        parts = value.strip().split("@")
        if len(parts) != 2:
            raise ValueError(f"Invalid token amount: {value!r}")
        raw_amount, token = parts
        if not 1 <= len(token) <= 8:
            raise ValueError(f"Invalid token symbol in {value!r}")
        try:
            amount = Decimal(raw_amount)
        except ArithmeticError as e:
            raise ValueError(f"Invalid amount in {value!r}") from e
        if not amount.is_finite() or amount < 0:
            raise ValueError(f"Invalid amount in {value!r}")
        return TokenAmount(amount=amount, token=token)

    def __str__(self) -> str:
        return f"{format_amount(self.amount)}@{self.token}"


@dataclass(frozen=True, slots=True)
class PoolSwapArgs:
    from_address: str
    token_from: str
    token_to: str
    amount_from: Decimal
    to_address: str | None = None

    def to_json(self) -> dict[str, object]:
        return {
            "from": self.from_address,
            "tokenFrom": self.token_from,
            "amountFrom": format_amount(self.amount_from),
            "to": self.to_address or self.from_address,
            "tokenTo": self.token_to,
        }


@dataclass(frozen=True, slots=True)
class AccountToUtxosArgs:
    from_address: str
    to_address: str
    amount: Decimal
    token: str = "DFI"

    def to_json(self) -> dict[str, object]:
        return {self.to_address: [str(TokenAmount(self.amount, self.token))]}


@dataclass(frozen=True, slots=True)
class TransferDomainArgs:
    amount: TokenAmount
    from_address: str
    to_address: str
    domain_from: TransferDomainType
    domain_to: TransferDomainType
    nonce: int | None = None

    def to_json(self) -> list[dict[str, object]]:
        item: dict[str, object] = {
            "src": {
                "address": self.from_address,
                "amount": str(self.amount),
                "domain": int(self.domain_from),
            },
            "dst": {
                "address": self.to_address,
                "amount": str(self.amount),
                "domain": int(self.domain_to),
            },
            "singlekeycheck": False,
        }
        if self.nonce is not None:
            item["nonce"] = self.nonce
        return [item]


@dataclass(frozen=True, slots=True)
class BurnTokensArgs:
    from_address: str
    amounts: TokenAmount

    def to_json(self) -> dict[str, object]:
        return {"amounts": str(self.amounts), "from": self.from_address}


def dst20_token_address(token_id: int) -> str:
    """EVM address of the DST20 contract mirroring a DVM token."""

    if token_id < 0:
        raise ValueError("token_id must be non-negative")
    return "0xff" + format(token_id, "x").rjust(38, "0")
