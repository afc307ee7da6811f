"""EVM JSON-RPC collaborator built on web3.

Transactions are sent with `eth_sendTransaction` from an address whose key is
held by the node, so no private keys pass through this process.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import requests
from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception

from emissions_orchestrator.orchestrator.errors import EvmError

logger = logging.getLogger(__name__)

DST20_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "approve",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "transfer",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
]

REWARDS_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "addRewards",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "amount", "type": "uint256"}],
        "outputs": [],
    },
]


@contextmanager
def _evm_errors(what: str) -> Iterator[None]:
    try:
        yield
    except TimeExhausted as e:
        raise EvmError(f"Timed out waiting for {what}") from e
    except (Web3Exception, requests.RequestException, ValueError) as e:
        raise EvmError(f"EVM {what} failed: {e}") from e


class EvmClient:
    """Small wrapper around web3 for the calls the workflow needs."""

    def __init__(
        self,
        *,
        rpc_url: str,
        timeout_seconds: float = 30.0,
        web3: Web3 | None = None,
    ) -> None:
        if web3 is None and not rpc_url:
            raise ValueError("EVM JSON-RPC url is required")
        self._w3 = web3 or Web3(
            Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout_seconds})
        )

    @staticmethod
    def checksum(address: str) -> str:
        return Web3.to_checksum_address(address)

    def get_transaction_count(self, address: str) -> int:
        with _evm_errors("nonce lookup"):
            return int(self._w3.eth.get_transaction_count(self.checksum(address)))

    def get_balance(self, address: str) -> int:
        """Native balance in wei."""

        with _evm_errors("balance lookup"):
            return int(self._w3.eth.get_balance(self.checksum(address)))

    def token_balance_of(self, token: str, owner: str) -> int:
        """ERC-20 style balance in the token's smallest unit."""

        return int(self.call(token, DST20_ABI, "balanceOf", [self.checksum(owner)]))

    def call(self, contract: str, abi: list[dict[str, Any]], method: str, args: list[Any]) -> Any:
        with _evm_errors(f"call {method}"):
            cx = self._w3.eth.contract(address=self.checksum(contract), abi=abi)
            return getattr(cx.functions, method)(*args).call()

    def build_contract_transaction(
        self,
        *,
        contract: str,
        abi: list[dict[str, Any]],
        method: str,
        args: list[Any],
        sender: str,
        nonce: int,
        gas_limit: int | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"from": self.checksum(sender), "nonce": nonce}
        if gas_limit:
            params["gas"] = gas_limit
        with _evm_errors(f"build {method}"):
            cx = self._w3.eth.contract(address=self.checksum(contract), abi=abi)
            return dict(getattr(cx.functions, method)(*args).build_transaction(params))

    def send_transaction(self, tx: dict[str, Any]) -> str:
        with _evm_errors("send transaction"):
            tx_hash = self._w3.eth.send_transaction(tx)  # type: ignore[arg-type]
        return Web3.to_hex(tx_hash)

    def wait_for_receipt(
        self, tx_hash: str, *, timeout_seconds: float = 600.0, poll_seconds: float = 5.0
    ) -> dict[str, Any]:
        with _evm_errors(f"receipt {tx_hash}"):
            receipt = self._w3.eth.wait_for_transaction_receipt(
                tx_hash,  # type: ignore[arg-type]
                timeout=timeout_seconds,
                poll_latency=poll_seconds,
            )
        return dict(receipt)
