"""Unit tests for the EVM client (mocked web3)."""

from __future__ import annotations

from unittest.mock import Mock

import pytest
from web3.exceptions import TimeExhausted

from emissions_orchestrator.orchestrator.chain.evm import EvmClient
from emissions_orchestrator.orchestrator.errors import EvmError

SENDER = "0x" + "ab" * 20


def test_nonce_lookup_uses_checksum_address() -> None:
    w3 = Mock()
    w3.eth.get_transaction_count.return_value = 12
    client = EvmClient(rpc_url="", web3=w3)

    assert client.get_transaction_count(SENDER) == 12
    w3.eth.get_transaction_count.assert_called_once_with(EvmClient.checksum(SENDER))


def test_send_transaction_returns_hex_hash() -> None:
    w3 = Mock()
    w3.eth.send_transaction.return_value = bytes.fromhex("01" * 32)
    client = EvmClient(rpc_url="", web3=w3)

    assert client.send_transaction({"nonce": 1}) == "0x" + "01" * 32


def test_rpc_failures_become_evm_errors() -> None:
    w3 = Mock()
    w3.eth.get_balance.side_effect = ValueError("execution reverted")
    client = EvmClient(rpc_url="", web3=w3)

    with pytest.raises(EvmError):
        client.get_balance(SENDER)


def test_receipt_timeout_becomes_evm_error() -> None:
    w3 = Mock()
    w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("not mined")
    client = EvmClient(rpc_url="", web3=w3)

    with pytest.raises(EvmError, match="Timed out"):
        client.wait_for_receipt("0x" + "02" * 32, timeout_seconds=1)


def test_rpc_url_required_without_web3() -> None:
    with pytest.raises(ValueError):
        EvmClient(rpc_url="")
