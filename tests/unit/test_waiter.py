"""Unit tests for the confirmation waiter."""

from __future__ import annotations

import pytest
from conftest import FakeChain, no_sleep

from emissions_orchestrator.orchestrator.chain.responses import WalletTransaction
from emissions_orchestrator.orchestrator.chain.waiter import ConfirmationWaiter
from emissions_orchestrator.orchestrator.errors import NodeCommandError, NodeUnavailableError


def test_wait_for_height_defaults_to_next_block() -> None:
    sleeps: list[float] = []
    chain = FakeChain([200, 200, 200, 201])
    waiter = ConfirmationWaiter(chain, poll_seconds=30, sleep=sleeps.append)

    assert waiter.wait_for_height() == 201
    assert sleeps == [30, 30, 30]


def test_wait_for_height_returns_immediately_when_reached() -> None:
    chain = FakeChain([210])
    waiter = ConfirmationWaiter(chain, sleep=no_sleep)

    assert waiter.wait_for_height(205) == 210
    assert chain.height_calls == 1


def test_wait_for_height_propagates_query_failures() -> None:
    chain = FakeChain([200, NodeUnavailableError("connection refused")])
    waiter = ConfirmationWaiter(chain, sleep=no_sleep)

    with pytest.raises(NodeUnavailableError):
        waiter.wait_for_height(201)


def test_wait_for_inclusion_does_not_return_early_for_unknown_or_unconfirmed_tx() -> None:
    chain = FakeChain([103, 104, 104, 105])
    chain.transactions["tx1"] = [
        NodeCommandError("Invalid or non-wallet transaction id", code=-5),
        WalletTransaction(txid="tx1", confirmations=0),
        WalletTransaction(txid="tx1", confirmations=1, blockhash="bh1"),
    ]
    chain.blocks["bh1"] = 105
    waiter = ConfirmationWaiter(chain, sleep=no_sleep)

    assert waiter.wait_for_inclusion("tx1") == 105
    assert chain.transaction_calls == 3


def test_blockhash_without_confirmations_is_not_included() -> None:
    chain = FakeChain([200, 201])
    chain.transactions["tx3"] = [
        WalletTransaction(txid="tx3", confirmations=0, blockhash="stale"),
        WalletTransaction(txid="tx3", confirmations=2, blockhash="bh3"),
    ]
    chain.blocks["bh3"] = 199
    waiter = ConfirmationWaiter(chain, sleep=no_sleep)

    assert waiter.wait_for_inclusion("tx3") == 199
    assert chain.transaction_calls == 2
    assert chain.height_calls == 2


def test_wait_for_inclusion_returns_block_height_not_current_height() -> None:
    chain = FakeChain([])
    chain.transactions["tx2"] = [WalletTransaction(txid="tx2", confirmations=12, blockhash="bh2")]
    chain.blocks["bh2"] = 90
    waiter = ConfirmationWaiter(chain, sleep=no_sleep)

    assert waiter.wait_for_inclusion("tx2") == 90
    assert chain.height_calls == 0


def test_poll_seconds_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ConfirmationWaiter(FakeChain([]), poll_seconds=0)
