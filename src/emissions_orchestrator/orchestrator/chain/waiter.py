"""Turn eventual transaction inclusion into a blocking call.

Everything here polls the chain height on a fixed interval. There is no
upper bound on how long a wait can take: a transaction that never confirms
blocks the caller until the process is stopped.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol

from pydantic import ValidationError

from emissions_orchestrator.orchestrator.errors import ChainError

from .responses import BlockHeaderV1, WalletTransaction

logger = logging.getLogger(__name__)

DEFAULT_POLL_SECONDS = 30.0


class ChainReader(Protocol):
    def get_block_count(self) -> int: ...

    def get_transaction(self, txid: str) -> WalletTransaction: ...

    def get_block(self, block_hash: str) -> BlockHeaderV1: ...


class ConfirmationWaiter:
    """Height polling and inclusion waits on top of a chain reader."""

    def __init__(
        self,
        chain: ChainReader,
        *,
        poll_seconds: float = DEFAULT_POLL_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if poll_seconds <= 0:
            raise ValueError("poll_seconds must be > 0")
        self._chain = chain
        self._poll_seconds = poll_seconds
        self._sleep = sleep

    @property
    def poll_seconds(self) -> float:
        return self._poll_seconds

    def current_height(self) -> int:
        return self._chain.get_block_count()

    def wait_for_height(self, min_height: int | None = None) -> int:
        """Return the first observed height >= `min_height` (default: next block).

        Height query failures propagate: if the node itself is gone there is
        nothing sensible to wait for.
        """

        current = self._chain.get_block_count()
        target = current + 1 if min_height is None else min_height

        while current < target:
            self._sleep(self._poll_seconds)
            current = self._chain.get_block_count()
            logger.debug(
                "Waiting for block",
                extra={"target_height": target, "current_height": current},
            )
        return current

    def wait_for_inclusion(self, txid: str) -> int:
        """Block until `txid` is in a block; return that block's height."""

        while True:
            height = self._included_height(txid)
            if height is not None:
                logger.info("Transaction included", extra={"txid": txid, "height": height})
                return height
            logger.debug("Waiting for transaction", extra={"txid": txid})
            self.wait_for_height()

    def _included_height(self, txid: str) -> int | None:
        # Unknown or unconfirmed transactions are simply not included yet.
        try:
            tx = self._chain.get_transaction(txid)
            if not tx.included or tx.blockhash is None:
                return None
            return self._chain.get_block(tx.blockhash).height
        except (ChainError, ValidationError) as e:
            logger.debug("Transaction lookup failed", extra={"txid": txid, "error": str(e)})
            return None
