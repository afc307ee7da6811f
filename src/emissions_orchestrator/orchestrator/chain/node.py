"""Node client: chain queries and state-mutating commands.

The node can be reached either through its command line tool (the default,
matching how operators already run it) or over JSON-RPC. Both transports
return decoded JSON with floats parsed as Decimal; the client validates every
response into a typed model before handing it to the orchestration core.
"""

from __future__ import annotations

import itertools
import json
import logging
import re
import subprocess
from collections.abc import Callable, Sequence
from decimal import Decimal
from typing import Any, Protocol

import requests

from emissions_orchestrator.orchestrator.errors import (
    NodeCommandError,
    NodeUnavailableError,
)

from .responses import (
    AddressMapResult,
    BlockHeaderV1,
    PoolPair,
    TokenInfo,
    WalletTransaction,
)
from .types import (
    AccountToUtxosArgs,
    AddressMapKind,
    BurnTokensArgs,
    PoolSwapArgs,
    TokenAmount,
    TransferDomainArgs,
)

logger = logging.getLogger(__name__)

_CLI_ERROR_CODE_RE = re.compile(r"error code:\s*(-?\d+)")
_CLI_UNREACHABLE_MARKERS: tuple[str, ...] = (
    "could not connect to the server",
    "couldn't connect to server",
    "connection refused",
)


def _decode(text: str) -> Any:
    text = text.strip()
    if not text:
        return None
    try:
        return json.loads(text, parse_float=Decimal)
    except json.JSONDecodeError:
        # Plain-text results such as txids and block hashes.
        return text


def _cli_arg(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


class NodeTransport(Protocol):
    def call(self, method: str, *params: object) -> Any: ...


class CliTransport:
    """Invoke the node CLI once per command."""

    def __init__(
        self,
        command: Sequence[str],
        *,
        timeout_seconds: float = 120.0,
        runner: Callable[..., subprocess.CompletedProcess[str]] = subprocess.run,
    ) -> None:
        if not command:
            raise ValueError("CLI command is required")
        self._command = list(command)
        self._timeout_seconds = timeout_seconds
        self._runner = runner

    @property
    def command(self) -> list[str]:
        return list(self._command)

    def call(self, method: str, *params: object) -> Any:
        argv = [*self._command, method, *(_cli_arg(p) for p in params)]
        logger.debug("Node CLI call", extra={"method": method})
        try:
            proc = self._runner(
                argv,
                capture_output=True,
                text=True,
                timeout=self._timeout_seconds,
                check=False,
            )
        except FileNotFoundError as e:
            raise NodeUnavailableError(f"Node CLI not found: {self._command[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise NodeUnavailableError(f"Node CLI timed out on {method}") from e

        if proc.returncode != 0:
            message = (proc.stderr or proc.stdout or "").strip() or f"{method} failed"
            if any(marker in message.lower() for marker in _CLI_UNREACHABLE_MARKERS):
                raise NodeUnavailableError(message)
            match = _CLI_ERROR_CODE_RE.search(message)
            code = int(match.group(1)) if match else None
            raise NodeCommandError(message, code=code)

        return _decode(proc.stdout)


class RpcTransport:
    """JSON-RPC 1.0 over HTTP."""

    def __init__(
        self,
        url: str,
        *,
        user: str | None = None,
        password: str | None = None,
        timeout_seconds: float = 60.0,
        session: requests.Session | None = None,
    ) -> None:
        if not url:
            raise ValueError("Node RPC url is required")
        self._url = url
        self._timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})
        if user is not None:
            self._session.auth = (user, password or "")
        self._ids = itertools.count(1)

    def call(self, method: str, *params: object) -> Any:
        payload = {
            "jsonrpc": "1.0",
            "id": next(self._ids),
            "method": method,
            "params": list(params),
        }
        logger.debug("Node RPC call", extra={"method": method})
        try:
            resp = self._session.post(self._url, json=payload, timeout=self._timeout_seconds)
        except requests.RequestException as e:
            raise NodeUnavailableError(f"Node RPC unreachable: {e}") from e

        try:
            body = json.loads(resp.text, parse_float=Decimal)
        except json.JSONDecodeError:
            body = None

        if isinstance(body, dict) and body.get("error"):
            error = body["error"]
            if isinstance(error, dict):
                raise NodeCommandError(str(error.get("message", error)), code=error.get("code"))
            raise NodeCommandError(str(error))
        if resp.status_code != 200 or not isinstance(body, dict):
            raise NodeCommandError(f"Node RPC {method} failed with HTTP {resp.status_code}")
        return body.get("result")


def _parse_token_amounts(raw: object) -> dict[str, Decimal]:
    if isinstance(raw, dict):
        return {str(k): Decimal(str(v)) for k, v in raw.items()}
    if not isinstance(raw, list):
        raise NodeCommandError(f"Unexpected token balances response: {raw!r}")
    out: dict[str, Decimal] = {}
    for item in raw:
        parsed = TokenAmount.parse(str(item))
        out[parsed.token] = out.get(parsed.token, Decimal(0)) + parsed.amount
    return out


def _single_entry(raw: object, what: str) -> tuple[str, dict[str, Any]]:
    if not isinstance(raw, dict) or len(raw) != 1:
        raise NodeCommandError(f"Unexpected {what} response: {raw!r}")
    key, value = next(iter(raw.items()))
    if not isinstance(value, dict):
        raise NodeCommandError(f"Unexpected {what} response: {raw!r}")
    return str(key), value


def _txid(raw: object, method: str) -> str:
    if not isinstance(raw, str) or not raw:
        raise NodeCommandError(f"{method} returned no transaction id: {raw!r}")
    return raw


class NodeClient:
    """Typed wrapper over the node's command surface."""

    def __init__(self, transport: NodeTransport) -> None:
        self._transport = transport

    # Queries

    def get_block_count(self) -> int:
        raw = self._transport.call("getblockcount")
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise NodeCommandError(f"Invalid block count: {raw!r}")
        return raw

    def get_block_hash(self, height: int) -> str:
        return _txid(self._transport.call("getblockhash", height), "getblockhash")

    def get_block(self, block_hash: str) -> BlockHeaderV1:
        return BlockHeaderV1.model_validate(self._transport.call("getblock", block_hash, 1))

    def get_transaction(self, txid: str, *, include_watch_only: bool = True) -> WalletTransaction:
        raw = self._transport.call("gettransaction", txid, include_watch_only)
        return WalletTransaction.model_validate(raw)

    def get_balance(self) -> Decimal:
        raw = self._transport.call("getbalance")
        try:
            return Decimal(str(raw))
        except ArithmeticError as e:
            raise NodeCommandError(f"Invalid balance: {raw!r}") from e

    def get_account(self, address: str) -> dict[str, Decimal]:
        """Token balances of a single address keyed by symbol."""

        return _parse_token_amounts(self._transport.call("getaccount", address))

    def get_pool_pair(self, pool: str) -> PoolPair:
        key, value = _single_entry(self._transport.call("getpoolpair", pool), "getpoolpair")
        return PoolPair.model_validate({"id": key, **value})

    def get_token(self, symbol: str) -> TokenInfo:
        key, value = _single_entry(self._transport.call("gettoken", symbol), "gettoken")
        return TokenInfo.model_validate({**value, "id": int(key)})

    def address_map(self, address: str, kind: AddressMapKind) -> AddressMapResult:
        return AddressMapResult.model_validate(
            self._transport.call("addressmap", address, int(kind))
        )

    # State-mutating commands, each returning the submitted txid

    def account_to_utxos(self, args: AccountToUtxosArgs) -> str:
        raw = self._transport.call("accounttoutxos", args.from_address, args.to_json())
        return _txid(raw, "accounttoutxos")

    def pool_swap(self, args: PoolSwapArgs) -> str:
        return _txid(self._transport.call("poolswap", args.to_json()), "poolswap")

    def transfer_domain(self, args: TransferDomainArgs) -> str:
        return _txid(self._transport.call("transferdomain", args.to_json()), "transferdomain")

    def burn_tokens(self, args: BurnTokensArgs) -> str:
        return _txid(self._transport.call("burntokens", args.to_json()), "burntokens")
