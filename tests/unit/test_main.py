"""Unit tests for the CLI entrypoint."""

from __future__ import annotations

import json
import signal
from collections import deque
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import Mock

import pytest

from emissions_orchestrator.orchestrator import main as main_module
from emissions_orchestrator.orchestrator.chain.node import NodeClient, NodeTransport
from emissions_orchestrator.orchestrator.scheduler.block_loop import BlockEventLoop
from emissions_orchestrator.orchestrator.scheduler.cursor import CursorStore
from emissions_orchestrator.orchestrator.scheduler.trigger import ForceStartSignal


@pytest.fixture(autouse=True)
def _keep_test_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(main_module, "configure_logging", lambda *a, **kw: None)


def test_configuration_error_exits_with_two(
    clean_env: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert main_module.main(["status"]) == 2
    assert "Configuration error" in capsys.readouterr().err


def test_reset_cursor(bot_env: Path, capsys: pytest.CaptureFixture[str]) -> None:
    cursor = CursorStore(bot_env / ".state" / "state.sqlite3")
    cursor.store(500)

    assert main_module.main(["reset-cursor", "--height", "321"]) == 0

    assert cursor.load() == 321
    assert "Cursor reset to 321" in capsys.readouterr().out


def test_env_override_selects_env_file(
    bot_env: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("BOT_START_BLOCK")
    (bot_env / ".env.testnet").write_text("BOT_START_BLOCK=100\n", encoding="utf-8")
    monkeypatch.setenv("ENV", "testnet")

    assert main_module.main(["reset-cursor"]) == 0


def test_rpc_password_without_user_is_a_configuration_error(
    bot_env: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("BOT_NODE_RPC_URL", "http://127.0.0.1:8554")
    monkeypatch.setenv("BOT_NODE_RPC_PASSWORD", "secret")

    assert main_module.main(["reset-cursor"]) == 2


def test_command_is_required(bot_env: Path) -> None:
    with pytest.raises(SystemExit):
        main_module.main([])


def test_negative_reset_height_is_rejected_by_the_parser(
    bot_env: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cursor = CursorStore(bot_env / ".state" / "state.sqlite3")
    cursor.store(500)

    with pytest.raises(SystemExit) as exc_info:
        main_module.main(["reset-cursor", "--height", "-1"])

    assert exc_info.value.code == 2
    assert "non-negative" in capsys.readouterr().err
    assert cursor.load() == 500


def test_empty_evm_rpc_is_a_configuration_error(
    bot_env: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("BOT_EVM_JSON_RPC", "")

    assert main_module.main(["status"]) == 2
    assert "Configuration error" in capsys.readouterr().err


def test_status_reports_height_hash_and_decision(
    bot_env: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    transport = Mock(spec=NodeTransport)
    transport.call.side_effect = lambda method, *params: {
        "getblockcount": 5000,
        "getblockhash": "ab" * 32,
    }[method]
    monkeypatch.setattr(main_module, "_build_node", lambda settings: NodeClient(transport))

    assert main_module.main(["status"]) == 0

    status = json.loads(capsys.readouterr().out)
    assert status["height"] == 5000
    assert status["block_hash"] == "ab" * 32
    assert status["last_run_height"] == 0
    assert set(status) >= {"should_run", "diff_blocks", "reason"}
    transport.call.assert_any_call("getblockhash", 5000)


@pytest.fixture
def restore_signal_handlers() -> Iterator[None]:
    saved = {sig: signal.getsignal(sig) for sig in (signal.SIGUSR1, signal.SIGTERM)}
    yield
    for sig, handler in saved.items():
        signal.signal(sig, handler)


@pytest.mark.skipif(not hasattr(signal, "SIGUSR1"), reason="SIGUSR1 not available")
@pytest.mark.usefixtures("restore_signal_handlers")
def test_sigusr1_requests_a_forced_run() -> None:
    force = ForceStartSignal()
    main_module._install_signal_handlers(Mock(spec=BlockEventLoop), force)

    signal.raise_signal(signal.SIGUSR1)

    assert force.pending is True
    assert force.consume() is True
    assert force.consume() is False


class SignallingDeque(deque[None]):
    """Raises SIGUSR1 from inside the first `popleft`, i.e. mid-consume."""

    raised = False

    def popleft(self) -> None:
        if not self.raised:
            self.raised = True
            signal.raise_signal(signal.SIGUSR1)
        return super().popleft()


@pytest.mark.skipif(not hasattr(signal, "SIGUSR1"), reason="SIGUSR1 not available")
@pytest.mark.usefixtures("restore_signal_handlers")
def test_sigusr1_during_consume_does_not_block() -> None:
    force = ForceStartSignal(requested=True)
    requests = SignallingDeque(force._requests)
    force._requests = requests
    main_module._install_signal_handlers(Mock(spec=BlockEventLoop), force)

    assert force.consume() is True

    assert requests.raised is True
    assert force.pending is False


@pytest.mark.usefixtures("restore_signal_handlers")
def test_sigterm_stops_the_loop() -> None:
    loop = Mock(spec=BlockEventLoop)
    main_module._install_signal_handlers(loop, ForceStartSignal())

    with pytest.raises(SystemExit):
        signal.raise_signal(signal.SIGTERM)

    loop.stop.assert_called_once_with()
