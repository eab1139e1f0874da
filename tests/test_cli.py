from __future__ import annotations

import logging
import runpy
import signal
import sys
from concurrent.futures import Future
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, Optional

import pytest

from shareServer import NoPortAvailable, StopReason


class _FakeServer:
    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.started = False
        self.stop_calls = 0
        self.stopped: Future = Future()
        self.certificate_fingerprint: Optional[str] = None
        self.on_start = None

    def start(self) -> None:
        self.started = True
        if self.on_start:
            self.on_start()

    def stop(self) -> None:
        self.stop_calls += 1
        if not self.stopped.done():
            self.stopped.set_result(StopReason.MANUAL)

    def url(self, advertise_host: str = "127.0.0.1") -> str:
        return f"http://{advertise_host}:8080/"


@pytest.fixture()
def handlers(monkeypatch: pytest.MonkeyPatch) -> Dict[int, Any]:
    captured: Dict[int, Any] = {}
    monkeypatch.setattr(signal, "signal", lambda sig, handler: captured.__setitem__(sig, handler))
    return captured


@pytest.fixture()
def fake(monkeypatch: pytest.MonkeyPatch) -> _FakeServer:
    from shareServer import cli

    server = _FakeServer()

    def _factory(**kwargs: Any) -> _FakeServer:
        server.kwargs = kwargs
        return server

    monkeypatch.setattr(cli, "shareServer", _factory)
    monkeypatch.setattr(cli, "best_local_ipv4", lambda: "192.168.1.50")
    monkeypatch.setattr(cli, "POLL_INTERVAL", 0.01)
    return server


def test_cli_root_missing(tmp_path: Path) -> None:
    """CLI exits 2 when root directory does not exist."""
    from shareServer import cli

    assert cli.main(["--root-dir", str(tmp_path / "nope")]) == 2


def test_cli_invalid_port_range(tmp_path: Path, handlers: Dict[int, Any]) -> None:
    from shareServer import cli

    assert cli.main(["--root-dir", str(tmp_path), "--port-min", "9000", "--port-max", "8000"]) == 2
    assert handlers == {}


def test_cli_passes_config(tmp_path: Path, fake: _FakeServer, handlers: Dict[int, Any]) -> None:
    from shareServer import cli

    fake.on_start = lambda: handlers[signal.SIGTERM](signal.SIGTERM, None)
    code = cli.main(["-r", str(tmp_path), "--port", "0", "--https", "--idle-timeout", "5", "--workers", "4"])
    assert code == 0
    config = fake.kwargs["config"]
    assert config.preferred_port == 0
    assert config.use_tls is True
    assert config.idle_timeout_minutes == 5
    assert config.max_workers == 4
    assert fake.kwargs["root_dir"] == str(tmp_path.resolve())


def test_cli_start_failure_returns_1(tmp_path: Path, fake: _FakeServer, handlers: Dict[int, Any], caplog: pytest.LogCaptureFixture) -> None:
    """Start failure returns exit code 1 and suggests plain HTTP when TLS was requested."""
    from shareServer import cli

    def _boom() -> None:
        raise NoPortAvailable(8080, 8080, 8180)

    fake.on_start = _boom
    with caplog.at_level(logging.ERROR, logger="shareServer.cli"):
        code = cli.main(["--root-dir", str(tmp_path), "--https"])
    assert code == 1
    assert "No ports available" in caplog.text
    assert "without --https" in caplog.text


def test_cli_signal_handler_path(tmp_path: Path, fake: _FakeServer, handlers: Dict[int, Any], caplog: pytest.LogCaptureFixture) -> None:
    """SIGINT stops the server and the CLI exits 0."""
    from shareServer import cli

    fake.on_start = lambda: handlers[signal.SIGINT](signal.SIGINT, None)
    with caplog.at_level(logging.INFO, logger="shareServer.cli"):
        code = cli.main(["--root-dir", str(tmp_path)])
    assert code == 0
    assert fake.started is True
    assert fake.stop_calls >= 1
    assert "http://192.168.1.50:8080/" in caplog.text
    assert set(handlers) == {signal.SIGINT, signal.SIGTERM}


def test_cli_advertise_host_and_fingerprint(tmp_path: Path, fake: _FakeServer, handlers: Dict[int, Any], caplog: pytest.LogCaptureFixture) -> None:
    from shareServer import cli

    fake.certificate_fingerprint = "AB:CD"
    fake.on_start = lambda: handlers[signal.SIGINT](signal.SIGINT, None)
    with caplog.at_level(logging.INFO, logger="shareServer.cli"):
        cli.main(["--root-dir", str(tmp_path), "--advertise-host", "files.lan"])
    assert "http://files.lan:8080/" in caplog.text
    assert "AB:CD" in caplog.text


def test_cli_idle_shutdown_reported(tmp_path: Path, fake: _FakeServer, handlers: Dict[int, Any], caplog: pytest.LogCaptureFixture) -> None:
    """An idle auto-shutdown ends the wait loop and is reported distinctly."""
    from shareServer import cli

    fake.on_start = lambda: fake.stopped.set_result(StopReason.IDLE)
    with caplog.at_level(logging.INFO, logger="shareServer.cli"):
        code = cli.main(["--root-dir", str(tmp_path), "--idle-timeout", "2"])
    assert code == 0
    assert "stopped automatically after 2.0 minutes of inactivity" in caplog.text


def test_cli_keyboard_interrupt_flow(tmp_path: Path, fake: _FakeServer, handlers: Dict[int, Any], monkeypatch: pytest.MonkeyPatch) -> None:
    """KeyboardInterrupt in the wait loop still stops the server."""
    from shareServer import cli

    class _Interrupting:
        def set(self) -> None:
            pass

        def wait(self, timeout: Optional[float] = None) -> bool:
            raise KeyboardInterrupt

    monkeypatch.setattr(cli, "threading", SimpleNamespace(Event=_Interrupting))
    code = cli.main(["--root-dir", str(tmp_path)])
    assert code == 0
    assert fake.stop_calls == 1


def test_cli_module_main_sys_exit_help(monkeypatch: pytest.MonkeyPatch) -> None:
    """Import shareServer.cli fresh with runpy to hit sys.exit(main())."""
    monkeypatch.setattr(sys, "argv", ["python", "-m", "shareServer.cli", "--help"])
    sys.modules.pop("shareServer.cli", None)
    with pytest.raises(SystemExit) as se:
        runpy.run_module("shareServer.cli", run_name="__main__")
    assert se.value.code == 0 or se.value.code is None
