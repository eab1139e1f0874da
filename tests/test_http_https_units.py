from __future__ import annotations

import logging
import socket
import ssl
from types import SimpleNamespace

import pytest

from shareServer.errors import RangeNotSatisfiable
from shareServer.http_server import PooledHTTPServer, ShareRequestHandler, content_disposition, parse_range
from shareServer.monitor import ActivityMonitor
from shareServer.paths import PathResolver


def test_handler_log_message_goes_through_logging(caplog: pytest.LogCaptureFixture) -> None:
    """Access log lines use the module logger instead of stderr."""
    obj = SimpleNamespace(client_address=("127.0.0.1", 12345))
    with caplog.at_level(logging.INFO, logger="shareServer.http_server"):
        ShareRequestHandler.log_message(obj, "%s %s", "a", "b")  # type: ignore[arg-type]
    assert "127.0.0.1 - - a b" in caplog.text


@pytest.mark.parametrize(
    "header,expected",
    [
        (None, None),
        ("", None),
        ("bytes=0-0", (0, 0)),
        ("bytes=2-", (2, 9)),
        ("bytes=5-100", (5, 9)),
        ("bytes=-3", (7, 9)),
        ("bytes=-50", (0, 9)),
        ("bytes=4-2", None),
        ("bytes=0-1,3-4", None),
        ("items=0-1", None),
        ("bytes=-", None),
    ],
)
def test_parse_range(header, expected) -> None:
    assert parse_range(header, 10) == expected


@pytest.mark.parametrize(
    "header,size",
    [("bytes=10-", 10), ("bytes=99-100", 10), ("bytes=-0", 10), ("bytes=-5", 0), ("bytes=0-", 0)],
)
def test_parse_range_unsatisfiable(header: str, size: int) -> None:
    with pytest.raises(RangeNotSatisfiable) as exc:
        parse_range(header, size)
    assert exc.value.size == size
    assert exc.value.status == 416


def test_content_disposition_ascii_fallback() -> None:
    assert content_disposition("plain.txt") == "inline; filename=\"plain.txt\"; filename*=UTF-8''plain.txt"
    value = content_disposition('résumé "v2".pdf')
    assert 'filename="r?sum? _v2_.pdf"' in value
    assert "filename*=UTF-8''r%C3%A9sum%C3%A9%20%22v2%22.pdf" in value


@pytest.fixture()
def pooled(tmp_path):
    srv = PooledHTTPServer(("127.0.0.1", 0), PathResolver(tmp_path), ActivityMonitor(), max_workers=2)
    try:
        yield srv
    finally:
        srv.server_close()


def test_handle_error_quiet_for_connection_errors(pooled: PooledHTTPServer, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.DEBUG, logger="shareServer.http_server"):
        for exc in (ssl.SSLError("bad handshake"), ConnectionResetError("reset"), socket.timeout("slow")):
            try:
                raise exc
            except Exception:
                pooled.handle_error(None, ("127.0.0.1", 1))
    assert all(r.levelno == logging.DEBUG for r in caplog.records)


def test_handle_error_logs_unexpected(pooled: PooledHTTPServer, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.DEBUG, logger="shareServer.http_server"):
        try:
            raise ValueError("unexpected")
        except ValueError:
            pooled.handle_error(None, ("127.0.0.1", 1))
    assert any(r.levelno == logging.ERROR and r.exc_info for r in caplog.records)


def test_process_request_after_pool_shutdown_closes_socket(pooled: PooledHTTPServer) -> None:
    """Connections arriving after the pool shut down are closed, not leaked."""
    a, b = socket.socketpair()
    try:
        pooled.drain(0)
        pooled.process_request(a, ("127.0.0.1", 1))
        assert pooled.open_connections == 0
        assert a.fileno() == -1
    finally:
        a.close()
        b.close()


def test_secure_flag(pooled: PooledHTTPServer) -> None:
    assert pooled.secure is False
