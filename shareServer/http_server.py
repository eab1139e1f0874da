from __future__ import annotations

import json
import logging
import os
import re
import socket
import ssl
import sys
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Dict, Optional, Set, Tuple
from urllib.parse import parse_qs, quote, unquote, urlsplit

from . import __version__, listing
from .errors import MethodNotAllowed, NotFound, RangeNotSatisfiable, RequestError
from .monitor import ActivityMonitor
from .paths import PathKind, PathResolver, ResolvedPath

LOG = logging.getLogger(__name__)

COPY_CHUNK = 64 * 1024
API_PREFIX = "/api/"
_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


def parse_range(header: Optional[str], size: int) -> Optional[Tuple[int, int]]:
    """
    Parse a single ``Range: bytes=`` spec into an inclusive (start, end).

    Returns None when the header is absent, malformed or asks for several
    ranges (the whole file is sent). Raises RangeNotSatisfiable when the
    range lies outside the file.
    """
    if not header:
        return None
    match = _RANGE_RE.match(header.strip())
    if not match:
        return None
    first, last = match.groups()
    if not first and not last:
        return None
    if size == 0:
        raise RangeNotSatisfiable(size)
    if not first:
        suffix = int(last)
        if suffix == 0:
            raise RangeNotSatisfiable(size)
        return max(0, size - suffix), size - 1
    start = int(first)
    end = int(last) if last else size - 1
    if end < start:
        return None
    if start >= size:
        raise RangeNotSatisfiable(size)
    return start, min(end, size - 1)


def content_disposition(name: str) -> str:
    fallback = name.encode("ascii", "replace").decode("ascii").replace('"', "_").replace("\\", "_")
    return f"inline; filename=\"{fallback}\"; filename*=UTF-8''{quote(name, safe='')}"


class ShareRequestHandler(BaseHTTPRequestHandler):
    """Routes GET requests to files, HTML listings and the JSON API. Everything else gets 405."""

    server_version = f"shareServer/{__version__}"
    server: "PooledHTTPServer"

    def setup(self) -> None:
        self.timeout = self.server.request_timeout
        super().setup()
        if isinstance(self.connection, ssl.SSLSocket):
            self.connection.do_handshake()

    # ensure thread-safe logging
    def log_message(self, format: str, *args: Any) -> None:
        LOG.info("%s - - %s", self.client_address[0], format % args)

    def parse_request(self) -> bool:
        if not super().parse_request():
            return False
        self.server.monitor.record_request(urlsplit(self.path).path, self.command)
        if self.command != "GET":
            self._send_error(MethodNotAllowed("Method not allowed"), api=False)
            return False
        return True

    def do_GET(self) -> None:
        url = urlsplit(self.path)
        path = unquote(url.path)
        api = path == "/api" or path.startswith(API_PREFIX)
        self._streaming = False
        try:
            if api:
                self._handle_api(path, parse_qs(url.query))
            else:
                self._handle_path(path)
        except RequestError as exc:
            self._send_error(exc, api=api)
        except (BrokenPipeError, ConnectionResetError):
            LOG.info("Client %s disconnected during %s", self.client_address[0], path)
        except Exception:
            LOG.exception("Error serving request %s", self.path)
            if self._streaming:
                # headers already sent; the short body tells the client
                self.close_connection = True
                return
            self._send_error(RequestError("Internal server error"), api=api)

    # routing

    def _handle_path(self, path: str) -> None:
        resolved = self.server.resolver.resolve(path)
        if resolved.kind is PathKind.NOT_FOUND:
            raise NotFound("File not found")
        if resolved.kind is PathKind.DIRECTORY:
            self._send_listing(resolved)
        else:
            self._send_file(resolved)

    def _handle_api(self, path: str, query: Dict[str, list]) -> None:
        if path == "/api/stats":
            body = json.dumps(self.server.monitor.snapshot().to_json())
            self._send_bytes(HTTPStatus.OK, body.encode("utf-8"), "application/json", {"Access-Control-Allow-Origin": "*"})
            return
        if path == "/api/list":
            relative = query.get("path", [""])[0]
            resolved = self.server.resolver.resolve(relative)
            if resolved.kind is not PathKind.DIRECTORY:
                raise NotFound("Directory not found")
            entries = listing.scan_directory(resolved.path, self.server.resolver.root)
            body = listing.render_json(entries, resolved.relative, resolved.path.name if not resolved.is_root else "")
            self._send_bytes(HTTPStatus.OK, body.encode("utf-8"), "application/json", {"Access-Control-Allow-Origin": "*"})
            return
        raise NotFound("Endpoint not found")

    # responses

    def _send_listing(self, resolved: ResolvedPath) -> None:
        entries = listing.scan_directory(resolved.path, self.server.resolver.root)
        page = listing.render_html(entries, resolved.relative, resolved.path.name or "/", secure=self.server.secure)
        self._send_bytes(
            HTTPStatus.OK,
            page.encode("utf-8"),
            "text/html; charset=utf-8",
            {"Cache-Control": "no-cache, no-store, must-revalidate"},
        )

    def _send_file(self, resolved: ResolvedPath) -> None:
        name = resolved.path.name
        with open(resolved.path, "rb") as fh:
            st = os.fstat(fh.fileno())
            size = st.st_size
            byte_range = parse_range(self.headers.get("Range"), size)
            if byte_range:
                start, end = byte_range
                self.send_response(HTTPStatus.PARTIAL_CONTENT)
                self.send_header("Content-Range", f"bytes {start}-{end}/{size}")
            else:
                start, end = 0, size - 1
                self.send_response(HTTPStatus.OK)
            length = end - start + 1
            self.send_header("Content-Type", listing.mime_type_for(name))
            self.send_header("Content-Length", str(length))
            self.send_header("Content-Disposition", content_disposition(name))
            self.send_header("Accept-Ranges", "bytes")
            self.send_header("Last-Modified", self.date_time_string(int(st.st_mtime)))
            self.end_headers()
            self._streaming = True
            fh.seek(start)
            sent = 0
            while sent < length:
                chunk = fh.read(min(COPY_CHUNK, length - sent))
                if not chunk:
                    break
                self.wfile.write(chunk)
                sent += len(chunk)
        self.server.monitor.record_download(name, sent)
        LOG.info("Serving file: %s (%d bytes)", name, sent)

    def _send_bytes(self, status: HTTPStatus, body: bytes, content_type: str, headers: Optional[Dict[str, str]] = None) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        for key, value in (headers or {}).items():
            self.send_header(key, value)
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)

    def _send_error(self, exc: RequestError, api: bool) -> None:
        headers: Dict[str, str] = {}
        if isinstance(exc, MethodNotAllowed):
            headers["Allow"] = "GET"
        if isinstance(exc, RangeNotSatisfiable):
            headers["Content-Range"] = f"bytes */{exc.size}"
        if api:
            headers["Access-Control-Allow-Origin"] = "*"
            body = json.dumps({"error": exc.message}).encode("utf-8")
            content_type = "application/json"
        else:
            body = exc.message.encode("utf-8")
            content_type = "text/plain; charset=utf-8"
        self.close_connection = True
        self._send_bytes(exc.status, body, content_type, headers)


class PooledHTTPServer(HTTPServer):
    """
    HTTPServer that hands accepted connections to a bounded thread pool.

    TLS, when configured, is negotiated inside the worker so the accept loop
    never blocks on a handshake.
    """

    def __init__(
        self,
        server_address: Tuple[str, int],
        resolver: PathResolver,
        monitor: ActivityMonitor,
        max_workers: int = 16,
        ssl_context: Optional[ssl.SSLContext] = None,
        request_timeout: float = 30.0,
        handler_cls: type = ShareRequestHandler,
    ) -> None:
        self.resolver = resolver
        self.monitor = monitor
        self.ssl_context = ssl_context
        self.request_timeout = request_timeout
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="shareServer-worker")
        self._conn_lock = threading.Lock()
        self._connections: Set[socket.socket] = set()
        super().__init__(server_address, handler_cls)

    @property
    def secure(self) -> bool:
        return self.ssl_context is not None

    def get_request(self) -> Tuple[socket.socket, Any]:
        sock, addr = self.socket.accept()
        if self.ssl_context is not None:
            sock = self.ssl_context.wrap_socket(sock, server_side=True, do_handshake_on_connect=False)
        return sock, addr

    def process_request(self, request: Any, client_address: Any) -> None:
        with self._conn_lock:
            self._connections.add(request)
        try:
            future = self._pool.submit(self._process_request_worker, request, client_address)
        except RuntimeError:
            # pool already shut down
            self._release(request)
            return
        future.add_done_callback(lambda f, req=request: self._on_done(f, req))

    def _on_done(self, future: Future, request: Any) -> None:
        if future.cancelled():
            self._release(request)

    def _process_request_worker(self, request: Any, client_address: Any) -> None:
        self.monitor.connection_opened()
        try:
            self.finish_request(request, client_address)
        except Exception:
            self.handle_error(request, client_address)
        finally:
            self.monitor.connection_closed()
            self._release(request)

    def _release(self, request: Any) -> None:
        with self._conn_lock:
            if request not in self._connections:
                return
            self._connections.discard(request)
        self.shutdown_request(request)

    def handle_error(self, request: Any, client_address: Any) -> None:
        exc = sys.exc_info()[1]
        if isinstance(exc, (ssl.SSLError, ConnectionError, socket.timeout)):
            LOG.debug("Connection error from %s: %s", client_address, exc)
            return
        LOG.exception("Unhandled error processing request from %s", client_address)

    def drain(self, grace_period: float) -> None:
        """Cancel queued connections, wait up to ``grace_period`` for running ones, then force-close the rest."""
        self._pool.shutdown(wait=False, cancel_futures=True)
        deadline = time.monotonic() + grace_period
        while time.monotonic() < deadline:
            with self._conn_lock:
                if not self._connections:
                    return
            time.sleep(0.05)
        with self._conn_lock:
            stragglers = list(self._connections)
        if stragglers:
            LOG.warning("Force closing %d connection(s) after %.1fs grace period", len(stragglers), grace_period)
        for sock in stragglers:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            self._release(sock)

    @property
    def open_connections(self) -> int:
        with self._conn_lock:
            return len(self._connections)

    def server_close(self) -> None:
        super().server_close()
        self._pool.shutdown(wait=False, cancel_futures=True)
