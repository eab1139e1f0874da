from __future__ import annotations

import enum
import logging
import threading
from concurrent import futures
from concurrent.futures import Future
from pathlib import Path
from typing import Callable, Optional

from .certs import CertificateBundle, build_server_context, generate_bundle
from .config import ServerConfig
from .errors import BindFailed, CertificateGenerationFailed, ShareServerError
from .http_server import PooledHTTPServer
from .monitor import ActivityMonitor, ConnectionStats
from .paths import PathResolver
from .ports import allocate_port

LOG = logging.getLogger(__name__)

# extra wait beyond grace_period for the serve-thread and monitor joins
STOP_WAIT_MARGIN = 10.0


class ServerState(enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    AUTO_SHUTDOWN = "auto_shutdown"
    STOPPED = "stopped"


class StopReason(enum.Enum):
    MANUAL = "manual"
    IDLE = "idle"


class shareServer:
    """
    Serves one directory tree over HTTP or HTTPS.

    One instance covers one run: IDLE -> STARTING -> RUNNING -> (STOPPING |
    AUTO_SHUTDOWN) -> STOPPED. ``stopped`` resolves with the StopReason so
    callers can tell an idle auto-shutdown from a manual stop.
    """

    def __init__(
        self,
        root_dir: str | Path,
        config: Optional[ServerConfig] = None,
        logger: Optional[logging.Logger] = None,
        on_idle_shutdown: Optional[Callable[[], None]] = None,
        certificate_provider: Callable[[], CertificateBundle] = generate_bundle,
    ) -> None:
        self.logger = logger or LOG
        self.resolver = PathResolver(root_dir, logger=self.logger)
        self.root_dir = self.resolver.root
        self.config = config or ServerConfig()
        self.on_idle_shutdown = on_idle_shutdown
        self.certificate_provider = certificate_provider
        self.stopped: Future = Future()
        self.sock_port: Optional[int] = None
        self.monitor: Optional[ActivityMonitor] = None
        self._state = ServerState.IDLE
        self._lock = threading.Lock()
        self._httpd: Optional[PooledHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._bundle: Optional[CertificateBundle] = None

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def secure(self) -> bool:
        return self.config.use_tls

    @property
    def certificate_fingerprint(self) -> Optional[str]:
        bundle = self._bundle
        return bundle.fingerprint() if bundle else None

    def _set_state(self, state: ServerState) -> None:
        self.logger.debug("Server state %s -> %s", self._state.value, state.value)
        self._state = state

    def url(self, advertise_host: str = "127.0.0.1") -> str:
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{advertise_host}:{self.sock_port}/"

    def stats(self) -> ConnectionStats:
        if self.monitor is None:
            return ConnectionStats(0, 0, 0, 0, False)
        return self.monitor.snapshot()

    def start(self) -> None:
        """Allocate a port, provision TLS if requested, bind and start serving. Idempotent while running."""
        with self._lock:
            if self._state is ServerState.RUNNING:
                return
            if self._state is not ServerState.IDLE:
                raise RuntimeError(f"cannot start a server in state {self._state.value}")
            self._set_state(ServerState.STARTING)
            cfg = self.config
            try:
                port = allocate_port(cfg.preferred_port, cfg.port_range_min, cfg.port_range_max, host=cfg.host, logger=self.logger)
                ssl_context = None
                if cfg.use_tls:
                    self._bundle = self._provision_certificate()
                    ssl_context = build_server_context(self._bundle)
                monitor = ActivityMonitor(
                    cfg.idle_timeout_minutes,
                    on_timeout=self._on_idle_timeout,
                    check_interval=cfg.idle_check_interval,
                    logger=self.logger,
                )
                try:
                    httpd = PooledHTTPServer(
                        (cfg.host, port),
                        self.resolver,
                        monitor,
                        max_workers=cfg.max_workers,
                        ssl_context=ssl_context,
                        request_timeout=cfg.request_timeout,
                    )
                except OSError as exc:
                    raise BindFailed(cfg.host, port, exc) from exc
            except ShareServerError as exc:
                self.logger.error("Failed to start server: %s", exc)
                self._bundle = None
                self._set_state(ServerState.STOPPED)
                self.stopped.set_exception(exc)
                raise
            self._httpd = httpd
            self.monitor = monitor
            self.sock_port = httpd.server_address[1]
            thr = threading.Thread(target=httpd.serve_forever, kwargs={"poll_interval": 0.5}, name="shareServer-accept", daemon=True)
            self._thread = thr
            thr.start()
            monitor.start()
            self._set_state(ServerState.RUNNING)
        self.logger.info(
            "%s server serving %s on %s:%d", "HTTPS" if self.secure else "HTTP", self.root_dir, cfg.host, self.sock_port
        )

    def _provision_certificate(self) -> CertificateBundle:
        try:
            return self.certificate_provider()
        except CertificateGenerationFailed:
            raise
        except Exception as exc:
            raise CertificateGenerationFailed(f"certificate provider failed: {exc}") from exc

    def stop(self) -> None:
        """
        Stop serving and release the port, the TLS credential and the idle checker.

        If another thread is already stopping the server, wait (bounded) for it to finish.
        """
        if self._shutdown(StopReason.MANUAL):
            return
        limit = self.config.grace_period + STOP_WAIT_MARGIN
        done, _ = futures.wait([self.stopped], timeout=limit)
        if not done:
            self.logger.warning("Concurrent shutdown still running after %.1fs (state %s)", limit, self._state.value)

    def wait(self, timeout: Optional[float] = None) -> StopReason:
        return self.stopped.result(timeout)

    def _on_idle_timeout(self) -> None:
        self.logger.info("Stopping server after inactivity timeout")
        if self._shutdown(StopReason.IDLE) and self.on_idle_shutdown:
            try:
                self.on_idle_shutdown()
            except Exception:
                self.logger.exception("Idle shutdown callback failed")

    def _shutdown(self, reason: StopReason) -> bool:
        with self._lock:
            if self._state is ServerState.IDLE:
                self._set_state(ServerState.STOPPED)
                self.stopped.set_result(reason)
                return True
            if self._state is not ServerState.RUNNING:
                return False
            self._set_state(ServerState.STOPPING if reason is StopReason.MANUAL else ServerState.AUTO_SHUTDOWN)
            httpd, thread, monitor = self._httpd, self._thread, self.monitor

        if httpd:
            try:
                httpd.shutdown()
            except Exception:
                self.logger.exception("Error shutting down HTTP server")
            try:
                httpd.drain(self.config.grace_period)
            except Exception:
                self.logger.exception("Error draining connections")
            try:
                httpd.server_close()
            except Exception:
                self.logger.exception("Error closing HTTP server")
        if thread and thread.is_alive():
            thread.join(timeout=2.0)
        if monitor:
            try:
                monitor.shutdown()
            except Exception:
                self.logger.exception("Error shutting down connection monitor")

        with self._lock:
            self._httpd = None
            self._thread = None
            self._bundle = None
            self.sock_port = None
            self._set_state(ServerState.STOPPED)
        if reason is StopReason.IDLE:
            self.logger.info("Server stopped (auto-shutdown after inactivity)")
        else:
            self.logger.info("Server stopped")
        self.stopped.set_result(reason)
        return True
