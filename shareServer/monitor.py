from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionStats:
    total_requests: int
    total_downloads: int
    active_connections: int
    seconds_since_last_activity: int
    has_had_activity: bool

    def to_json(self) -> Dict[str, Any]:
        return {
            "totalRequests": self.total_requests,
            "totalDownloads": self.total_downloads,
            "activeConnections": self.active_connections,
            "secondsSinceLastActivity": self.seconds_since_last_activity,
            "hasActivity": self.has_had_activity,
        }

    def __str__(self) -> str:
        return (
            f"Stats[requests={self.total_requests}, downloads={self.total_downloads}, "
            f"active={self.active_connections}, idle={self.seconds_since_last_activity}s]"
        )


class ActivityMonitor:
    """
    Counts requests, downloads and open connections, and fires ``on_timeout``
    after ``timeout_minutes`` without a recorded request.

    The timeout fires at most once per monitor, and never before the first
    request has been recorded.
    """

    CHECK_INTERVAL = 30.0

    def __init__(
        self,
        timeout_minutes: float = 0,
        on_timeout: Optional[Callable[[], None]] = None,
        check_interval: float = CHECK_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.timeout_seconds = timeout_minutes * 60.0 if timeout_minutes > 0 else 0.0
        self.check_interval = check_interval
        self.logger = logger or LOG
        self._on_timeout = on_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._last_activity = clock()
        self._total_requests = 0
        self._total_downloads = 0
        self._active_connections = 0
        self._has_had_activity = False
        self._enabled = self.timeout_seconds > 0
        self._fired = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the periodic idle check. No-op when no timeout is configured."""
        if not self.timeout_seconds:
            self.logger.info("Connection monitor disabled (no timeout)")
            return
        if self._thread:
            return
        self._stop_event.clear()
        thr = threading.Thread(target=self._run, name="shareServer-idle-check", daemon=True)
        self._thread = thr
        thr.start()
        self.logger.info("Connection monitor enabled with %smin timeout", self.timeout_seconds / 60)

    def _run(self) -> None:
        while not self._stop_event.wait(self.check_interval):
            if self.check():
                return

    def check(self) -> bool:
        """Run one idle evaluation. Returns True if this call fired the timeout."""
        with self._lock:
            if self._fired or not self._enabled or not self.timeout_seconds:
                return False
            if not self._has_had_activity:
                return False
            idle = self._clock() - self._last_activity
            if idle < self.timeout_seconds:
                self.logger.debug(
                    "Time until auto-shutdown: %ds (Total requests: %d)", self.timeout_seconds - idle, self._total_requests
                )
                return False
            self._fired = True
            self._enabled = False
            requests, downloads = self._total_requests, self._total_downloads
        self.logger.info("Inactivity timeout reached (%.0fs since last access)", idle)
        self.logger.info("Statistics - Total Requests: %d, Downloads: %d", requests, downloads)
        if self._on_timeout:
            try:
                self._on_timeout()
            except Exception:
                self.logger.exception("Idle timeout callback failed")
        return True

    def record_request(self, path: str, method: str) -> None:
        with self._lock:
            self._last_activity = self._clock()
            self._total_requests += 1
            self._has_had_activity = True
            total = self._total_requests
        self.logger.debug("Request recorded: %s %s (Total: %d)", method, path, total)

    def record_download(self, name: str, size: int) -> None:
        with self._lock:
            self._last_activity = self._clock()
            self._total_downloads += 1
            self._has_had_activity = True
            total = self._total_downloads
        self.logger.info("Download recorded: %s (%d bytes) - Total downloads: %d", name, size, total)

    def connection_opened(self) -> None:
        with self._lock:
            self._active_connections += 1
            count = self._active_connections
        self.logger.debug("Connection opened. Active connections: %d", count)

    def connection_closed(self) -> None:
        with self._lock:
            self._active_connections = max(0, self._active_connections - 1)
            count = self._active_connections
        self.logger.debug("Connection closed. Active connections: %d", count)

    def snapshot(self) -> ConnectionStats:
        with self._lock:
            return ConnectionStats(
                total_requests=self._total_requests,
                total_downloads=self._total_downloads,
                active_connections=self._active_connections,
                seconds_since_last_activity=int(self._clock() - self._last_activity),
                has_had_activity=self._has_had_activity,
            )

    def remaining_seconds(self) -> int:
        """Seconds until auto-shutdown, or -1 when no timeout is active."""
        with self._lock:
            if not self._enabled or self._fired or not self.timeout_seconds:
                return -1
            return max(0, int(self.timeout_seconds - (self._clock() - self._last_activity)))

    def reset_timer(self) -> None:
        with self._lock:
            self._last_activity = self._clock()
        self.logger.debug("Timeout timer reset")

    def set_enabled(self, enabled: bool) -> None:
        """Suspend or resume the idle clock. Resuming restarts the countdown; a fired timeout stays fired."""
        with self._lock:
            self._enabled = bool(enabled) and not self._fired
            if self._enabled:
                self._last_activity = self._clock()
        self.logger.info("Connection monitor %s", "enabled" if enabled else "disabled")

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def fired(self) -> bool:
        return self._fired

    def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel the periodic check and wait (bounded) for its thread."""
        with self._lock:
            self._enabled = False
        self._stop_event.set()
        thr = self._thread
        if thr and thr.is_alive() and thr is not threading.current_thread():
            thr.join(timeout=timeout)
            if thr.is_alive():
                self.logger.warning("Idle check thread did not exit within %.1fs", timeout)
        self._thread = None
        self.logger.info("Connection monitor shut down")
