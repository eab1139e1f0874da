from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

DEFAULT_PORT = 8080
PORT_RANGE_MIN = 8080
PORT_RANGE_MAX = 8180


@dataclass(frozen=True)
class ServerConfig:
    """
    Settings for one serving run. Immutable once the engine has started.

    preferred_port=0 asks the OS for an ephemeral port; None starts the
    search at port_range_min. idle_timeout_minutes=0 disables auto-shutdown.
    """

    preferred_port: Optional[int] = DEFAULT_PORT
    port_range_min: int = PORT_RANGE_MIN
    port_range_max: int = PORT_RANGE_MAX
    idle_timeout_minutes: float = 0
    use_tls: bool = False
    host: str = "0.0.0.0"
    max_workers: int = 16
    grace_period: float = 5.0
    idle_check_interval: float = 30.0
    request_timeout: float = 30.0

    def __post_init__(self) -> None:
        if self.preferred_port is not None and not 0 <= self.preferred_port <= 65535:
            raise ValueError(f"preferred_port out of range: {self.preferred_port}")
        if not 1 <= self.port_range_min <= self.port_range_max <= 65535:
            raise ValueError(f"invalid port range {self.port_range_min}-{self.port_range_max}")
        if self.idle_timeout_minutes < 0:
            raise ValueError("idle_timeout_minutes must be >= 0")
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if self.grace_period < 0 or self.idle_check_interval <= 0 or self.request_timeout <= 0:
            raise ValueError("grace_period, idle_check_interval and request_timeout must be positive")
