__version__ = "1.0.0"

from .config import ServerConfig
from .errors import (
    AccessDenied,
    BindFailed,
    CertificateGenerationFailed,
    InvalidRoot,
    NoPortAvailable,
    ShareServerError,
)
from .monitor import ActivityMonitor, ConnectionStats
from .server import ServerState, StopReason, shareServer

__all__ = [
    "shareServer",
    "ServerConfig",
    "ServerState",
    "StopReason",
    "ActivityMonitor",
    "ConnectionStats",
    "ShareServerError",
    "InvalidRoot",
    "NoPortAvailable",
    "BindFailed",
    "CertificateGenerationFailed",
    "AccessDenied",
]
