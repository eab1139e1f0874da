from __future__ import annotations

import logging
import socket
from typing import Iterator, Optional

from .errors import NoPortAvailable

LOG = logging.getLogger(__name__)


def port_is_free(port: int, host: str = "0.0.0.0") -> bool:
    """Bind and immediately release a listening socket on ``port``."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        # matches HTTPServer.allow_reuse_address on the real listener
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(1)
    except OSError:
        return False
    finally:
        sock.close()
    return True


def candidate_ports(preferred: Optional[int], port_min: int, port_max: int) -> Iterator[int]:
    if preferred is not None:
        yield preferred
    for port in range(port_min, port_max + 1):
        if port != preferred:
            yield port


def allocate_port(
    preferred: Optional[int],
    port_min: int,
    port_max: int,
    host: str = "0.0.0.0",
    logger: Optional[logging.Logger] = None,
) -> int:
    """
    Return the first free port: ``preferred`` first, then ``port_min..port_max``.

    A preferred port of 0 is returned as-is so the caller binds an ephemeral
    port. The probe result is only advisory; the caller's real bind decides.
    """
    log = logger or LOG
    if port_min > port_max or port_min < 1 or port_max > 65535:
        raise ValueError(f"invalid port range {port_min}-{port_max}")
    if preferred == 0:
        log.debug("Ephemeral port requested")
        return 0
    for port in candidate_ports(preferred, port_min, port_max):
        if port_is_free(port, host):
            log.info("Found available port: %d", port)
            return port
        log.debug("Port %d not available", port)
    raise NoPortAvailable(preferred, port_min, port_max)
