from __future__ import annotations

import logging
import socket

LOG = logging.getLogger(__name__)


def best_local_ipv4(probe_host: str = "8.8.8.8") -> str:
    """Address of the interface holding the default route, or 127.0.0.1.

    Connecting a UDP socket only selects a route; no packet is sent.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect((probe_host, 80))
            addr = s.getsockname()[0]
    except OSError as exc:
        LOG.warning("Could not find network IP (%s), using localhost", exc)
        return "127.0.0.1"
    LOG.debug("Found local IP address: %s", addr)
    return addr
