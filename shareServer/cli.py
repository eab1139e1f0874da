from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from . import shareServer
from .config import DEFAULT_PORT, PORT_RANGE_MAX, PORT_RANGE_MIN, ServerConfig
from .errors import InvalidRoot, ShareServerError
from .netinfo import best_local_ipv4
from .server import StopReason

LOG = logging.getLogger("shareServer.cli")

POLL_INTERVAL = 0.5


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="serve-folder", description="Share a folder on the local network over HTTP or HTTPS")
    p.add_argument("--root-dir", "-r", default=".", help="Directory to serve files from")
    p.add_argument("--port", type=int, default=DEFAULT_PORT, help="Preferred port (0 for ephemeral)")
    p.add_argument("--port-min", type=int, default=PORT_RANGE_MIN, help="Lowest fallback port")
    p.add_argument("--port-max", type=int, default=PORT_RANGE_MAX, help="Highest fallback port")
    p.add_argument("--host", default="0.0.0.0", help="Host/interface to bind")
    p.add_argument("--https", dest="use_tls", action="store_true", help="Serve HTTPS with a throwaway self-signed certificate")
    p.add_argument("--idle-timeout", type=float, default=0, help="Minutes without requests before shutting down (0 disables)")
    p.add_argument("--workers", type=int, default=16, help="Worker threads handling connections")
    p.add_argument("--advertise-host", default=None, help="Host shown in the share URL (default: local IPv4 address)")
    p.add_argument("--log-level", default="INFO", help="Logging level")
    return p


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    root = Path(args.root_dir).resolve()
    if not root.is_dir():
        LOG.error("root directory does not exist or is not a directory: %s", root)
        return 2

    try:
        config = ServerConfig(
            preferred_port=args.port,
            port_range_min=args.port_min,
            port_range_max=args.port_max,
            idle_timeout_minutes=args.idle_timeout,
            use_tls=args.use_tls,
            host=args.host,
            max_workers=args.workers,
        )
        server = shareServer(root_dir=str(root), config=config, logger=LOG)
    except (ValueError, InvalidRoot) as exc:
        LOG.error("%s", exc)
        return 2

    done = threading.Event()

    def _on_signal(signum, frame):
        LOG.info("Received signal %s, stopping...", signum)
        done.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    try:
        server.start()
    except ShareServerError as exc:
        LOG.error("Server failed to start: %s", exc)
        if args.use_tls:
            LOG.error("HTTPS could not be set up; rerun without --https to share unencrypted")
        return 1

    server.stopped.add_done_callback(lambda _f: done.set())
    LOG.info("Share URL: %s", server.url(args.advertise_host or best_local_ipv4()))
    if server.certificate_fingerprint:
        LOG.info("Certificate SHA-256 fingerprint: %s", server.certificate_fingerprint)

    try:
        # wait until signal or idle shutdown
        while not done.wait(POLL_INTERVAL):
            pass
    except KeyboardInterrupt:
        LOG.info("Keyboard interrupt received, stopping server")
    finally:
        server.stop()

    if server.stopped.done() and server.stopped.result() is StopReason.IDLE:
        LOG.info("Server stopped automatically after %s minutes of inactivity", args.idle_timeout)
    return 0


if __name__ == "__main__":
    sys.exit(main())
