"""
=============================================================================
IDENTD CLI ENTRY POINT
=============================================================================

USAGE
─────

    # Answer as the current login name on 0.0.0.0:113 (needs root)
    sudo python -m identd

    # Fixed identity on an unprivileged port
    python -m identd --user alice --port 11300

    # Shorter client timeout, verbose logs
    python -m identd -u alice -p 11300 --timeout 2000 --log-level DEBUG

Every option also has an environment variable (IDENTD_USER, IDENTD_HOST,
IDENTD_PORT, IDENTD_TIMEOUT, IDENTD_WORKERS, IDENTD_LOG_LEVEL). Command-line
options win over the environment.

=============================================================================
SHUTDOWN
=============================================================================

SIGINT (Ctrl+C) and SIGTERM (docker stop, systemctl stop, kill) ask the
server to stop, then the process waits for the accept loop to close the
listening socket. The previous signal handlers are restored on the way out.

Exit status:
    0   stopped by a signal
    1   the server stopped on its own (e.g. port 113 already in use)
    2   bad arguments or configuration

=============================================================================
"""

import argparse
import getpass
import logging
import os
import signal
import sys
import threading
from typing import List, Optional

from . import __version__
from .config import ServerConfig
from .events import ErrorEvent
from .server import IdentServer


logger = logging.getLogger("identd")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="identd",
        description="Minimal RFC 1413 ident server answering with a fixed identity",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m identd                         # Current user on 0.0.0.0:113
  python -m identd --user alice            # Fixed identity
  python -m identd --port 11300            # Unprivileged port
  python -m identd --timeout 2000          # 2 second client timeout
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # IDENTITY
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--user", "-u",
        default=None,
        help="Identity to report (default: $IDENTD_USER or the current login name)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=None,
        help="Address to bind to (default: 0.0.0.0)"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=None,
        help="Port to listen on (default: 113)"
    )

    parser.add_argument(
        "--timeout", "-t",
        type=int,
        default=None,
        help="Client read/write timeout in milliseconds, 0 for none (default: 10000)"
    )

    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=None,
        help="Worker threads kept warm; more start on demand (default: 2)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # META
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"identd {__version__}"
    )

    return parser


def build_config(args: argparse.Namespace) -> ServerConfig:
    """Environment first, then command-line overrides."""
    config = ServerConfig.from_env()

    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.timeout is not None:
        config.timeout = args.timeout
    if args.workers is not None:
        config.min_workers = args.workers
    if args.log_level is not None:
        config.log_level = args.log_level

    config.validate()
    return config


def resolve_identity(args: argparse.Namespace) -> str:
    return args.user or os.getenv("IDENTD_USER") or getpass.getuser()


def setup_logging(config: ServerConfig):
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("identd").setLevel(level)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
        identity = resolve_identity(args)
        server = IdentServer(identity, config)
    except (TypeError, ValueError, KeyError, OSError) as e:
        # getpass.getuser() raises KeyError/OSError when no login name exists
        parser.print_usage(sys.stderr)
        print(f"identd: error: {e}", file=sys.stderr)
        return 2

    setup_logging(config)

    # Runtime failures are already logged by the server at WARNING; only
    # failures on the listener itself are worth escalating.
    def on_error(event: ErrorEvent):
        if event.address is None:
            logger.error(f"Listener failure: {event}")

    server.add_error_handler(on_error)

    shutdown_requested = threading.Event()

    def shutdown_handler(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, shutting down...")
        shutdown_requested.set()

    original_handlers = {
        signal.SIGINT: signal.signal(signal.SIGINT, shutdown_handler),
        signal.SIGTERM: signal.signal(signal.SIGTERM, shutdown_handler),
    }

    try:
        with server:
            server.start()
            logger.info(
                f"Answering ident queries on {config.host}:{config.port} as {identity!r}"
            )

            while not shutdown_requested.is_set() and server.is_running:
                shutdown_requested.wait(0.5)

            server.stop()
            server.wait_for_shutdown(timeout=config.poll_interval * 5)
    finally:
        for sig, handler in original_handlers.items():
            signal.signal(sig, handler)

    return 0 if shutdown_requested.is_set() else 1


if __name__ == "__main__":
    sys.exit(main())
