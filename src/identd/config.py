"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

All tunables for the ident server live in one dataclass. Keeping them in one
place means:

- One obvious spot to look up defaults
- Validation happens once, at construction (fail-fast)
- The CLI, environment variables and tests all build the same object

The identity itself is NOT part of the configuration. It is the one thing
the server can't run without, so it is a required constructor argument of
IdentServer instead.

=============================================================================
UNITS
=============================================================================

    timeout         MILLISECONDS  (applied to each client socket)
    poll_interval   SECONDS       (how often the accept loop checks for stop)

The timeout is in milliseconds because that is the unit the public
IdentServer.timeout property uses. A timeout of 0 means "no timeout":
reads and writes block until the peer acts or disconnects.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional

from .protocol import IDENT_PORT


DEFAULT_TIMEOUT = 10000
"""Default client read/write timeout in milliseconds (10 seconds)."""


@dataclass
class ServerConfig:
    """
    Configuration for the ident server.

    Production (needs root, or CAP_NET_BIND_SERVICE, for port 113):
        ServerConfig()

    Development / tests:
        ServerConfig(host="127.0.0.1", port=11300, log_level="DEBUG")
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """Address to bind to. "0.0.0.0" listens on all interfaces."""

    port: int = IDENT_PORT
    """Port to listen on. 0 lets the OS pick a free port."""

    backlog: int = 16
    """Maximum number of connections queued by the OS before accept()."""

    timeout: int = DEFAULT_TIMEOUT
    """Initial per-connection read/write timeout in milliseconds."""

    poll_interval: float = 1.0
    """
    Seconds the accept loop waits for a connection before re-checking
    whether it has been asked to stop. Bounds how long stop() takes to
    be observed.
    """

    max_line_length: int = 1000
    """Longest request line accepted, in bytes. Longer lines are rejected."""

    # ─────────────────────────────────────────────────────────────────────
    # THREAD POOL SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    min_workers: int = 2
    """
    Workers kept warm. The pool grows past this whenever a connection would
    otherwise wait for a free worker, so slow clients never block others.
    """

    worker_idle_timeout: float = 30.0
    """Seconds an extra worker waits for work before it exits."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        IDENTD_HOST       Bind address (default: 0.0.0.0)
        IDENTD_PORT       Listen port (default: 113)
        IDENTD_TIMEOUT    Client timeout in ms (default: 10000)
        IDENTD_WORKERS    Warm worker threads (default: 2)
        IDENTD_LOG_LEVEL  Logging level (default: INFO)

        Raises:
            ValueError: If a numeric variable can't be parsed.
        """
        return cls(
            host=os.getenv("IDENTD_HOST", "0.0.0.0"),
            port=int(os.getenv("IDENTD_PORT", str(IDENT_PORT))),
            timeout=int(os.getenv("IDENTD_TIMEOUT", str(DEFAULT_TIMEOUT))),
            min_workers=int(os.getenv("IDENTD_WORKERS", "2")),
            log_level=os.getenv("IDENTD_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: On the first invalid field.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.timeout < 0:
            raise ValueError("timeout must be >= 0")

        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")

        if self.max_line_length < 1:
            raise ValueError("max_line_length must be >= 1")

        if self.min_workers < 1:
            raise ValueError("min_workers must be >= 1")

        if self.worker_idle_timeout <= 0:
            raise ValueError("worker_idle_timeout must be > 0")

    @property
    def timeout_seconds(self) -> Optional[float]:
        """The configured timeout as a socket timeout (None for 0)."""
        return to_socket_timeout(self.timeout)


def to_socket_timeout(milliseconds: int) -> Optional[float]:
    """
    Convert a millisecond timeout to a value for socket.settimeout().

    0 maps to None (blocking). socket.settimeout(0) would instead make the
    socket non-blocking, which is not what a zero timeout means here.
    """
    if milliseconds == 0:
        return None
    return milliseconds / 1000.0
