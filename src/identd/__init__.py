"""
=============================================================================
IDENTD - Minimal RFC 1413 Identification Server
=============================================================================

Some services (IRC networks are the classic example) connect back to port
113 on your machine and ask "who owns this connection?". This package
answers that question with a fixed, configured identity, without looking
up the real owner of the socket.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    identd/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m identd)
    ├── server.py            # IdentServer: lifecycle, accept loop, handler
    ├── events.py            # ErrorEvent passed to error handlers
    ├── protocol.py          # Port, line terminator, response format
    ├── config.py            # ServerConfig dataclass
    └── core/                # Low-level components
        ├── listener.py      # Listening socket with polled accept()
        ├── connection.py    # Client socket wrapper (line I/O, close)
        └── thread_pool.py   # Worker threads for connection handlers

=============================================================================
QUICK START
=============================================================================

    from identd import IdentServer, ServerConfig

    server = IdentServer("alice", ServerConfig(port=11300))
    server.add_error_handler(lambda event: print("identd:", event))
    server.start()              # background thread, returns immediately

    # $ printf '6191, 23\\r\\n' | nc localhost 11300
    # 6191, 23 : USERID : UNIX : alice

    server.dispose()

=============================================================================
"""

__version__ = "1.0.0"

from .server import (
    IdentServer,
    IdentServerError,
    ServerDisposedError,
    ServerAlreadyRunningError,
)
from .config import ServerConfig, DEFAULT_TIMEOUT
from .events import ErrorEvent
from .protocol import IDENT_PORT

__all__ = [
    "IdentServer",
    "IdentServerError",
    "ServerDisposedError",
    "ServerAlreadyRunningError",
    "ServerConfig",
    "ErrorEvent",
    "DEFAULT_TIMEOUT",
    "IDENT_PORT",
    "__version__",
]
