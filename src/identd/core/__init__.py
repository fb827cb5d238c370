"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The networking plumbing underneath IdentServer:

    ┌──────────────┐  accept()   ┌──────────────┐  submit()  ┌──────────────┐
    │   Listener   │ ──────────► │  Connection  │ ─────────► │  ThreadPool  │
    │ bind/listen  │             │ one client   │            │  workers run │
    │ polled accept│             │ line I/O     │            │  handlers    │
    └──────────────┘             └──────────────┘            └──────────────┘

Each piece has one job and knows nothing about the ident protocol beyond
"lines end in CRLF"; the protocol itself lives in identd.protocol and
identd.server.

=============================================================================
"""

from .listener import Listener
from .connection import Connection
from .thread_pool import ThreadPool

__all__ = [
    "Listener",     # Listening socket with polled accept()
    "Connection",   # One accepted client socket
    "ThreadPool",   # Worker threads for connection handlers
]
