"""
=============================================================================
LISTENING SOCKET
=============================================================================

The Listener owns the server's TCP listening socket. It is created, used and
closed by the accept-loop thread only; no other thread touches it.

SOCKET LIFECYCLE:
─────────────────

    socket()  ──►  bind()  ──►  listen()  ──►  accept() ... accept()  ──►  close()
    open()         open()       open()         accept()                    close()

=============================================================================
POLLING ACCEPT
=============================================================================

A plain accept() blocks until a client connects, which could be forever.
The accept loop must notice stop() within a bounded time, so the listening
socket gets a timeout equal to the poll interval:

    while not stopped:
        conn = listener.accept()     # waits at most poll_interval seconds
        if conn is None:
            continue                 # nobody came; check the stop flag again
        dispatch(conn)

A connection that arrives mid-wait is accepted immediately, so the poll
interval only bounds how long a stop request takes to be observed.

=============================================================================
"""

import socket
import logging
from typing import Optional, Tuple

from .connection import Connection


logger = logging.getLogger(__name__)


class Listener:
    """
    TCP listening socket with a polling accept().

    Usage:
        listener = Listener("0.0.0.0", 113)
        listener.open()
        try:
            while running:
                conn = listener.accept()
                if conn is not None:
                    handle(conn)
        finally:
            listener.close()
    """

    def __init__(
        self,
        host: str,
        port: int,
        backlog: int = 16,
        poll_interval: float = 1.0,
        max_line_length: int = 1000,
    ):
        self.host = host
        self.port = port
        self.backlog = backlog
        self.poll_interval = poll_interval
        self.max_line_length = max_line_length

        self._socket: Optional[socket.socket] = None

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        """The bound (host, port); reflects the real port when port=0."""
        if self._socket is None:
            return None
        return self._socket.getsockname()[:2]

    def open(self):
        """
        Create, bind and listen.

        Raises:
            OSError: If the address can't be bound. Typical causes are
                     "Address already in use" and "Permission denied"
                     (port 113 is privileged on Unix).
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            # Lets a restarted server rebind while old connections sit in
            # TIME_WAIT. It does not allow two live listeners on one port.
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.port))
            sock.listen(self.backlog)
            sock.settimeout(self.poll_interval)
        except OSError as e:
            sock.close()
            logger.error(f"Failed to bind to {self.host}:{self.port}: {e}")
            raise

        self._socket = sock
        host, port = self.address
        logger.info(f"Ident server listening on {host}:{port}")

    def accept(self) -> Optional[Connection]:
        """
        Wait up to poll_interval seconds for a client.

        Returns:
            A Connection for the new client, or None if none arrived.

        Raises:
            RuntimeError: If the listener is not open.
            ConnectionError: If a pending client went away before it could
                             be accepted. The listener is still usable.
            OSError: For failures of the listening socket itself.
        """
        if self._socket is None:
            raise RuntimeError("Listener is not open")

        try:
            client_socket, client_address = self._socket.accept()
        except socket.timeout:
            return None

        logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

        return Connection(
            socket=client_socket,
            address=client_address[:2],
            max_line_length=self.max_line_length,
        )

    def close(self):
        """Close the listening socket. Idempotent, never raises."""
        if self._socket is None:
            return

        try:
            self._socket.close()
        except OSError:
            pass
        self._socket = None

        logger.info("Ident server stopped listening")
