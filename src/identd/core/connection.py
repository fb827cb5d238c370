"""
=============================================================================
CLIENT CONNECTION
=============================================================================

A Connection wraps one accepted client socket for the length of a single
ident exchange:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     One Ident Exchange                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   set_timeout(ms)    Bound every recv()/send() on this socket       │
    │        │                                                             │
    │        ▼                                                             │
    │   read_line()        Buffer bytes until "\\n" (or the peer closes)   │
    │        │                                                             │
    │        ▼                                                             │
    │   send_line(text)    sendall(text + "\\r\\n")                         │
    │        │                                                             │
    │        ▼                                                             │
    │   close()            FIN, drain leftovers, release the descriptor   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

TCP is a byte stream, so one recv() may return half a line or a line plus
extra bytes. read_line() keeps pulling chunks until it sees a newline.

Errors are NOT swallowed here. A timeout, reset or oversized line raises,
and the server reports it through its error channel. The `with` block
guarantees the socket is closed either way.

=============================================================================
"""

import socket
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional, Tuple

from ..config import to_socket_timeout
from ..protocol import LINE_TERMINATOR


logger = logging.getLogger(__name__)


@dataclass
class Connection:
    """
    One accepted client socket.

    Attributes:
        socket: The client socket.
        address: Client's (ip, port) tuple.
        id: Short random identifier used in log lines.
        buffer_size: Bytes requested per recv() call.
        max_line_length: Longest request line accepted, in bytes.
        drain_timeout: Total seconds spent discarding unread input on close.
        max_drain_bytes: Most bytes discarded on close before giving up.
    """

    socket: socket.socket
    address: Tuple[str, int]

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    buffer_size: int = 1024
    max_line_length: int = 1000
    drain_timeout: float = 0.5
    max_drain_bytes: int = 64 * 1024

    _buffer: bytes = field(default=b"", repr=False)
    _closed: bool = field(default=False, repr=False)

    def __post_init__(self):
        # Accepted sockets can inherit the listener's timeout on some
        # platforms; start from plain blocking mode.
        self.socket.setblocking(True)

    @property
    def closed(self) -> bool:
        return self._closed

    def set_timeout(self, milliseconds: int):
        """Apply a read/write timeout in milliseconds (0 = none)."""
        self.socket.settimeout(to_socket_timeout(milliseconds))

    def read_line(self) -> Optional[str]:
        """
        Read one line from the client.

        The line ends at "\\n"; a trailing "\\r" is removed. If the client
        closes its side before sending a newline, whatever arrived is the
        line.

        Returns:
            The decoded line, or None if the client sent nothing at all.

        Raises:
            TimeoutError: If the socket timeout expires first.
            ValueError: If the line exceeds max_line_length bytes.
            OSError: If the connection fails (e.g. reset by peer).
        """
        try:
            while b"\n" not in self._buffer:
                if len(self._buffer) > self.max_line_length:
                    raise ValueError(
                        f"Request line too long: more than {self.max_line_length} bytes"
                    )

                chunk = self.socket.recv(self.buffer_size)
                if not chunk:
                    break  # Peer closed its side
                self._buffer += chunk
        except socket.timeout as e:
            raise TimeoutError("Timed out waiting for request line") from e

        if not self._buffer:
            return None

        line, _, self._buffer = self._buffer.partition(b"\n")
        if len(line) > self.max_line_length:
            raise ValueError(
                f"Request line too long: {len(line)} bytes (max {self.max_line_length})"
            )
        if line.endswith(b"\r"):
            line = line[:-1]

        return line.decode("utf-8", errors="replace")

    def send_line(self, text: str):
        """
        Send one line, terminated with CRLF.

        Raises:
            TimeoutError: If the socket timeout expires before all bytes
                          are handed to the kernel.
            OSError: If the connection fails.
        """
        data = (text + LINE_TERMINATOR).encode("utf-8")
        try:
            self.socket.sendall(data)
        except socket.timeout as e:
            raise TimeoutError("Timed out sending response") from e

    def close(self):
        """
        Close the connection. Safe to call more than once.

        1. shutdown(SHUT_WR)   send FIN so the client sees end-of-response
        2. drain               read and discard anything the client still
                               sent, so close() doesn't answer it with RST
                               and destroy the response in flight
        3. close()             release the file descriptor
        """
        if self._closed:
            return
        self._closed = True

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # Peer already gone

        # One deadline and a byte cap for the whole drain, so a client that
        # keeps trickling data can't hold the worker.
        deadline = time.monotonic() + self.drain_timeout
        drained = 0
        try:
            while drained < self.max_drain_bytes:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self.socket.settimeout(remaining)
                chunk = self.socket.recv(self.buffer_size)
                if not chunk:
                    break
                drained += len(chunk)
        except OSError:
            pass  # socket.timeout is an OSError too

        try:
            self.socket.close()
        except OSError:
            pass

        logger.debug(f"[{self.id}] Connection from {self.address[0]}:{self.address[1]} closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
