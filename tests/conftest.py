"""
pytest configuration and fixtures.
"""

import socket
import threading
from typing import Generator, List
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from identd import IdentServer, ServerConfig, ErrorEvent


@pytest.fixture
def identity() -> str:
    return "alice"


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def config(free_port: int) -> ServerConfig:
    """Loopback config with a short poll interval so tests stop quickly."""
    return ServerConfig(
        host="127.0.0.1",
        port=free_port,
        poll_interval=0.1,
        min_workers=2,
    )


class ErrorRecorder:
    """Error handler that remembers every event it receives."""

    def __init__(self):
        self.events: List[ErrorEvent] = []
        self._received = threading.Condition()

    def __call__(self, event: ErrorEvent):
        with self._received:
            self.events.append(event)
            self._received.notify_all()

    def wait_for(self, count: int = 1, timeout: float = 5.0) -> bool:
        """Wait until at least `count` events have arrived."""
        with self._received:
            return self._received.wait_for(lambda: len(self.events) >= count, timeout)


@pytest.fixture
def errors() -> ErrorRecorder:
    return ErrorRecorder()


@pytest.fixture
def running_server(
    identity: str, config: ServerConfig, errors: ErrorRecorder
) -> Generator[IdentServer, None, None]:
    """Start a server on loopback and dispose it afterwards."""
    server = IdentServer(identity, config)
    server.add_error_handler(errors)
    server.start()

    if not server.wait_for_listening(timeout=5.0):
        server.dispose()
        raise RuntimeError(f"Server failed to start: {errors.events}")

    yield server

    server.dispose()
    server.wait_for_shutdown(timeout=5.0)


def ident_query(port: int, payload: bytes, timeout: float = 5.0) -> bytes:
    """Send a raw payload and return everything the server sends back."""
    with socket.create_connection(("127.0.0.1", port), timeout=timeout) as client:
        client.sendall(payload)
        return recv_all(client)


def recv_all(client: socket.socket) -> bytes:
    """Read until the server closes its side."""
    chunks = []
    while True:
        chunk = client.recv(1024)
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)
