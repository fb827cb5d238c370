"""
=============================================================================
IDENT SERVER
=============================================================================

IdentServer ties the pieces together: it owns the lifecycle, runs the accept
loop on a background thread, hands each client to a pool worker, and fans
failures out to registered observers.

=============================================================================
THREADS
=============================================================================

    caller thread          accept-loop thread           pool workers
    ─────────────          ──────────────────           ────────────
    start() ─── spawn ───► open listener
      returns              start pool
      immediately          while not cancelled:
                               accept() ─── submit ───► _handle_connection()
    stop() ── cancel ──►       (poll_interval)            read line
      returns                                             write response
      immediately          close listener                 close
                           mark run finished
                           shut pool down (no wait)

Only two pieces of state cross threads:

- the per-run cancel/finished Events (threading.Event gives the visibility
  guarantees a polled flag needs);
- the observer list, guarded by self._lock.

The identity never changes. The timeout is read once per connection when the
handler starts; changing it while clients are being served is the caller's
responsibility.

=============================================================================
LIFECYCLE
=============================================================================

    ┌─────────┐  start()   ┌─────────┐  stop() / fatal error   ┌─────────┐
    │ CREATED │ ─────────► │ RUNNING │ ──────────────────────► │ STOPPED │
    └────┬────┘            └────┬────┘ ◄────────────────────── └────┬────┘
         │                      │             start()               │
         │ dispose()            │ dispose()                dispose()│
         ▼                      ▼                                   ▼
    ┌──────────────────────────────────────────────────────────────────┐
    │                           DISPOSED                                │
    │        terminal: start() raises ServerDisposedError               │
    └──────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import logging
import threading
from typing import Callable, List, Optional, Tuple

from .config import ServerConfig
from .core import Connection, Listener, ThreadPool
from .events import ErrorEvent
from .protocol import format_response


logger = logging.getLogger(__name__)


ErrorHandler = Callable[[ErrorEvent], None]


class IdentServerError(RuntimeError):
    """Base class for lifecycle misuse of an IdentServer."""


class ServerDisposedError(IdentServerError):
    """Raised when starting a server that has been disposed."""


class ServerAlreadyRunningError(IdentServerError):
    """Raised when starting a server that is already running."""


class _Run:
    """
    State for one start() call.

    Each run gets its own events, so a previous accept loop that is still
    winding down can only ever mark ITS run as finished.
    """

    def __init__(self, number: int):
        self.number = number
        self.cancelled = threading.Event()
        self.finished = threading.Event()
        # Set once the listener is bound, or once the run gives up trying.
        self.ready = threading.Event()
        self.thread: Optional[threading.Thread] = None
        self.address: Optional[Tuple[str, int]] = None

    @property
    def active(self) -> bool:
        return not (self.cancelled.is_set() or self.finished.is_set())


class IdentServer:
    """
    Minimal RFC 1413 ident server answering with a fixed identity.

    Usage:
        with IdentServer("alice") as server:

            @server.add_error_handler
            def report(event):
                print("identd:", event)

            server.start()          # returns immediately
            ...
            server.stop()
        # dispose() ran on exit

    Every client gets:

        <its request line, trimmed> : USERID : UNIX : alice\\r\\n
    """

    def __init__(self, identity: str, config: Optional[ServerConfig] = None):
        """
        Args:
            identity: The user name reported to every client.
            config: Network, timeout and pool settings. Defaults listen on
                    0.0.0.0:113.

        Raises:
            TypeError: If identity is None or not a string.
            ValueError: If identity is empty or whitespace, or the config
                        is invalid.
        """
        if identity is None:
            raise TypeError("identity must not be None")
        if not isinstance(identity, str):
            raise TypeError(f"identity must be a str, not {type(identity).__name__}")
        if not identity.strip():
            raise ValueError("identity must not be empty or whitespace")

        self.config = config or ServerConfig()
        self.config.validate()

        self._identity = identity
        self._timeout = 0
        self.timeout = self.config.timeout

        self._lock = threading.Lock()
        self._error_handlers: List[ErrorHandler] = []
        self._run: Optional[_Run] = None
        self._runs_started = 0
        self._disposed = False

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def timeout(self) -> int:
        """Per-connection read/write timeout in milliseconds (0 = none)."""
        return self._timeout

    @timeout.setter
    def timeout(self, value: int):
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"timeout must be an int, not {type(value).__name__}")
        if value < 0:
            raise ValueError(f"timeout must be >= 0, got {value}")
        self._timeout = value

    @property
    def is_running(self) -> bool:
        run = self._run
        return run is not None and run.active

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        """Address bound by the current run; None when not listening."""
        run = self._run
        if run is None or run.finished.is_set():
            return None
        return run.address

    # =========================================================================
    # ERROR OBSERVERS
    # =========================================================================

    def add_error_handler(self, handler: ErrorHandler) -> ErrorHandler:
        """
        Register a callable that receives every ErrorEvent.

        Returns the handler, so this also works as a decorator.
        """
        with self._lock:
            self._error_handlers.append(handler)
        return handler

    def remove_error_handler(self, handler: ErrorHandler) -> bool:
        """Unregister a handler. Returns False if it wasn't registered."""
        with self._lock:
            try:
                self._error_handlers.remove(handler)
            except ValueError:
                return False
        return True

    def _report(self, event: ErrorEvent):
        """
        Log an event and deliver it to every observer, on this thread.

        An observer that raises is logged and skipped; the others still
        get the event.
        """
        logger.warning(f"Ident error: {event}")

        with self._lock:
            handlers = list(self._error_handlers)

        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(f"Error handler {handler!r} raised")

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self):
        """
        Start serving in the background.

        Binding happens on the accept-loop thread, so a bind failure does
        not raise here. It is reported to the error handlers and the
        server drops back to not running.

        Raises:
            ServerDisposedError: If dispose() has been called.
            ServerAlreadyRunningError: If the server is already running.
        """
        with self._lock:
            if self._disposed:
                raise ServerDisposedError("IdentServer has been disposed")
            if self._run is not None and self._run.active:
                raise ServerAlreadyRunningError("IdentServer is already running")

            previous = self._run
            self._runs_started += 1
            run = _Run(self._runs_started)
            run.thread = threading.Thread(
                target=self._accept_loop,
                args=(run, previous),
                name=f"identd-accept-{run.number}",
                daemon=True,
            )
            self._run = run

        run.thread.start()

    def stop(self):
        """
        Ask the accept loop to stop. Idempotent; does not wait.

        The loop notices within one poll interval. Clients already being
        served run to completion or to their own timeout.
        """
        run = self._run
        if run is not None and not run.cancelled.is_set():
            logger.info("Stopping ident server...")
            run.cancelled.set()

    def dispose(self):
        """
        Detach all error handlers, stop, and mark the server disposed.

        Idempotent and never raises. Does not wait for in-flight clients.
        """
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
            self._error_handlers.clear()

        self.stop()

    def wait_for_listening(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the current run has bound its socket.

        Returns:
            True once listening; False if the run ended first (e.g. the
            bind failed), the timeout elapsed, or nothing was started.
        """
        run = self._run
        if run is None:
            return False

        run.ready.wait(timeout)
        return run.address is not None and not run.finished.is_set()

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the current accept loop has fully exited.

        Returns:
            True if it has exited (or was never started), False on timeout.
        """
        run = self._run
        if run is None:
            return True
        return run.finished.wait(timeout)

    def __enter__(self) -> "IdentServer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.dispose()
        return False

    # =========================================================================
    # ACCEPT LOOP (background thread, one per start())
    # =========================================================================

    def _accept_loop(self, run: _Run, previous: Optional[_Run]):
        # A stop()/start() pair can race the old loop's exit; let it
        # release the port before we bind.
        if previous is not None and previous.thread is not None:
            previous.thread.join()

        listener = Listener(
            host=self.config.host,
            port=self.config.port,
            backlog=self.config.backlog,
            poll_interval=self.config.poll_interval,
            max_line_length=self.config.max_line_length,
        )
        pool = ThreadPool(
            min_workers=self.config.min_workers,
            idle_timeout=self.config.worker_idle_timeout,
            name=f"identd-{run.number}",
        )

        try:
            listener.open()
            run.address = listener.address
            pool.start()
            run.ready.set()

            while not run.cancelled.is_set():
                try:
                    conn = listener.accept()
                except ConnectionError as e:
                    # The client vanished between SYN and accept(); the
                    # listener itself is fine.
                    self._report(ErrorEvent(exception=e))
                    continue

                if conn is None:
                    continue
                pool.submit(self._handle_connection, args=(conn,))

        except Exception as e:
            self._report(ErrorEvent(exception=e))

        finally:
            listener.close()
            # The run is over once the port is released; stalled handlers
            # must not hold up is_running or wait_for_shutdown().
            run.cancelled.set()
            run.finished.set()
            run.ready.set()
            pool.shutdown(wait=False)
            logger.debug(f"Accept loop {run.number} exited")

    # =========================================================================
    # CONNECTION HANDLER (pool worker)
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """
        Serve one ident exchange: read a line, answer it, close.

        Never raises; every failure becomes an ErrorEvent.
        """
        try:
            with conn:
                conn.set_timeout(self._timeout)

                request = conn.read_line()
                if request is None:
                    return

                request = request.strip()
                if not request:
                    return

                conn.send_line(format_response(request, self._identity))
                logger.debug(f"[{conn.id}] Answered {request!r}")

        except Exception as e:
            self._report(ErrorEvent(exception=e, address=conn.address))
