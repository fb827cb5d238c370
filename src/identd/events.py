"""
=============================================================================
ERROR EVENTS
=============================================================================

The server does its real work on background threads: the accept loop runs
on one thread and every connection is handled on a pool worker. Exceptions
raised there can't reach whoever called start() - that call returned long
ago. Instead, failures are packaged into an ErrorEvent and handed to any
observers registered on the server.

    ┌──────────────┐   exception    ┌────────────┐   handler(event)   ┌──────────┐
    │ accept loop  │ ─────────────► │ ErrorEvent │ ─────────────────► │ observer │
    │ or handler   │                └────────────┘                    └──────────┘
    └──────────────┘

An event is built fresh for each failure, delivered synchronously on the
thread where the failure happened, and then dropped.

=============================================================================
"""

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class ErrorEvent:
    """
    Describes a failure that happened while serving ident requests.

    Every field is optional, so an event can carry a description, an
    exception, both, or neither:

        ErrorEvent("Listener closed unexpectedly")
        ErrorEvent(exception=TimeoutError("read timed out"))
        ErrorEvent("Accept failed", exception=err)
        ErrorEvent()

    Attributes:
        description: Explicit text describing the failure.
        exception: The exception that caused the failure, if any.
        address: The peer (ip, port) when the failure belongs to a
                 single connection. None for listener-level failures.
    """
    description: Optional[str] = None
    exception: Optional[BaseException] = None
    address: Optional[Tuple[str, int]] = None

    @property
    def message(self) -> Optional[str]:
        """
        The effective message for this event.

        The explicit description wins. Without one, the exception's own
        text is used (or its class name when the exception has no text,
        e.g. a bare TimeoutError()). With neither, there is no message.
        """
        if self.description is not None:
            return self.description
        if self.exception is not None:
            return str(self.exception) or type(self.exception).__name__
        return None

    def __str__(self) -> str:
        message = self.message or "unknown error"
        if self.address:
            return f"{self.address[0]}:{self.address[1]}: {message}"
        return message
