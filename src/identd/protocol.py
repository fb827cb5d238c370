"""
=============================================================================
IDENT PROTOCOL (RFC 1413)
=============================================================================

The Identification Protocol answers one question: "which user owns this
TCP connection?". A remote host (classically an IRC or mail server) opens
a connection back to port 113 on the client's machine and asks about a
port pair:

    Request:    6191, 23\\r\\n
    Response:   6191, 23 : USERID : UNIX : alice\\r\\n
                ────────   ──────   ────   ─────
                 query      type     OS    user

=============================================================================
WHAT WE IMPLEMENT
=============================================================================

This server does NOT look up the real owner of the socket. It answers every
query with one configured identity. The request line is echoed back
(trimmed) without validating the port-pair syntax, and the operating system
is always reported as UNIX whatever the host actually runs.

See https://www.rfc-editor.org/rfc/rfc1413.txt for the full protocol.

=============================================================================
"""

IDENT_PORT = 113
"""The well-known ident port (privileged on Unix, binding needs root)."""

LINE_TERMINATOR = "\r\n"

RESPONSE_TYPE = "USERID"

OPERATING_SYSTEM = "UNIX"


def format_response(request: str, identity: str) -> str:
    """
    Build the response line for a request.

    The terminator is not included; Connection.send_line() appends it.

    Args:
        request: The request line, already trimmed.
        identity: The user name to report.

    Returns:
        "<request> : USERID : UNIX : <identity>"
    """
    return f"{request} : {RESPONSE_TYPE} : {OPERATING_SYSTEM} : {identity}"
