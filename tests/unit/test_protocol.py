"""
Unit tests for ident response formatting.
"""

from identd.protocol import (
    IDENT_PORT,
    LINE_TERMINATOR,
    format_response,
)


def test_standard_port():
    assert IDENT_PORT == 113


def test_line_terminator_is_crlf():
    assert LINE_TERMINATOR == "\r\n"


def test_format_response():
    assert format_response("6191, 23", "alice") == "6191, 23 : USERID : UNIX : alice"


def test_request_is_echoed_unvalidated():
    """The port pair is never parsed; any text is echoed back."""
    assert format_response("not a port pair", "bob") == "not a port pair : USERID : UNIX : bob"
