"""Tests for the command-line entry point's logging setup."""

import logging

from file_converter.__main__ import _QuietClientDisconnect


class ClosedResourceError(Exception):
    pass


def _record(exc: BaseException | None) -> logging.LogRecord:
    exc_info = (type(exc), exc, None) if exc is not None else None
    return logging.LogRecord(
        "mcp.server.streamable_http_manager", logging.ERROR, __file__, 1,
        "Error in message router", (), exc_info,
    )


def test_client_disconnect_is_downgraded() -> None:
    record = _record(ClosedResourceError())

    assert _QuietClientDisconnect().filter(record) is True
    assert record.levelno == logging.DEBUG
    assert record.levelname == "DEBUG"
    assert record.exc_info is None
    assert record.getMessage() == "MCP client went away mid-response"


def test_other_errors_pass_through() -> None:
    record = _record(RuntimeError("boom"))

    assert _QuietClientDisconnect().filter(record) is True
    assert record.levelno == logging.ERROR
    assert record.exc_info is not None
