"""Shared pytest fixtures for file-converter tests."""

import asyncio
import time
from collections.abc import Callable

import pytest_asyncio

from file_converter.process_manager.authorizer import (
    DEFAULT_ALLOWED_COMMANDS,
    CommandAuthorizer,
)
from file_converter.process_manager.operations import SessionOperations
from file_converter.process_manager.supervisor import SessionSupervisor

SETTLE_SECONDS = 0.5


async def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll ``predicate`` until it holds or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.05)
    return predicate()


@pytest_asyncio.fixture
async def supervisor():
    """A supervisor with an isolated store; kills leftover sessions on teardown."""
    sv = SessionSupervisor(
        settle_seconds=SETTLE_SECONDS,
        sweep_interval=3600,
        stale_after=1800,
    )
    yield sv
    await sv.close()


@pytest_asyncio.fixture
async def operations(supervisor: SessionSupervisor) -> SessionOperations:
    # ``sleep`` is not on the production allow-list but gives tests a
    # long-running command that prints nothing.
    authorizer = CommandAuthorizer(DEFAULT_ALLOWED_COMMANDS | {"sleep"})
    return SessionOperations(supervisor, authorizer)
