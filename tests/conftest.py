"""Shared test fixtures."""

import asyncio
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

import pytest
import pytest_asyncio

from helpers import FakeTransport
from idebridge.ide.server import BridgeServer


@pytest.fixture
def temp_dir():
    """Temporary directory for tests."""
    with tempfile.TemporaryDirectory() as d:
        yield Path(d)


@pytest.fixture
def transport():
    """Fake transport for connection tests."""
    return FakeTransport()


@pytest.fixture
def config(temp_dir):
    """Test configuration."""
    from idebridge.config import BridgeConfig

    return BridgeConfig(discovery_dir=temp_dir, workspace=temp_dir)


@dataclass
class RunningBridge:
    """A started server plus what its callbacks observed."""

    server: BridgeServer
    port: int
    requests: list = field(default_factory=list)
    closed: list = field(default_factory=list)


@pytest_asyncio.fixture
async def bridge():
    """Running bridge server recording handler and close calls."""
    requests = []
    closed = []

    server = BridgeServer(
        on_request=lambda connection, message: requests.append(message),
        on_close=closed.append,
    )
    port = await server.start(0)

    yield RunningBridge(server, port, requests, closed)

    server.shutdown()
    await asyncio.wait_for(server.wait_closed(), timeout=2)
