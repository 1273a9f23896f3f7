"""Shared fixtures: a mocked socket.io client behind a real ConnectionManager."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from chatsync.connection import ConnectionManager


def make_socket_client(connected: bool = True) -> MagicMock:
    client = MagicMock()
    client.connected = connected
    client.emit = AsyncMock()
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    return client


def emitted(client: MagicMock, event: str) -> list:
    """Payloads emitted for *event*, in order."""
    return [c.args[1] for c in client.emit.await_args_list if c.args[0] == event]


@pytest.fixture
def client() -> MagicMock:
    return make_socket_client()


@pytest.fixture
def manager(client) -> ConnectionManager:
    return ConnectionManager(client=client)
