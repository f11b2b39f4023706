"""Shared fixtures for broker, tool and WebSocket tests."""

import asyncio
from typing import Any, Dict
from unittest.mock import AsyncMock

import pytest

from clueprint.broker import BrokerConfig, ExtensionConnection, SessionBroker


class FakeClock:
    """Settable wall clock in epoch seconds."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def broker(clock):
    """Broker with a short request timeout and an injectable clock."""
    return SessionBroker(BrokerConfig(request_timeout=0.5), clock=clock)


def connect(broker: SessionBroker, connection_id: str = "ext_1") -> ExtensionConnection:
    """Install a connection whose send() is an AsyncMock."""
    connection = ExtensionConnection(connection_id, send=AsyncMock())
    broker.on_connection_opened(connection)
    return connection


@pytest.fixture
def connection(broker):
    return connect(broker)


async def sent_command(connection: ExtensionConnection, index: int = -1) -> Dict[str, Any]:
    """Let the submitting task run, then return the command it sent."""
    for _ in range(10):
        if connection.send.await_count:
            break
        await asyncio.sleep(0)
    return connection.send.await_args_list[index].args[0]


async def answer(
    broker: SessionBroker,
    connection: ExtensionConnection,
    response_type: str,
    payload: Any = None,
    error: str = None,
) -> Dict[str, Any]:
    """Reply to the most recent command the way the extension would."""
    command = await sent_command(connection)
    message: Dict[str, Any] = {"type": response_type, "id": command["id"], "payload": payload}
    if error is not None:
        message["error"] = error
    broker.on_extension_message(connection.connection_id, message)
    return command
