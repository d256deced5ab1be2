"""Shared test fixtures and configuration for backend tests."""
from typing import List

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from dmrelay.chat.service import ChatRelay
from dmrelay.config import AppConfig, PresenceSettings
from dmrelay.main import create_app

# Short enough to keep the suite fast, long enough to observe the offline window.
TEST_REAP_DELAY = 0.05


class FakeWebSocket:
    """Stand-in for a FastAPI WebSocket that records outgoing frames."""

    def __init__(self) -> None:
        self.accepted = False
        self.sent: List[dict] = []
        self.fail = False

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: dict) -> None:
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(data)

    def of_type(self, event_type: str) -> List[dict]:
        return [frame for frame in self.sent if frame["type"] == event_type]

    def clear(self) -> None:
        self.sent.clear()


async def join(relay: ChatRelay, username: str, user_id: str):
    """Connect a fake socket and send a join frame. Returns (connection_id, ws)."""
    ws = FakeWebSocket()
    connection_id = await relay.connect(ws)
    await relay.dispatch(connection_id, {"type": "join", "username": username, "userId": user_id})
    return connection_id, ws


def make_config(**presence) -> AppConfig:
    presence.setdefault("reap_delay_seconds", TEST_REAP_DELAY)
    return AppConfig(presence=PresenceSettings(**presence))


@pytest_asyncio.fixture
async def relay():
    """A fresh relay with a short reap delay; pending reaps are cancelled afterwards."""
    relay = ChatRelay(make_config())
    yield relay
    await relay.shutdown()


@pytest.fixture
def api_client():
    """Provide a TestClient with the lifespan running (so app.state.relay exists)."""
    with TestClient(create_app(make_config())) as client:
        yield client
