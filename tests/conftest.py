"""Shared fixtures for the chatroom test suite."""

import os
import random
import sys
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

# Ensure the project root is on sys.path so 'chatroom' package resolves
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Importing chatroom.server creates its data/uploads dirs; keep them out of
# the project tree. Individual tests swap in tmp_path-backed components.
_SCRATCH = Path(tempfile.mkdtemp(prefix="chatroom-tests-"))
os.environ.setdefault("CHATROOM_DATA_DIR", str(_SCRATCH / "data"))
os.environ.setdefault("CHATROOM_UPLOADS_DIR", str(_SCRATCH / "uploads"))

from chatroom.accounts import CredentialStore, _login_attempts
from chatroom.broadcast import BroadcastChannel
from chatroom.coordinator import SessionCoordinator
from chatroom.message_store import MessageStore
from chatroom.participant_log import ParticipantLog
from chatroom.presence import PresenceRegistry


def filter_ws_messages(ws_mock, msg_type: str) -> list[dict]:
    """Extract all events of a given type sent through a mock WebSocket."""
    return [
        c[0][0]
        for c in ws_mock.send_json.call_args_list
        if isinstance(c[0][0], dict) and c[0][0].get("type") == msg_type
    ]


@pytest.fixture
def ws_filter():
    return filter_ws_messages


@pytest.fixture
def message_store(tmp_path):
    return MessageStore(tmp_path / "data" / "messages.json")


@pytest.fixture
def presence():
    return PresenceRegistry()


@pytest.fixture
async def channel():
    ch = BroadcastChannel()
    yield ch
    await ch.close()


@pytest.fixture
def participant_log(tmp_path):
    return ParticipantLog(tmp_path / "data" / "users.json")


@pytest.fixture
def coordinator(message_store, presence, channel, participant_log):
    """A coordinator wired to real components rooted in tmp_path.

    Seeded RNG keeps avatar/colour picks deterministic.
    """
    return SessionCoordinator(
        message_store=message_store,
        presence=presence,
        channel=channel,
        participant_log=participant_log,
        rng=random.Random(1234),
    )


@pytest.fixture
def connect(coordinator, channel):
    """Open a fake connection: returns (connection_id, mock websocket)."""
    def _connect(connection_id: str):
        ws = AsyncMock()
        channel.attach(connection_id, ws)
        coordinator.connect(connection_id)
        return connection_id, ws
    return _connect


@pytest.fixture
def credentials(tmp_path):
    store = CredentialStore(tmp_path / "data" / "accounts.json")
    store.ensure_defaults()
    return store


@pytest.fixture(autouse=True)
def _clean_login_attempts():
    _login_attempts.clear()
    yield
    _login_attempts.clear()


@pytest.fixture
def app(tmp_path, message_store, presence, participant_log, credentials):
    """The FastAPI app with every module-level component swapped for one
    rooted in tmp_path.

    The channel and coordinator are created here rather than reused from
    the unit-test fixtures so WebSocket tests get a fresh pair per test.
    """
    channel = BroadcastChannel()
    coordinator = SessionCoordinator(
        message_store=message_store,
        presence=presence,
        channel=channel,
        participant_log=participant_log,
    )
    uploads_dir = tmp_path / "uploads"
    uploads_dir.mkdir()

    with patch("chatroom.server._message_store", message_store), \
         patch("chatroom.server._participant_log", participant_log), \
         patch("chatroom.server._credentials", credentials), \
         patch("chatroom.server._presence", presence), \
         patch("chatroom.server._channel", channel), \
         patch("chatroom.server._coordinator", coordinator), \
         patch("chatroom.server._uploads_dir", uploads_dir):
        from chatroom.server import app as fastapi_app
        yield fastapi_app


@pytest.fixture
async def client(app):
    """Async HTTP client for testing REST endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
