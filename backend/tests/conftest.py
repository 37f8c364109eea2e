"""
Shared test fixtures and configuration.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

# Set test environment variables before importing livechat modules
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("GATEWAY_BACKEND", "local")
os.environ.setdefault("LOCAL_STORAGE_PATH", tempfile.mkdtemp(prefix="livechat_test_"))
os.environ.setdefault("LOG_FILE_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from livechat.chat import MessageStore, NotificationSound, SessionStore  # noqa: E402
from livechat.gateway import LocalGateway  # noqa: E402
from livechat.storage import LocalStorage  # noqa: E402


class TickingClock:
    """Deterministic UTC clock: every call is one second after the previous one."""

    def __init__(self, start: datetime = None, step: timedelta = timedelta(seconds=1)):
        self.current = start or datetime.now(timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        self.current += self.step
        return self.current


class RecordingPlayer:
    """Sound player stand-in that counts playbacks."""

    def __init__(self):
        self.calls = []

    def __call__(self, asset: bytes, volume: float) -> None:
        self.calls.append((asset, volume))


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def blob_storage(tmp_path):
    return LocalStorage(str(tmp_path / "blobs"))


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def gateway(blob_storage, clock):
    return LocalGateway(blob_storage, public_base_url="http://chat.test", clock=clock)


@pytest.fixture
def session_store(gateway):
    return SessionStore(gateway)


@pytest.fixture
def message_store(gateway, session_store):
    return MessageStore(gateway, session_store)


@pytest.fixture
def player():
    return RecordingPlayer()


@pytest.fixture
def notifier(player):
    return NotificationSound(player=player)
