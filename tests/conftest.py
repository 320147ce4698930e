"""Shared test fixtures for the session client tests."""
import asyncio
import json
from io import StringIO
from typing import Any, Dict, List, Optional

import pytest
from aiortc import RTCSessionDescription
from pyee.asyncio import AsyncIOEventEmitter
from rich.console import Console
from websockets.exceptions import ConnectionClosed
from websockets.frames import Close
from websockets.protocol import State

from client.config_loader import ConfigLoader
from client.notifier import Notifier
from utils.storage import KeyValueStore

_END = object()


class FakeWebSocket:
    """Stands in for a websockets client connection."""

    def __init__(self, uri: str = "ws://test"):
        self.uri = uri
        self.state = State.OPEN
        self.sent: List[str] = []
        self.fail_next_send = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    @property
    def sent_frames(self) -> List[Dict[str, Any]]:
        return [json.loads(raw) for raw in self.sent]

    @property
    def sent_types(self) -> List[str]:
        return [frame["type"] for frame in self.sent_frames]

    async def send(self, raw: str):
        if self.state is not State.OPEN or self.fail_next_send:
            self.fail_next_send = False
            raise ConnectionClosed(None, None)
        self.sent.append(raw)

    def feed(self, frame: Any):
        """Queue an inbound frame (dict is JSON-encoded, str sent as-is)."""
        self._inbox.put_nowait(json.dumps(frame) if isinstance(frame, dict) else frame)

    def drop(self, code: int = 1006, reason: str = "gone"):
        """Simulate the server closing the connection."""
        self.state = State.CLOSED
        self._inbox.put_nowait(ConnectionClosed(Close(code, reason), None))

    async def close(self):
        if self.state is not State.CLOSED:
            self.state = State.CLOSED
            self._inbox.put_nowait(_END)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is _END:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item


class FakeConnector:
    """Callable replacement for websockets.connect."""

    def __init__(self):
        self.sockets: List[FakeWebSocket] = []
        self.error: Optional[BaseException] = None
        self.delay: float = 0.0
        self.delays: Dict[str, float] = {}
        self.calls = 0

    @property
    def last(self) -> FakeWebSocket:
        return self.sockets[-1]

    async def __call__(self, uri: str) -> FakeWebSocket:
        self.calls += 1
        delay = self.delays.get(uri, self.delay)
        if delay:
            await asyncio.sleep(delay)
        if self.error is not None:
            raise self.error
        ws = FakeWebSocket(uri)
        self.sockets.append(ws)
        return ws


class FakeSender:
    def __init__(self, track):
        self.track = track


class FakePeerConnection(AsyncIOEventEmitter):
    """Enough of RTCPeerConnection for signaling tests."""

    instances: List["FakePeerConnection"] = []

    def __init__(self):
        super().__init__()
        self.connectionState = "new"
        self.localDescription = None
        self.remoteDescription = None
        self.senders: List[FakeSender] = []
        self.candidates: List[Any] = []
        self.closed = False
        self.fail_offer = False
        FakePeerConnection.instances.append(self)

    def addTrack(self, track):
        sender = FakeSender(track)
        self.senders.append(sender)
        return sender

    async def createOffer(self):
        if self.fail_offer:
            raise RuntimeError("offer failed")
        return RTCSessionDescription(sdp="v=0 offer", type="offer")

    async def createAnswer(self):
        return RTCSessionDescription(sdp="v=0 answer", type="answer")

    async def setLocalDescription(self, description):
        self.localDescription = description

    async def setRemoteDescription(self, description):
        self.remoteDescription = description

    async def addIceCandidate(self, candidate):
        self.candidates.append(candidate)

    async def close(self):
        self.closed = True
        self.connectionState = "closed"

    def set_state(self, state: str):
        self.connectionState = state
        self.emit("connectionstatechange")


class FakeAudioTrack:
    kind = "audio"

    def __init__(self):
        self.stopped = False

    async def recv(self):
        raise RuntimeError("no frames in tests")

    def stop(self):
        self.stopped = True


class FakeMedia:
    """Stands in for aiortc's MediaPlayer."""

    def __init__(self):
        self.audio = FakeAudioTrack()


class RecordingNotifier(Notifier):
    def __init__(self):
        self.alerts: List[tuple] = []
        self.vibrations: List[tuple] = []
        self.proximity: List[Optional[str]] = []

    def alert(self, title, message):
        self.alerts.append((title, message))

    def vibrate(self, pattern=()):
        self.vibrations.append(tuple(pattern))

    def show_proximity(self, message):
        self.proximity.append(message)

    def hide_proximity(self):
        self.proximity.append(None)


@pytest.fixture(autouse=True)
def reset_fake_peers():
    FakePeerConnection.instances = []
    yield
    FakePeerConnection.instances = []


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def storage():
    return KeyValueStore()


@pytest.fixture
def temp_config_dir(tmp_path, monkeypatch):
    """Config directory with fast timings; ConfigLoader is pointed at it."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    settings = {
        "server": {"api_base_url": "http://test.local:9001/", "connect_timeout_seconds": 0.2},
        "session": {
            "leave_grace_seconds": 0.01,
            "location_interval_seconds": 0.01,
            "proximity_alert_seconds": 0.05,
        },
        "identity": {"path": str(tmp_path / "identity.json")},
    }
    (config_dir / "client_settings.json").write_text(json.dumps(settings))

    monkeypatch.delenv("PVT_API_BASE_URL", raising=False)
    ConfigLoader._instance = None
    ConfigLoader._config_dir = str(config_dir)
    yield config_dir
    ConfigLoader._instance = None
    ConfigLoader._config_dir = "config"


@pytest.fixture
def config(temp_config_dir):
    return ConfigLoader()


@pytest.fixture
def peer_factory():
    return FakePeerConnection


@pytest.fixture
def media_factory():
    return FakeMedia


@pytest.fixture
def mock_console(monkeypatch):
    """Mock Rich Console for UI tests."""
    output = StringIO()
    console = Console(file=output, force_terminal=False, width=100, legacy_windows=False)

    # Replace global console in ui module
    import client.ui as ui_module
    monkeypatch.setattr(ui_module, 'console', console)

    return console, output
