"""Shared fixtures and utilities for integration tests.

A small in-process session server is started on an ephemeral port for
each test. It speaks just enough of the wire protocol to exercise a real
client round trip: room join, chat fan-out, game start and signal relay.
"""

import asyncio
import json
from typing import Dict, List

import pytest
import pytest_asyncio
from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed


class SessionServer:
    """Relays frames between connected clients the way the real server does."""

    def __init__(self):
        self.clients: Dict[str, object] = {}
        self.received: List[dict] = []
        self.rooms: Dict[str, List[str]] = {}

    async def handler(self, websocket):
        player_id = None
        try:
            async for raw in websocket:
                frame = json.loads(raw)
                self.received.append(frame)
                player_id = frame.get("playerId")
                self.clients[player_id] = websocket
                await self._dispatch(frame)
        except ConnectionClosed:
            pass
        finally:
            if player_id is not None and self.clients.get(player_id) is websocket:
                del self.clients[player_id]

    async def _dispatch(self, frame: dict):
        player_id = frame["playerId"]
        room_id = frame.get("roomId")
        payload = frame.get("payload") or {}

        if frame["type"] == "room:join":
            if room_id == "NOROOM":
                await self.send(player_id, {"type": "room:join", "success": False, "error": "Room not found"})
                return
            members = self.rooms.setdefault(room_id, [])
            if player_id not in members:
                members.append(player_id)
            await self.send(player_id, {"type": "room:join", "success": True, "data": {"roomId": room_id}})
            await self.broadcast(room_id, self.snapshot(room_id, "LOBBY"))
        elif frame["type"] == "chat:send":
            await self.broadcast(room_id, {"type": "chat:new", "data": {
                "messageId": str(len(self.received)),
                "playerId": player_id,
                "text": payload["text"],
            }})
        elif frame["type"] == "game:start":
            state = self.snapshot(room_id, "HIDING")
            state["data"]["basecamp"] = payload.get("basecamp")
            await self.broadcast(room_id, state)
        elif frame["type"] == "webrtc:signal":
            await self.send(payload["targetId"], {
                "type": "webrtc:signal",
                "playerId": player_id,
                "data": {"signal": payload["signal"]},
            })
        elif frame["type"] == "room:leave":
            self.rooms.get(room_id, []).remove(player_id)
            await self.send(player_id, {"type": "room:leave", "success": True})

    def snapshot(self, room_id: str, status: str) -> dict:
        players = [
            {"playerId": pid, "team": "THIEF" if n % 2 else "POLICE"}
            for n, pid in enumerate(self.rooms.get(room_id, []))
        ]
        return {"type": "game:state", "data": {"status": status, "players": players}}

    async def send(self, player_id: str, frame: dict):
        websocket = self.clients.get(player_id)
        if websocket is not None:
            await websocket.send(json.dumps(frame))

    async def broadcast(self, room_id: str, frame: dict):
        for pid in list(self.rooms.get(room_id, [])):
            await self.send(pid, frame)


@pytest_asyncio.fixture
async def session_server():
    """Start a session server on an ephemeral port; yields (ws_url, server)."""
    state = SessionServer()
    async with serve(state.handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        yield f"ws://127.0.0.1:{port}", state


async def wait_until(condition, timeout: float = 5.0):
    """Poll ``condition`` on the loop until it holds or ``timeout`` expires."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            pytest.fail("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def wait():
    return wait_until
