"""WebSocket message protocol definitions for the Police vs Thieves session client."""
import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ServerMessageType(Enum):
    """Message types sent from server to client.

    The server speaks two generations of tags: legacy upper-case names and
    colon-namespaced ones. Both are accepted.
    """
    # Room lifecycle
    ROOM_CREATED = "room:created"
    ROOM_CREATED_LEGACY = "ROOM_CREATED"
    ROOM_JOINED = "room:join"
    ROOM_JOINED_LEGACY = "ROOM_JOINED"
    ROOM_LEAVE = "room:leave"

    # Snapshots and patches
    GAME_STATE = "game:state"
    GAME_START = "game:start"
    PLAYER_JOINED = "PLAYER_JOINED"
    PLAYER_LEFT = "PLAYER_LEFT"
    PLAYER_MOVED = "PLAYER_MOVED"
    PHASE_CHANGED = "PHASE_CHANGED"
    LOCATION_UPDATE = "location:update"
    BASECAMP_SET = "basecamp:set"
    BASECAMP_BROADCAST = "basecamp:broadcast"

    # Teams
    TEAM_ASSIGNED = "team:assigned"
    TEAM_ASSIGNED_LEGACY = "TEAM_ASSIGNED"

    # Chat
    CHAT_NEW = "chat:new"

    # Chase
    PROXIMITY_NEAR = "proximity:near"
    CAPTURE_RESULT = "capture:result"
    JAIL_RESULT = "jail:result"
    RELEASE_RESULT = "release:result"
    PLAYER_CAPTURED = "PLAYER_CAPTURED"

    # Game end
    GAME_END = "game:end"
    GAME_ENDED_LEGACY = "GAME_ENDED"

    # Voice
    WEBRTC_SIGNAL = "webrtc:signal"
    PTT_STATUS = "ptt:status"


class ClientMessageType(Enum):
    """Message types sent from client to server."""
    CREATE_ROOM = "CREATE_ROOM"
    JOIN_ROOM = "room:join"
    LEAVE_ROOM = "room:leave"
    UPDATE_SETTINGS = "room:settings:update"
    START_GAME = "game:start"
    SHUFFLE_TEAMS = "team:shuffle"
    UPDATE_LOCATION = "UPDATE_LOCATION"
    ATTEMPT_CAPTURE = "ATTEMPT_CAPTURE"
    RELEASE_CAPTURE = "capture:release"
    CHAT_SEND = "chat:send"
    PTT_REQUEST = "ptt:request"
    PTT_RELEASE = "ptt:release"
    WEBRTC_SIGNAL = "webrtc:signal"


class SignalType(Enum):
    """Peer negotiation envelope types carried inside ``webrtc:signal``."""
    OFFER = "offer"
    ANSWER = "answer"
    ICE = "ice"


BROADCAST_TARGET = "broadcast"

ROOM_CODE_LENGTH = 6
_ROOM_CODE_PATTERN = re.compile(r"([A-Z0-9]{6})")


@dataclass
class Message:
    """Inbound frame from the session server."""
    type: str
    data: Optional[Dict[str, Any]] = None
    success: Optional[bool] = None
    error: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    player_id: Optional[str] = None

    @property
    def body(self) -> Dict[str, Any]:
        """Return ``data`` or, for legacy frames, ``payload``; never None."""
        if isinstance(self.data, dict):
            return self.data
        if isinstance(self.payload, dict):
            return self.payload
        return {}

    @property
    def is_failure(self) -> bool:
        return self.success is False

    def to_json(self) -> str:
        """Serialize message to JSON string."""
        obj: Dict[str, Any] = {"type": self.type}
        if self.data is not None:
            obj["data"] = self.data
        if self.success is not None:
            obj["success"] = self.success
        if self.error is not None:
            obj["error"] = self.error
        if self.payload is not None:
            obj["payload"] = self.payload
        if self.player_id is not None:
            obj["playerId"] = self.player_id
        return json.dumps(obj)

    @classmethod
    def from_json(cls, json_str: str) -> 'Message':
        """Deserialize message from JSON string.

        Raises:
            ValueError: if the text is not JSON or not an object with a
                string ``type`` (``json.JSONDecodeError`` is a ValueError).
        """
        obj = json.loads(json_str)
        if not isinstance(obj, dict):
            raise ValueError("frame is not a JSON object")
        msg_type = obj.get("type")
        if not isinstance(msg_type, str) or not msg_type:
            raise ValueError("frame has no type tag")
        data = obj.get("data")
        payload = obj.get("payload")
        success = obj.get("success")
        error = obj.get("error")
        player_id = obj.get("playerId")
        return cls(
            type=msg_type,
            data=data if isinstance(data, dict) else None,
            success=success if isinstance(success, bool) else None,
            error=str(error) if error is not None else None,
            payload=payload if isinstance(payload, dict) else None,
            player_id=player_id if isinstance(player_id, str) else None,
        )


@dataclass
class Command:
    """Outbound frame addressed to the session server."""
    type: str
    player_id: str
    room_id: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "playerId": self.player_id,
            "roomId": self.room_id,
            "payload": self.payload,
        }

    def to_json(self) -> str:
        """Serialize command to JSON string."""
        return json.dumps(self.to_dict())


# Room codes
def normalize_room_code(code: str) -> str:
    """Upper-case and strip a room code typed or scanned by the user."""
    return (code or "").strip().upper()


def is_valid_room_code(code: str) -> bool:
    """Check that a normalized code is exactly six letters or digits."""
    return len(code) == ROOM_CODE_LENGTH and _ROOM_CODE_PATTERN.fullmatch(code) is not None


def extract_room_code(text: str) -> Optional[str]:
    """Pull the first six-character alphanumeric run out of scanned text.

    QR payloads may be a bare code or a URL that embeds it.
    """
    if not text:
        return None
    match = _ROOM_CODE_PATTERN.search(text.upper())
    return match.group(1) if match else None


# Client -> Server command builders
def create_room_command(player_id: str, nickname: str, settings: Dict[str, Any]) -> Command:
    """Build CREATE_ROOM command. The room id is assigned by the server."""
    return Command(
        type=ClientMessageType.CREATE_ROOM.value,
        player_id=player_id,
        room_id="",
        payload={"nickname": nickname, "settings": settings},
    )


def join_room_command(player_id: str, room_code: str, nickname: str) -> Command:
    """Build room:join command."""
    return Command(
        type=ClientMessageType.JOIN_ROOM.value,
        player_id=player_id,
        room_id=normalize_room_code(room_code),
        payload={"nickname": nickname},
    )


def leave_room_command(player_id: str, room_id: str) -> Command:
    """Build room:leave command."""
    return Command(type=ClientMessageType.LEAVE_ROOM.value, player_id=player_id, room_id=room_id)


def update_settings_command(player_id: str, room_id: str, settings: Dict[str, Any]) -> Command:
    """Build room:settings:update command (host only)."""
    return Command(
        type=ClientMessageType.UPDATE_SETTINGS.value,
        player_id=player_id,
        room_id=room_id,
        payload={"settings": settings},
    )


def start_game_command(
    player_id: str,
    room_id: str,
    basecamp: Optional[Dict[str, float]] = None
) -> Command:
    """Build game:start command, optionally carrying the host basecamp."""
    payload: Dict[str, Any] = {}
    if basecamp is not None:
        payload["basecamp"] = basecamp
    return Command(
        type=ClientMessageType.START_GAME.value,
        player_id=player_id,
        room_id=room_id,
        payload=payload,
    )


def shuffle_teams_command(player_id: str, room_id: str) -> Command:
    """Build team:shuffle command (host only)."""
    return Command(type=ClientMessageType.SHUFFLE_TEAMS.value, player_id=player_id, room_id=room_id)


def update_location_command(player_id: str, room_id: str, location: Dict[str, Any]) -> Command:
    """Build UPDATE_LOCATION command."""
    return Command(
        type=ClientMessageType.UPDATE_LOCATION.value,
        player_id=player_id,
        room_id=room_id,
        payload={"location": location},
    )


def attempt_capture_command(
    player_id: str,
    room_id: str,
    thief_id: str,
    source: str = "button"
) -> Command:
    """Build ATTEMPT_CAPTURE command."""
    return Command(
        type=ClientMessageType.ATTEMPT_CAPTURE.value,
        player_id=player_id,
        room_id=room_id,
        payload={"thiefId": thief_id, "source": source},
    )


def release_capture_command(player_id: str, room_id: str, thief_id: str) -> Command:
    """Build capture:release command."""
    return Command(
        type=ClientMessageType.RELEASE_CAPTURE.value,
        player_id=player_id,
        room_id=room_id,
        payload={"thiefId": thief_id},
    )


def chat_command(player_id: str, room_id: str, text: str) -> Command:
    """Build chat:send command."""
    return Command(
        type=ClientMessageType.CHAT_SEND.value,
        player_id=player_id,
        room_id=room_id,
        payload={"text": text},
    )


def ptt_command(player_id: str, room_id: str, request: bool) -> Command:
    """Build ptt:request or ptt:release command."""
    msg_type = ClientMessageType.PTT_REQUEST if request else ClientMessageType.PTT_RELEASE
    return Command(type=msg_type.value, player_id=player_id, room_id=room_id)


def signal_command(
    player_id: str,
    room_id: str,
    target_id: str,
    signal: Dict[str, Any]
) -> Command:
    """Build webrtc:signal relay command addressed to a peer or ``broadcast``."""
    return Command(
        type=ClientMessageType.WEBRTC_SIGNAL.value,
        player_id=player_id,
        room_id=room_id,
        payload={"targetId": target_id, "signal": signal},
    )


def parse_signal_message(msg: Message) -> Optional[Dict[str, Any]]:
    """Extract ``{"from": peer_id, "signal": {...}}`` from a webrtc:signal frame."""
    data = msg.data or {}
    payload = msg.payload or {}
    from_id = msg.player_id or data.get("playerId") or payload.get("playerId")
    signal = data.get("signal") or payload.get("signal")
    if not from_id or not isinstance(signal, dict):
        return None
    return {"from": from_id, "signal": signal}
