"""Client-side session state: room/game state and local player state."""
import logging
import math
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from tracking.location import LocationSample, now_ms, should_apply_update
from utils.storage import KeyValueStore, NICKNAME_KEY, load_or_create_player_id

logger = logging.getLogger(__name__)


class Phase(Enum):
    """Server-driven game stage."""
    LOBBY = "LOBBY"
    HIDING = "HIDING"
    CHASE = "CHASE"
    END = "END"


class Team(Enum):
    POLICE = "POLICE"
    THIEF = "THIEF"


class Role(Enum):
    HOST = "HOST"
    GUEST = "GUEST"


class ThiefState(Enum):
    FREE = "FREE"
    CAPTURED = "CAPTURED"
    JAILED = "JAILED"
    OUT_OF_ZONE = "OUT_OF_ZONE"


class GameMode(Enum):
    BASIC = "BASIC"
    BATTLE = "BATTLE"


def _enum_or_none(enum_cls, value):
    """Coerce a wire string into ``enum_cls``; unknown values become None."""
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        logger.warning("Unknown %s value: %r", enum_cls.__name__, value)
        return None


def _value(member):
    return member.value if isinstance(member, Enum) else member


@dataclass(frozen=True)
class ThiefStatus:
    """Capture state of a thief."""
    state: ThiefState = ThiefState.FREE
    captured_by: Optional[str] = None
    captured_at: Optional[int] = None
    jailed_at: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Any) -> Optional['ThiefStatus']:
        if isinstance(data, ThiefStatus):
            return data
        if not isinstance(data, dict):
            return None
        state = _enum_or_none(ThiefState, data.get("state"))
        if state is None:
            return None
        return cls(
            state=state,
            captured_by=data.get("capturedBy"),
            captured_at=data.get("capturedAt"),
            jailed_at=data.get("jailedAt"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "capturedBy": self.captured_by,
            "capturedAt": self.captured_at,
            "jailedAt": self.jailed_at,
        }


@dataclass(frozen=True)
class RoomSettings:
    """Room configuration chosen by the host."""
    max_players: Optional[int] = None
    hiding_seconds: Optional[int] = None
    chase_seconds: Optional[int] = None
    proximity_radius_meters: Optional[float] = None
    capture_radius_meters: Optional[float] = None
    jail_radius_meters: Optional[float] = None
    game_mode: Optional[GameMode] = None
    police_ratio: Optional[float] = None
    battle_zone_radius_m: Optional[float] = None

    _WIRE_KEYS = {
        "maxPlayers": "max_players",
        "hidingSeconds": "hiding_seconds",
        "chaseSeconds": "chase_seconds",
        "proximityRadiusMeters": "proximity_radius_meters",
        "captureRadiusMeters": "capture_radius_meters",
        "jailRadiusMeters": "jail_radius_meters",
        "gameMode": "game_mode",
        "policeRatio": "police_ratio",
        "battleZoneRadiusM": "battle_zone_radius_m",
    }

    @classmethod
    def from_dict(cls, data: Any) -> Optional['RoomSettings']:
        if isinstance(data, RoomSettings):
            return data
        if not isinstance(data, dict):
            return None
        kwargs = {}
        for wire_key, attr in cls._WIRE_KEYS.items():
            if wire_key in data and data[wire_key] is not None:
                kwargs[attr] = data[wire_key]
        if "game_mode" in kwargs:
            kwargs["game_mode"] = _enum_or_none(GameMode, kwargs["game_mode"])
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Wire form; unset fields are omitted."""
        data = {}
        for wire_key, attr in self._WIRE_KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                data[wire_key] = _value(value)
        return data

    def overlay(self, other: 'RoomSettings') -> 'RoomSettings':
        """Return a copy with every field set in ``other`` taking precedence."""
        changes = {f.name: getattr(other, f.name) for f in fields(other) if getattr(other, f.name) is not None}
        return replace(self, **changes)


@dataclass(frozen=True)
class Basecamp:
    lat: float
    lng: float
    set_at: Optional[int] = None

    @property
    def is_valid(self) -> bool:
        """Finite coordinates that are not the (0, 0) placeholder."""
        return (
            math.isfinite(self.lat) and math.isfinite(self.lng)
            and (self.lat != 0 or self.lng != 0)
        )

    @classmethod
    def from_dict(cls, data: Any, stamp: bool = False) -> Optional['Basecamp']:
        if isinstance(data, Basecamp):
            return data
        if not isinstance(data, dict):
            return None
        lat, lng = data.get("lat"), data.get("lng")
        if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
            return None
        set_at = data.get("setAt")
        if set_at is None and stamp:
            set_at = now_ms()
        return cls(lat=float(lat), lng=float(lng), set_at=set_at)


@dataclass(frozen=True)
class ChatMessage:
    """A chat line. Immutable once created."""
    message_id: Optional[str]
    player_id: Optional[str]
    nickname: Optional[str]
    text: str
    timestamp: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Any) -> Optional['ChatMessage']:
        if isinstance(data, ChatMessage):
            return data
        if not isinstance(data, dict) or not isinstance(data.get("text"), str):
            return None
        return cls(
            message_id=data.get("messageId"),
            player_id=data.get("playerId"),
            nickname=data.get("nickname"),
            text=data["text"],
            timestamp=data.get("timestamp"),
        )


@dataclass(frozen=True)
class GameResult:
    """Final outcome sent by the server when the game ends."""
    winner: Optional[Team] = None
    reason: Optional[str] = None
    stats: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> Optional['GameResult']:
        if isinstance(data, GameResult):
            return data
        if not isinstance(data, dict):
            return None
        stats = data.get("stats")
        return cls(
            winner=_enum_or_none(Team, data.get("winner")),
            reason=data.get("reason"),
            stats=stats if isinstance(stats, dict) else {},
        )


@dataclass(frozen=True)
class Player:
    """A roster entry. Only ``player_id`` is guaranteed; the rest may be unknown."""
    player_id: str
    nickname: Optional[str] = None
    role: Optional[Role] = None
    team: Optional[Team] = None
    ready: Optional[bool] = None
    connected: Optional[bool] = None
    thief_status: Optional[ThiefStatus] = None
    location: Optional[LocationSample] = None
    out_of_zone_at: Optional[int] = None

    @staticmethod
    def id_of(data: Any) -> Optional[str]:
        """Player id from a wire dict, falling back to ``id``."""
        if not isinstance(data, dict):
            return None
        pid = data.get("playerId") or data.get("id")
        return pid if isinstance(pid, str) and pid else None

    @staticmethod
    def fields_from_dict(data: Dict[str, Any]) -> Dict[str, Any]:
        """Translate a (partial) wire dict into Player field values.

        Only keys present in ``data`` appear in the result, so a patch never
        clears fields it does not mention.
        """
        result: Dict[str, Any] = {}
        if "nickname" in data:
            result["nickname"] = data["nickname"]
        if "role" in data:
            result["role"] = _enum_or_none(Role, data["role"])
        if "team" in data:
            result["team"] = _enum_or_none(Team, data["team"])
        if "ready" in data:
            result["ready"] = bool(data["ready"]) if data["ready"] is not None else None
        if "connected" in data:
            result["connected"] = bool(data["connected"]) if data["connected"] is not None else None
        if "thiefStatus" in data:
            result["thief_status"] = ThiefStatus.from_dict(data["thiefStatus"])
        if "location" in data:
            loc = data["location"]
            result["location"] = loc if isinstance(loc, LocationSample) else LocationSample.from_dict(loc)
        if "outOfZoneAt" in data:
            result["out_of_zone_at"] = data["outOfZoneAt"]
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional['Player']:
        pid = cls.id_of(data)
        if pid is None:
            return None
        return cls(player_id=pid, **cls.fields_from_dict(data))


@dataclass
class AlertState:
    """Transient proximity alert shown by the presentation layer."""
    visible: bool = False
    message: Optional[str] = None

    def show(self, message: str):
        self.visible = True
        self.message = message

    def hide(self):
        self.visible = False
        self.message = None


Listener = Callable[[], None]


class _Observable:
    """Listener list notified after each committed mutation."""

    def __init__(self):
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self):
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("State listener failed")


_ROOM_FIELDS = ("room_id", "phase", "phase_ends_at", "settings", "basecamp", "result")


class GameStore(_Observable):
    """Room/game state for the active session.

    All mutation goes through the methods below; readers get copies or
    immutable values, never a live reference to the roster or chat log.
    """

    def __init__(self):
        super().__init__()
        self._clear()

    def _clear(self):
        self._room_id: Optional[str] = None
        self._phase: Optional[Phase] = None
        self._phase_ends_at: Optional[int] = None
        self._settings: Optional[RoomSettings] = None
        self._host_applied_settings: Optional[RoomSettings] = None
        self._basecamp: Optional[Basecamp] = None
        self._fixed_basecamp: Optional[Basecamp] = None
        self._roster: Dict[str, Player] = {}
        self._chat_log: List[ChatMessage] = []
        self._result: Optional[GameResult] = None

    # Readers
    @property
    def room_id(self) -> Optional[str]:
        return self._room_id

    @property
    def phase(self) -> Optional[Phase]:
        return self._phase

    @property
    def phase_ends_at(self) -> Optional[int]:
        return self._phase_ends_at

    @property
    def settings(self) -> Optional[RoomSettings]:
        return self._settings

    @property
    def host_applied_settings(self) -> Optional[RoomSettings]:
        return self._host_applied_settings

    @property
    def basecamp(self) -> Optional[Basecamp]:
        return self._basecamp

    @property
    def fixed_basecamp(self) -> Optional[Basecamp]:
        return self._fixed_basecamp

    @property
    def roster(self) -> Dict[str, Player]:
        return dict(self._roster)

    @property
    def chat_log(self) -> Tuple[ChatMessage, ...]:
        return tuple(self._chat_log)

    @property
    def result(self) -> Optional[GameResult]:
        return self._result

    def get_player(self, player_id: str) -> Optional[Player]:
        return self._roster.get(player_id)

    def players_on_team(self, team: Team) -> List[Player]:
        return [p for p in self._roster.values() if p.team == team]

    # Mutators
    def replace_room_info(self, **info):
        """Shallow-merge room fields.

        Accepted keys: room_id, phase, phase_ends_at, settings, basecamp,
        result. Values may be domain objects or wire dicts/strings.
        """
        unknown = set(info) - set(_ROOM_FIELDS)
        if unknown:
            raise TypeError(f"Unknown room fields: {sorted(unknown)}")

        if "room_id" in info:
            self._room_id = info["room_id"] or None
        if "phase" in info:
            self._phase = _enum_or_none(Phase, info["phase"])
        if "phase_ends_at" in info:
            self._phase_ends_at = info["phase_ends_at"]
        if "result" in info:
            self._result = GameResult.from_dict(info["result"])
        if "settings" in info:
            settings = RoomSettings.from_dict(info["settings"])
            if settings is not None and self._host_applied_settings is not None:
                settings = settings.overlay(self._host_applied_settings)
            self._settings = settings
        if "basecamp" in info:
            self._basecamp = Basecamp.from_dict(info["basecamp"])
            self._pin_basecamp(self._basecamp)
        self._notify()

    def _pin_basecamp(self, basecamp: Optional[Basecamp]):
        """Keep the first valid basecamp; battle mode always follows the server."""
        if basecamp is None or not basecamp.is_valid:
            return
        is_battle = self._settings is not None and self._settings.game_mode == GameMode.BATTLE
        if is_battle or self._fixed_basecamp is None:
            self._fixed_basecamp = basecamp

    def set_host_applied_settings(self, settings: Optional[Dict[str, Any]]):
        """Remember settings the host applied so snapshots do not overwrite them."""
        self._host_applied_settings = RoomSettings.from_dict(settings) if settings else None
        if self._settings is not None and self._host_applied_settings is not None:
            self._settings = self._settings.overlay(self._host_applied_settings)
        self._notify()

    def set_fixed_basecamp_from_location(self, lat: float, lng: float) -> bool:
        """Pin the start location as basecamp if none is pinned yet."""
        candidate = Basecamp(lat=lat, lng=lng, set_at=now_ms())
        if not candidate.is_valid:
            return False
        if self._fixed_basecamp is not None and self._fixed_basecamp.is_valid:
            return False
        self._fixed_basecamp = candidate
        self._notify()
        return True

    def replace_roster(self, players: Iterable[Any]):
        """Replace the roster wholesale with the server's player list.

        Entries missing from ``players`` are dropped; this is how stale
        entries for departed players are purged.
        """
        roster: Dict[str, Player] = {}
        for p in players or []:
            player = p if isinstance(p, Player) else Player.from_dict(p)
            if player is None:
                logger.debug("Skipping roster entry without id: %r", p)
                continue
            roster[player.player_id] = player
        self._roster = roster
        self._notify()

    def patch_player(self, player_id: str, partial: Dict[str, Any]):
        """Merge wire fields into a roster entry, inserting it if absent."""
        if not player_id:
            return
        changes = Player.fields_from_dict(partial or {})
        existing = self._roster.get(player_id)
        if existing is None:
            self._roster[player_id] = Player(player_id=player_id, **changes)
        else:
            self._roster[player_id] = replace(existing, **changes)
        self._notify()

    def append_chat_message(self, message: Any) -> bool:
        """Append to the chat log in receipt order."""
        chat = ChatMessage.from_dict(message)
        if chat is None:
            return False
        self._chat_log.append(chat)
        self._notify()
        return True

    def reset(self):
        """Clear all room/game state back to its initial empty form."""
        self._clear()
        self._notify()


class PlayerStore(_Observable):
    """State of the local player.

    ``player_id`` is created once and persisted through the key-value store;
    everything else is session-scoped and cleared by reset().
    """

    def __init__(self, storage: KeyValueStore):
        super().__init__()
        self._storage = storage
        self.player_id: str = load_or_create_player_id(storage)
        self._clear_session()
        self.nickname = self.saved_nickname

    @property
    def saved_nickname(self) -> Optional[str]:
        """Last nickname persisted on this device, even after reset()."""
        return self._storage.get(NICKNAME_KEY)

    def _clear_session(self):
        self.nickname: Optional[str] = None
        self.role: Optional[Role] = None
        self.team: Optional[Team] = None
        self.ready: bool = False
        self.thief_status: Optional[ThiefStatus] = None
        self.location: Optional[LocationSample] = None

    def set_nickname(self, name: str):
        """Set and persist the nickname (trimmed)."""
        name = (name or "").strip()
        if name:
            self._storage.set(NICKNAME_KEY, name)
        self.nickname = name or None
        self._notify()

    def set_role(self, role):
        self.role = _enum_or_none(Role, role)
        self._notify()

    def set_team(self, team):
        self.team = _enum_or_none(Team, team)
        self._notify()

    def set_ready(self, ready: bool):
        self.ready = bool(ready)
        self._notify()

    def set_thief_status(self, status):
        self.thief_status = ThiefStatus.from_dict(status)
        self._notify()

    def update_location(self, sample: LocationSample) -> bool:
        """Store a new own-position fix unless it is throttled.

        Returns:
            True if the fix was applied.
        """
        if sample is None or not sample.is_valid:
            return False
        if sample.captured_at_ms is None:
            sample = replace(sample, captured_at_ms=now_ms())
        if not should_apply_update(self.location, sample):
            return False
        self.location = sample
        self._notify()
        return True

    def reset(self):
        """Clear session fields, nickname included.

        The persisted player id and nickname survive in storage.
        """
        self._clear_session()
        self._notify()
