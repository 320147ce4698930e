# client/handler.py
"""Message handler for processing server messages."""

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from client.errors import CommandRejected
from client.notifier import Notifier, PROXIMITY_VIBRATION
from client.protocol import Message, ServerMessageType
from client.state import AlertState, Basecamp, GameStore, Phase, Player, PlayerStore, ThiefState
from client.timers import TimerManager
from tracking.location import LocationSample, LocationThrottle

logger = logging.getLogger(__name__)

PROXIMITY_TIMER_ID = "proximity_alert"
PROXIMITY_ALERT_SECONDS = 3.0

Callback = Callable[..., Union[None, Awaitable[None]]]

S = ServerMessageType

# Messages that belong to the room we just left and must not resurrect it.
_ROOM_SCOPED = {
    S.GAME_STATE.value,
    S.LOCATION_UPDATE.value,
    S.GAME_END.value,
    S.GAME_ENDED_LEGACY.value,
}

_FAILURE_TITLES = {
    S.ROOM_JOINED.value: "Join failed",
    S.ROOM_JOINED_LEGACY.value: "Join failed",
    S.GAME_START.value: "Start failed",
    S.ROOM_LEAVE.value: "Leave failed",
    S.CAPTURE_RESULT.value: "Capture failed",
    S.JAIL_RESULT.value: "Jail failed",
    S.RELEASE_RESULT.value: "Release failed",
}


class MessageHandler:
    """Handles incoming server messages and updates session state.

    Every handler tolerates a missing or malformed body by skipping its
    mutation. Unknown message types are logged and ignored.
    """

    def __init__(
        self,
        game: GameStore,
        player: PlayerStore,
        notifier: Optional[Notifier] = None,
        timers: Optional[TimerManager] = None,
        alert: Optional[AlertState] = None,
        proximity_alert_seconds: float = PROXIMITY_ALERT_SECONDS,
    ):
        self.game = game
        self.player = player
        self.notifier = notifier or Notifier()
        self.timers = timers or TimerManager()
        self.alert = alert or AlertState()
        self.proximity_alert_seconds = proximity_alert_seconds
        self.ignore_room_messages = False
        self.last_rejection: Optional[CommandRejected] = None
        self._locations = LocationThrottle()
        self._on_room_joined: Optional[Callback] = None
        self._on_room_lost: Optional[Callback] = None
        self._on_game_end: Optional[Callback] = None

        self._handlers: Dict[str, Callable[[Message], Awaitable[None]]] = {
            S.ROOM_CREATED.value: self._handle_room_created,
            S.ROOM_CREATED_LEGACY.value: self._handle_room_created,
            S.ROOM_JOINED.value: self._handle_room_joined,
            S.ROOM_JOINED_LEGACY.value: self._handle_room_joined,
            S.GAME_STATE.value: self._handle_game_state,
            S.CHAT_NEW.value: self._handle_chat,
            S.TEAM_ASSIGNED.value: self._handle_team_assigned,
            S.TEAM_ASSIGNED_LEGACY.value: self._handle_team_assigned_legacy,
            S.PROXIMITY_NEAR.value: self._handle_proximity,
            S.CAPTURE_RESULT.value: self._handle_capture_result,
            S.JAIL_RESULT.value: self._handle_jail_result,
            S.RELEASE_RESULT.value: self._handle_release_result,
            S.GAME_END.value: self._handle_game_end,
            S.GAME_ENDED_LEGACY.value: self._handle_game_end,
            S.PLAYER_JOINED.value: self._handle_player_patch,
            S.PLAYER_LEFT.value: self._handle_player_patch,
            S.PLAYER_MOVED.value: self._handle_player_patch,
            S.PHASE_CHANGED.value: self._handle_phase_changed,
            S.PLAYER_CAPTURED.value: self._handle_player_captured,
            S.LOCATION_UPDATE.value: self._handle_location_update,
            S.BASECAMP_SET.value: self._handle_basecamp,
            S.BASECAMP_BROADCAST.value: self._handle_basecamp,
            S.GAME_START.value: self._handle_ack,
            S.ROOM_LEAVE.value: self._handle_ack,
            # Voice signaling is consumed by the controller
            S.WEBRTC_SIGNAL.value: self._handle_ack,
            S.PTT_STATUS.value: self._handle_ack,
        }

    def set_callbacks(
        self,
        on_room_joined: Optional[Callback] = None,
        on_room_lost: Optional[Callback] = None,
        on_game_end: Optional[Callback] = None,
    ):
        """Set callback functions for session-level events.

        on_room_joined(room_id) fires after a successful join, on_room_lost()
        after the server reports the room no longer exists, and on_game_end()
        after the result has been stored.
        """
        self._on_room_joined = on_room_joined
        self._on_room_lost = on_room_lost
        self._on_game_end = on_game_end

    @staticmethod
    async def _call(callback: Optional[Callback], *args):
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Handler callback failed")

    def is_known(self, msg_type: str) -> bool:
        return msg_type in self._handlers

    async def handle(self, msg: Message):
        """Handle an incoming message."""
        handler = self._handlers.get(msg.type)
        if handler is None:
            logger.info("Ignoring unknown message type: %s", msg.type)
            return

        if self.ignore_room_messages and msg.type in _ROOM_SCOPED:
            logger.debug("Ignoring %s after leave", msg.type)
            return

        try:
            await handler(msg)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping malformed %s: %s", msg.type, e)

    def _surface_failure(self, msg: Message) -> bool:
        """Report a ``success: false`` reply. Returns True if it was one."""
        if not msg.is_failure:
            return False
        error = msg.error or "Request failed"
        self.last_rejection = CommandRejected(msg.type, error)
        logger.warning("%s", self.last_rejection)
        self.notifier.alert(_FAILURE_TITLES.get(msg.type, "Error"), error)
        return True

    def _enter_room(self, room_id: str):
        self.ignore_room_messages = False
        self._locations.clear()
        self.game.replace_room_info(room_id=room_id, phase=Phase.LOBBY, settings=None)

    async def _handle_room_created(self, msg: Message):
        """Handle room:created / ROOM_CREATED."""
        if self._surface_failure(msg):
            return
        room_id = msg.body.get("roomId")
        if not room_id:
            return
        self._enter_room(room_id)
        await self._call(self._on_room_joined, room_id)

    async def _handle_room_joined(self, msg: Message):
        """Handle room:join / ROOM_JOINED."""
        if msg.is_failure:
            self._surface_failure(msg)
            if "not found" in (msg.error or "").lower():
                self.game.replace_room_info(room_id=None, phase=Phase.LOBBY, settings=None)
                await self._call(self._on_room_lost)
            return
        room_id = msg.body.get("roomId")
        if not room_id:
            return
        self._enter_room(room_id)
        await self._call(self._on_room_joined, room_id)

    async def _handle_game_state(self, msg: Message):
        """Handle game:state snapshot."""
        data = msg.data
        if not isinstance(data, dict):
            return

        players = data.get("players")
        if isinstance(players, list):
            self.game.replace_roster(players)
        else:
            logger.debug("game:state without players list, roster kept")

        info: Dict[str, Any] = {
            "phase": data.get("status") or data.get("phase") or Phase.LOBBY.value,
            "phase_ends_at": data.get("phaseEndsAt"),
        }
        if "settings" in data:
            info["settings"] = data["settings"]
        if "basecamp" in data:
            info["basecamp"] = data["basecamp"]
        self.game.replace_room_info(**info)

        # Keep the local header in step with our own snapshot entry
        me = next(
            (p for p in players or [] if Player.id_of(p) == self.player.player_id),
            None,
        )
        if me is not None:
            if me.get("team"):
                self.player.set_team(me["team"])
            if me.get("role"):
                self.player.set_role(me["role"])
            if me.get("thiefStatus"):
                self.player.set_thief_status(me["thiefStatus"])

    async def _handle_chat(self, msg: Message):
        """Handle chat:new."""
        if msg.data is None:
            return
        if not self.game.append_chat_message(msg.data):
            logger.debug("Dropping chat message without text: %r", msg.data)

    async def _handle_team_assigned(self, msg: Message):
        """Handle team:assigned."""
        team = msg.body.get("yourTeam")
        if team:
            self.player.set_team(team)

    async def _handle_team_assigned_legacy(self, msg: Message):
        """Handle TEAM_ASSIGNED."""
        data = msg.data or {}
        payload = msg.payload or {}
        team = payload.get("team") or data.get("team")
        role = payload.get("role") or data.get("role")
        if team:
            self.player.set_team(team)
        if role:
            self.player.set_role(role)

    async def _handle_proximity(self, msg: Message):
        """Handle proximity:near. The alert clears itself after a few seconds."""
        message = msg.body.get("message") or "Someone is nearby!"
        self.alert.show(message)
        self.notifier.show_proximity(message)
        self.notifier.vibrate(PROXIMITY_VIBRATION)
        self.timers.start_timer(PROXIMITY_TIMER_ID, self.proximity_alert_seconds, self._clear_proximity)

    def _clear_proximity(self):
        self.alert.hide()
        self.notifier.hide_proximity()

    def _sync_own_status(self, data: Dict[str, Any], state: ThiefState, **status):
        """Mirror a capture outcome into local state if it concerns us.

        The roster itself waits for the next authoritative snapshot.
        """
        if data.get("thiefId") != self.player.player_id:
            return
        self.player.set_thief_status({"state": state.value, **status})

    async def _handle_capture_result(self, msg: Message):
        """Handle capture:result."""
        if self._surface_failure(msg):
            return
        data = msg.body
        nickname = data.get("thiefNickname") or data.get("thiefId")
        if nickname:
            self.notifier.alert("Captured", f"{nickname} was captured")
        self._sync_own_status(
            data, ThiefState.CAPTURED,
            capturedBy=data.get("policeId"), capturedAt=data.get("capturedAt"),
        )

    async def _handle_jail_result(self, msg: Message):
        """Handle jail:result."""
        if self._surface_failure(msg):
            return
        data = msg.body
        self._sync_own_status(data, ThiefState.JAILED, jailedAt=data.get("jailedAt"))

    async def _handle_release_result(self, msg: Message):
        """Handle release:result."""
        if self._surface_failure(msg):
            return
        self._sync_own_status(msg.body, ThiefState.FREE)

    async def _handle_game_end(self, msg: Message):
        """Handle game:end / GAME_ENDED."""
        if msg.type == S.GAME_END.value:
            result = msg.data
        else:
            result = (msg.payload or {}).get("result") or (msg.data or {}).get("result")
        if result is None:
            return
        self.game.replace_room_info(phase=Phase.END, result=result)
        await self._call(self._on_game_end)

    async def _handle_player_patch(self, msg: Message):
        """Handle PLAYER_JOINED / PLAYER_LEFT / PLAYER_MOVED."""
        player = (msg.payload or {}).get("player") or (msg.data or {}).get("player")
        player_id = Player.id_of(player)
        if player_id is None:
            return
        self.game.patch_player(player_id, player)

    async def _handle_phase_changed(self, msg: Message):
        """Handle PHASE_CHANGED."""
        phase = (msg.payload or {}).get("phase") or (msg.data or {}).get("phase")
        if phase:
            self.game.replace_room_info(phase=phase)

    async def _handle_player_captured(self, msg: Message):
        """Handle PLAYER_CAPTURED."""
        thief_id = (msg.payload or {}).get("thiefId") or (msg.data or {}).get("thiefId")
        if thief_id and thief_id == self.player.player_id:
            self.notifier.alert("Captured", "You have been captured!")

    async def _handle_location_update(self, msg: Message):
        """Handle location:update from another player."""
        data = msg.data
        if not isinstance(data, dict):
            return
        player_id = data.get("playerId")
        sample = LocationSample.from_dict(data.get("location"))
        if not player_id or sample is None:
            logger.debug("Invalid location:update payload: %r", data)
            return
        if not self._locations.accept(player_id, sample):
            return
        patch: Dict[str, Any] = {"location": sample}
        if data.get("team"):
            patch["team"] = data["team"]
        self.game.patch_player(player_id, patch)

    async def _handle_basecamp(self, msg: Message):
        """Handle basecamp:set / basecamp:broadcast."""
        basecamp = msg.body.get("basecamp")
        if not isinstance(basecamp, dict):
            return
        if LocationSample.from_dict(basecamp) is None:
            return
        # setAt is the receipt time, not the server's
        camp = Basecamp.from_dict({"lat": basecamp["lat"], "lng": basecamp["lng"]}, stamp=True)
        self.game.replace_room_info(basecamp=camp)
        logger.info("Basecamp received from server: %.6f, %.6f", camp.lat, camp.lng)

    async def _handle_ack(self, msg: Message):
        """Acknowledgement-only messages; only failures are surfaced."""
        self._surface_failure(msg)
