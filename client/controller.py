# client/controller.py
"""Session controller: the operations a player issues during a session.

Wires the connection, the message handler, the state stores, the voice mesh
and location tracking together. Every operation checks its preconditions
(connected, in a room, right team) and returns False with a log line
instead of raising when they do not hold.
"""

import asyncio
import functools
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from client.config_loader import ConfigLoader
from client.connection import CloseInfo, ConnectionManager
from client.errors import MediaAcquisitionError
from client.handler import MessageHandler
from client.notifier import Notifier
from client.protocol import (
    Message,
    ServerMessageType,
    attempt_capture_command,
    chat_command,
    create_room_command,
    extract_room_code,
    is_valid_room_code,
    join_room_command,
    leave_room_command,
    parse_signal_message,
    ptt_command,
    release_capture_command,
    shuffle_teams_command,
    signal_command,
    start_game_command,
    update_location_command,
    update_settings_command,
)
from client.reconnect import ReconnectPolicy
from client.state import AlertState, GameStore, Phase, PlayerStore, Role, Team
from client.timers import TimerManager
from tracking.battle_zone import get_battle_zone_radius_meters, players_outside_zone
from tracking.location import LocationSample
from tracking.movement import MovementStats, MovementTracker
from tracking.provider import GeolocationError, GeolocationErrorCode, LocationProvider
from utils.storage import KeyValueStore, ROOM_ID_KEY
from voice.mesh import VoiceMesh
from voice.tracks import open_microphone

logger = logging.getLogger(__name__)

JOIN_SOURCES = ("manual", "scan", "auto")

_GEOLOCATION_MESSAGES = {
    GeolocationErrorCode.PERMISSION_DENIED: ("Location permission needed", "Allow location access to play."),
    GeolocationErrorCode.POSITION_UNAVAILABLE: ("Location unavailable", "Turn on GPS / location services."),
    GeolocationErrorCode.TIMEOUT: ("Location timed out", "Location is slow to resolve. Try again shortly."),
}


class SessionController:
    """Glues transport, router, state, voice and tracking into session operations."""

    def __init__(
        self,
        storage: KeyValueStore,
        config: Optional[ConfigLoader] = None,
        connection: Optional[ConnectionManager] = None,
        notifier: Optional[Notifier] = None,
        location_provider: Optional[LocationProvider] = None,
        mesh: Optional[VoiceMesh] = None,
    ):
        self.config = config or ConfigLoader()
        self.storage = storage
        self.notifier = notifier or Notifier()
        self.connection = connection or ConnectionManager(connect_timeout=self.config.connect_timeout)
        self.game = GameStore()
        self.player = PlayerStore(storage)
        self.alert = AlertState()
        self.timers = TimerManager()
        self.handler = MessageHandler(
            self.game,
            self.player,
            notifier=self.notifier,
            timers=self.timers,
            alert=self.alert,
            proximity_alert_seconds=self.config.proximity_alert_seconds,
        )
        self.handler.set_callbacks(
            on_room_joined=self._on_room_joined,
            on_room_lost=self._on_room_lost,
            on_game_end=self._on_game_end,
        )
        self.movement = MovementTracker()
        self.location_provider = location_provider
        self.mesh = mesh or VoiceMesh(
            self._send_signal,
            media_factory=functools.partial(
                open_microphone, self.config.get_audio_device(), self.config.get_audio_format()
            ),
            ice_servers=self.config.get_ice_servers(),
        )

        self.active_ptt: Tuple[Optional[str], Optional[str]] = (None, None)
        self.last_join_source: Optional[str] = None
        self._rejoin_attempted = False

        self.connection.on_message(self._on_message)
        self.connection.on_open(self._on_open)
        self.connection.on_close(self._on_close)

    # Helpers
    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected()

    @property
    def saved_room_id(self) -> Optional[str]:
        return self.storage.get(ROOM_ID_KEY)

    def _require_room(self, action: str) -> bool:
        if not self.is_connected:
            logger.info("Cannot %s: not connected", action)
            return False
        if not self.game.room_id:
            logger.info("Cannot %s: not in a room", action)
            return False
        return True

    def _send(self, command):
        logger.debug("TX %s", command.type)
        self.connection.send(command)

    # Connection
    async def connect(self, uri: Optional[str] = None):
        """Connect to the session server.

        Raises:
            TransportError: the connection could not be opened.
        """
        uri = uri or self.config.get_ws_url()
        await self.connection.connect(uri, self.player.player_id)

    async def reconnect(self, policy: Optional[ReconnectPolicy] = None) -> bool:
        """Retry the last connection under ``policy``. Returns True once reconnected."""
        try:
            return await self.connection.reconnect(policy)
        except RuntimeError as e:
            logger.warning("Cannot reconnect: %s", e)
            return False

    async def close(self):
        """Stop everything and drop the connection."""
        self.stop_location_broadcast()
        await self.mesh.cleanup()
        self.timers.cancel_all()
        await self.connection.disconnect()

    async def _on_open(self):
        room_id = self.game.room_id
        if room_id and self.player.nickname:
            # Reconnected mid-session: join the same room again
            logger.info("Rejoining room %s after reconnect", room_id)
            self._send(join_room_command(self.player.player_id, room_id, self.player.nickname))
            return
        self._auto_rejoin()

    def _auto_rejoin(self):
        """Join the remembered room once per connection if we are in none."""
        saved = self.saved_room_id
        if not saved or not self.player.nickname or self.game.room_id or self._rejoin_attempted:
            return
        self._rejoin_attempted = True
        logger.info("Attempting auto rejoin to saved room %s", saved)
        self.join_room(saved, self.player.nickname, source="auto")

    def _on_close(self, info: CloseInfo):
        if not info.intentional:
            logger.warning("Connection lost (code=%s): %s", info.code, info.reason)
        self._rejoin_attempted = False

    async def _on_message(self, msg: Message):
        if msg.type == ServerMessageType.WEBRTC_SIGNAL.value:
            await self._handle_signal(msg)
        elif msg.type == ServerMessageType.PTT_STATUS.value:
            await self._handle_ptt_status(msg)
        await self.handler.handle(msg)

    # Handler callbacks
    def _on_room_joined(self, room_id: str):
        self.storage.set(ROOM_ID_KEY, room_id)
        self._rejoin_attempted = False
        self.last_join_source = None

    def _on_room_lost(self):
        self.storage.remove(ROOM_ID_KEY)
        self._rejoin_attempted = False
        self.last_join_source = None

    async def _on_game_end(self):
        self.stop_location_broadcast()
        await self._teardown_voice()
        logger.info("Game ended, session cleaned up")

    # Room operations
    def create_room(self, nickname: str, settings: Optional[Dict[str, Any]] = None) -> bool:
        """Ask the server for a new room with this player as host."""
        if not self.is_connected:
            logger.info("Cannot create room: not connected")
            return False
        self.player.set_nickname(nickname)
        if not self.player.nickname:
            logger.info("Cannot create room: empty nickname")
            return False
        room_settings = self.config.get_room_defaults()
        room_settings.update(settings or {})
        self.handler.ignore_room_messages = False
        self.player.set_role(Role.HOST)
        self._send(create_room_command(self.player.player_id, self.player.nickname, room_settings))
        return True

    def join_room(self, code: str, nickname: Optional[str] = None, source: str = "manual") -> bool:
        """Join an existing room by code, typed or scanned."""
        if source not in JOIN_SOURCES:
            raise ValueError(f"Unknown join source: {source}")
        if not self.is_connected:
            logger.info("Cannot join room: not connected")
            return False
        room_code = extract_room_code(code)
        if room_code is None or not is_valid_room_code(room_code):
            logger.info("Cannot join room: invalid code %r", code)
            return False
        if nickname:
            self.player.set_nickname(nickname)
        if not self.player.nickname:
            logger.info("Cannot join room: no nickname")
            return False
        self.last_join_source = source
        self.handler.ignore_room_messages = False
        self.player.set_role(Role.GUEST)
        self._send(join_room_command(self.player.player_id, room_code, self.player.nickname))
        return True

    async def start_game(self) -> bool:
        """Start the game, sending the host's position as basecamp when one is known."""
        if not self._require_room("start game"):
            return False
        basecamp = None
        location = self.player.location
        if location is None and self.location_provider is not None:
            try:
                location = await self.location_provider.get_current_location()
            except GeolocationError as e:
                logger.warning("Could not get host location for basecamp: %s", e)
        if location is not None and location.is_valid:
            basecamp = {"lat": location.lat, "lng": location.lng}
            self.game.set_fixed_basecamp_from_location(location.lat, location.lng)
        self._send(start_game_command(self.player.player_id, self.game.room_id, basecamp))
        return True

    def update_room_settings(self, settings: Dict[str, Any]) -> bool:
        """Host-only: change lobby settings. Local view keeps them over snapshots."""
        if not self._require_room("update settings"):
            return False
        self.game.set_host_applied_settings(settings)
        self._send(update_settings_command(self.player.player_id, self.game.room_id, settings))
        return True

    def shuffle_teams(self) -> bool:
        if not self._require_room("shuffle teams"):
            return False
        self._send(shuffle_teams_command(self.player.player_id, self.game.room_id))
        return True

    async def leave_room(self):
        """Leave the room but keep the connection for the next create/join."""
        self.handler.ignore_room_messages = True
        if self.is_connected and self.game.room_id:
            self._send(leave_room_command(self.player.player_id, self.game.room_id))
            # Give the queued leave a moment to flush before local state goes
            await asyncio.sleep(self.config.leave_grace_seconds)

        self.stop_location_broadcast()
        self.movement.set_tracking(False)
        await self._teardown_voice()
        self.timers.cancel_all()
        self.alert.hide()
        self.game.reset()
        self.player.reset()
        self.storage.remove(ROOM_ID_KEY)
        self._rejoin_attempted = False

    # In-game actions
    def send_chat(self, text: str) -> bool:
        text = (text or "").strip()
        if not text:
            return False
        if not self._require_room("send chat"):
            return False
        self._send(chat_command(self.player.player_id, self.game.room_id, text))
        return True

    def attempt_capture(self, thief_id: str, source: str = "button") -> bool:
        """Police only: try to capture ``thief_id``."""
        if not self._require_room("capture"):
            return False
        if self.player.team != Team.POLICE:
            logger.info("Cannot capture: not on police team")
            return False
        self._send(attempt_capture_command(self.player.player_id, self.game.room_id, thief_id, source))
        return True

    def attempt_release(self, thief_id: str) -> bool:
        """Police only: undo a capture (CAPTURED -> FREE)."""
        if not self._require_room("release"):
            return False
        if self.player.team != Team.POLICE:
            logger.info("Cannot release: not on police team")
            return False
        self._send(release_capture_command(self.player.player_id, self.game.room_id, thief_id))
        return True

    # Location
    async def start_location_broadcast(self) -> bool:
        """Take an initial fix, then stream positions to the server."""
        if self.location_provider is None:
            logger.info("Cannot track location: no provider")
            return False
        try:
            sample = await self.location_provider.get_current_location()
            self._on_own_location(sample)
        except GeolocationError as e:
            logger.warning("Failed to get location: %s", e)
            title, text = _GEOLOCATION_MESSAGES.get(e.code, ("Location error", str(e)))
            self.notifier.alert(title, text)

        self.movement.set_tracking(True)
        self.location_provider.start_watching(self.config.location_interval_seconds, self._on_own_location)
        return True

    def stop_location_broadcast(self):
        if self.location_provider is not None:
            self.location_provider.stop_watching()

    def _on_own_location(self, sample: LocationSample):
        if sample is None or not sample.is_valid:
            logger.debug("Ignoring invalid own location: %r", sample)
            return
        self.movement.on_location_update(sample)
        if not self.player.update_location(sample):
            return
        if not self.is_connected or not self.game.room_id:
            logger.debug("Location update not sent: connected=%s room=%s",
                         self.is_connected, self.game.room_id)
            return
        location = self.player.location.to_dict()
        location.setdefault("accuracy", 0)
        self._send(update_location_command(self.player.player_id, self.game.room_id, location))

    def movement_stats(self) -> MovementStats:
        return self.movement.get_stats()

    def battle_zone_radius(self, now_ms: Optional[float] = None) -> Optional[float]:
        """Current boundary radius, or None outside an active chase."""
        if self.game.phase != Phase.CHASE:
            return None
        settings = self.game.settings
        chase_seconds = settings.chase_seconds if settings is not None else None
        now = now_ms if now_ms is not None else time.time() * 1000
        return get_battle_zone_radius_meters(self.game.phase_ends_at, chase_seconds, now)

    def players_outside_zone(self, now_ms: Optional[float] = None) -> List[str]:
        """Ids of players whose last known position is outside the boundary."""
        radius = self.battle_zone_radius(now_ms)
        center = self.game.fixed_basecamp or self.game.basecamp
        if radius is None or center is None or not center.is_valid:
            return []
        positions = [
            (p.player_id, p.location.lat, p.location.lng)
            for p in self.game.roster.values()
            if p.location is not None
        ]
        return players_outside_zone((center.lat, center.lng), radius, positions)

    # Voice
    def _send_signal(self, target_id: str, signal: Dict[str, Any]):
        if not self.game.room_id:
            return
        self._send(signal_command(self.player.player_id, self.game.room_id, target_id, signal))

    async def _ensure_voice(self) -> bool:
        if self.mesh.initialized:
            return True
        if not self.game.room_id:
            return False
        try:
            await self.mesh.initialize()
            return True
        except MediaAcquisitionError as e:
            logger.warning("Voice unavailable: %s", e)
            return False

    async def _handle_signal(self, msg: Message):
        parsed = parse_signal_message(msg)
        if parsed is None:
            logger.debug("Invalid webrtc:signal frame")
            return
        if not self.game.room_id or self.handler.ignore_room_messages:
            return
        # Without a microphone the mesh still negotiates receive-only links
        await self._ensure_voice()
        await self.mesh.handle_signal(parsed["from"], parsed["signal"])

    def _can_use_ptt(self, action: str) -> bool:
        if not self._require_room(action):
            return False
        team = self.player.team
        if team is not None and team != Team.THIEF:
            logger.info("Cannot %s: not on thief team", action)
            return False
        return True

    def request_ptt(self) -> bool:
        """Ask for the thieves' push-to-talk token."""
        if not self._can_use_ptt("request PTT"):
            return False
        self._send(ptt_command(self.player.player_id, self.game.room_id, request=True))
        return True

    def release_ptt(self) -> bool:
        if not self._can_use_ptt("release PTT"):
            return False
        self._send(ptt_command(self.player.player_id, self.game.room_id, request=False))
        return True

    async def _handle_ptt_status(self, msg: Message):
        data = msg.body
        active_id = data.get("activeThiefId")
        active_nickname = data.get("activeThiefNickname")
        me = self.player.player_id

        if self.player.team != Team.THIEF:
            if active_id and active_id == me:
                # The server only grants the token to thieves
                self.player.set_team(Team.THIEF)
            else:
                logger.debug("Ignoring ptt:status for non-thief team")
                return

        self.active_ptt = (active_id, active_nickname)
        if active_id and active_id == me:
            if not await self._ensure_voice():
                logger.warning("Voice not ready, cannot transmit")
                return
            await self._connect_to_thieves()
            self.mesh.set_transmitting(True)
        else:
            self.mesh.set_transmitting(False)

    async def _connect_to_thieves(self):
        """Offer to every thief we are not linked with yet."""
        me = self.player.player_id
        targets = [
            p.player_id for p in self.game.players_on_team(Team.THIEF)
            if p.player_id != me and self.mesh.get_peer(p.player_id) is None
        ]
        if not targets:
            return
        results = await self.mesh.connect_to_peers(targets)
        failed = [pid for pid, ok in results.items() if not ok]
        if failed:
            logger.warning("Voice offers failed for %s", ", ".join(failed))

    async def _teardown_voice(self):
        await self.mesh.cleanup()
        self.active_ptt = (None, None)
