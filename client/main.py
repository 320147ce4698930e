# client/main.py
"""Main entry point for the Police vs Thieves terminal client.

Everything runs on one asyncio loop: the connection's receive task feeds the
message handler while questionary prompts are awaited with ask_async().
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from rich.logging import RichHandler

from client import ui
from client.config_loader import ConfigLoader, to_ws_url
from client.controller import SessionController
from client.errors import TransportError
from client.reconnect import ReconnectPolicy
from client.state import Phase
from tracking.provider import ReplayLocationProvider
from utils.storage import JsonFileStore
from version import VERSION

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Route logging through rich. websockets is only noisy at debug level."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=ui.console, rich_tracebacks=True, show_path=verbose)],
    )
    logging.getLogger("websockets").setLevel(logging.INFO if verbose else logging.WARNING)
    logging.getLogger("aiortc").setLevel(logging.INFO if verbose else logging.WARNING)
    logging.getLogger("aioice").setLevel(logging.WARNING)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Police vs Thieves session client")
    parser.add_argument("--server", help="Server base URL (http(s):// or ws(s)://)")
    parser.add_argument("--nickname", help="Nickname to play as")
    parser.add_argument("--room", help="Room code to join directly")
    parser.add_argument("--track", metavar="FILE", help="JSON track of positions to replay as GPS")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=VERSION)
    return parser.parse_args(argv)


class ClientApp:
    """Terminal front end around a SessionController."""

    def __init__(self, args: argparse.Namespace):
        self.args = args
        self.config = ConfigLoader()
        provider = ReplayLocationProvider.from_file(args.track) if args.track else None
        self.session = SessionController(
            storage=JsonFileStore(self.config.get_identity_path()),
            config=self.config,
            notifier=ui.ConsoleNotifier(),
            location_provider=provider,
        )

    @property
    def uri(self) -> str:
        if self.args.server:
            return to_ws_url(self.args.server)
        return self.config.get_ws_url()

    async def run(self):
        ui.clear_screen()
        ui.print_title()
        ui.print_connecting(self.uri)
        try:
            await self.session.connect(self.uri)
        except TransportError as e:
            ui.print_error(str(e))
            ui.print_info("Retrying...")
            if not await self.session.reconnect(ReconnectPolicy()):
                ui.print_error("Could not reach the server.")
                return

        try:
            await self._main_loop()
        finally:
            await self.session.close()

    async def _main_loop(self):
        nickname = self.args.nickname or await ui.get_nickname(self.session.player.saved_nickname or "")
        if not nickname:
            return

        if self.args.room:
            self.session.join_room(self.args.room, nickname)
            await self._wait_for_room()

        while True:
            if self.session.game.room_id:
                await self._room_loop()
                continue

            action = await ui.get_main_action()
            if action == "create":
                self.session.create_room(nickname)
            elif action == "join":
                code = await ui.get_room_code()
                if not code or not self.session.join_room(code, nickname):
                    ui.print_error("Invalid room code.")
                    continue
            else:
                return
            await self._wait_for_room()

    async def _wait_for_room(self, timeout: float = 5.0):
        """Give the server a moment to confirm the create/join."""
        waited = 0.0
        while not self.session.game.room_id and waited < timeout:
            await asyncio.sleep(0.1)
            waited += 0.1
        if not self.session.game.room_id:
            ui.print_error("No answer from the server.")

    async def _room_loop(self):
        session = self.session
        tracking = False
        while session.game.room_id:
            if session.game.phase in (Phase.HIDING, Phase.CHASE) and not tracking:
                tracking = await session.start_location_broadcast()
            if session.game.phase == Phase.END:
                ui.print_result(session.game)
                ui.print_movement(session.movement_stats())

            ui.print_room(session.game, session.player)
            ui.print_chat(session.game)
            action = await ui.get_room_action(session.game, session.player)

            if action is None or action == "Leave room":
                await session.leave_room()
                return
            if action == "Chat":
                text = await ui.get_chat_text()
                if text:
                    session.send_chat(text)
            elif action == "Start game":
                await session.start_game()
            elif action == "Shuffle teams":
                session.shuffle_teams()
            elif action == "Capture":
                thief_id = await ui.select_thief(session.game)
                if thief_id:
                    session.attempt_capture(thief_id)
            elif action == "Release":
                thief_id = await ui.select_thief(session.game)
                if thief_id:
                    session.attempt_release(thief_id)
            elif action == "Push to talk":
                session.request_ptt()
            elif action == "Stop talking":
                session.release_ptt()
            elif action == "Stats":
                ui.print_movement(session.movement_stats(), session.battle_zone_radius())


def run(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)
    try:
        asyncio.run(ClientApp(args).run())
    except KeyboardInterrupt:
        ui.print_info("Bye.")
    return 0


if __name__ == "__main__":
    sys.exit(run())
