# client/ui.py
"""Terminal UI components for the session client using rich."""

from typing import List, Optional, Sequence

import questionary
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from client.notifier import Notifier, PROXIMITY_VIBRATION
from client.state import GameStore, Phase, PlayerStore, Role, Team, ThiefState
from tracking.movement import MovementStats
from version import VERSION


console = Console()

TEAM_STYLES = {Team.POLICE: "blue", Team.THIEF: "red"}
THIEF_STATE_STYLES = {
    ThiefState.FREE: "green",
    ThiefState.CAPTURED: "yellow",
    ThiefState.JAILED: "red",
    ThiefState.OUT_OF_ZONE: "magenta",
}


class ConsoleNotifier(Notifier):
    """Notifier that prints to the terminal."""

    def alert(self, title: str, message: str) -> None:
        console.print(Panel(Text(message), title=f"[bold]{title}[/bold]", box=box.ROUNDED, style="yellow"))

    def vibrate(self, pattern: Sequence[int] = PROXIMITY_VIBRATION) -> None:
        console.bell()

    def show_proximity(self, message: str) -> None:
        console.print(f"[bold red]!! {message}[/bold red]")

    def hide_proximity(self) -> None:
        console.print("[dim]Proximity alert cleared[/dim]")


def clear_screen():
    """Clear the terminal screen."""
    console.clear()


def print_header(title: str, subtitle: str = ""):
    """Print a styled header."""
    header_text = Text(title, style="bold cyan")
    if subtitle:
        header_text.append(f"\n{subtitle}", style="dim")
    console.print(Panel(header_text, box=box.DOUBLE))


def print_title():
    print_header(f"POLICE vs THIEVES          [{VERSION}]", "Realtime session client")


def _team_label(team: Optional[Team]) -> str:
    if team is None:
        return "[dim]-[/dim]"
    return f"[{TEAM_STYLES[team]}]{team.value}[/{TEAM_STYLES[team]}]"


def print_room(game: GameStore, player: PlayerStore):
    """Print room header and roster."""
    phase = game.phase.value if game.phase else "-"
    subtitle = f"Phase: {phase}"
    if game.settings is not None and game.settings.game_mode is not None:
        subtitle += f"   Mode: {game.settings.game_mode.value}"
    print_header(f"Room {game.room_id or '-'}", subtitle)

    table = Table(title="Players", box=box.ROUNDED)
    table.add_column("Player", style="cyan")
    table.add_column("Role", justify="center")
    table.add_column("Team", justify="center")
    table.add_column("Status", justify="center")

    for p in sorted(game.roster.values(), key=lambda p: (p.nickname or p.player_id).lower()):
        name = p.nickname or p.player_id
        if p.player_id == player.player_id:
            name += " [dim](you)[/dim]"
        if p.connected is False:
            status = "[red]Disconnected[/red]"
        elif p.thief_status is not None:
            style = THIEF_STATE_STYLES[p.thief_status.state]
            status = f"[{style}]{p.thief_status.state.value}[/{style}]"
        elif p.ready:
            status = "[green]Ready[/green]"
        else:
            status = ""
        table.add_row(name, p.role.value if p.role else "", _team_label(p.team), status)

    console.print(table)


def print_chat(game: GameStore, limit: int = 10):
    """Print the most recent chat lines."""
    lines = game.chat_log[-limit:]
    if not lines:
        return
    text = Text()
    for msg in lines:
        text.append(f"{msg.nickname or msg.player_id or '?'}: ", style="bold")
        text.append(f"{msg.text}\n")
    console.print(Panel(text, title="Chat", box=box.ROUNDED))


def print_movement(stats: MovementStats, radius_m: Optional[float] = None):
    """Print movement stats and, during a chase, the boundary radius."""
    table = Table(box=box.SIMPLE, show_header=False)
    table.add_column("Stat", style="dim")
    table.add_column("Value", justify="right")
    table.add_row("Distance", f"{stats.cumulative_distance_meters:.0f} m")
    table.add_row("Top speed", f"{stats.max_speed_kmh:.1f} km/h")
    table.add_row("Steps", str(stats.estimated_steps))
    if radius_m is not None:
        table.add_row("Zone radius", f"{radius_m:.0f} m")
    console.print(table)


def print_result(game: GameStore):
    """Print the final outcome."""
    result = game.result
    if result is None:
        return
    winner = result.winner.value if result.winner else "Nobody"
    print_header("GAME OVER", f"Winner: {winner}")
    if result.reason:
        console.print(f"[dim]{result.reason}[/dim]")


def print_connecting(uri: str):
    console.print(f"[dim]Connecting to {uri}...[/dim]")


def print_error(message: str):
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def print_info(message: str):
    """Print an info message."""
    console.print(f"[cyan]{message}[/cyan]")


async def get_nickname(default: str = "") -> Optional[str]:
    """Prompt for a nickname."""
    name = await questionary.text(
        "Nickname:",
        default=default,
        validate=lambda text: bool(text.strip()) or "Nickname cannot be empty",
    ).ask_async()
    return name.strip() if name else None


async def get_main_action() -> str:
    """Create, join or quit."""
    result = await questionary.select(
        "Choose an option:",
        choices=["Create room", "Join room", "Quit"],
        use_indicator=True,
    ).ask_async()
    return {"Create room": "create", "Join room": "join"}.get(result, "quit")


async def get_room_code() -> Optional[str]:
    """Prompt for a room code or a pasted invite link."""
    code = await questionary.text("Room code or invite link:").ask_async()
    return code.strip() if code else None


def room_actions(game: GameStore, player: PlayerStore) -> List[str]:
    """Actions available in the current phase for this player."""
    actions = ["Refresh", "Chat"]
    if game.phase in (None, Phase.LOBBY):
        if player.role == Role.HOST:
            actions += ["Shuffle teams", "Start game"]
    elif game.phase in (Phase.HIDING, Phase.CHASE):
        if player.team == Team.POLICE:
            actions += ["Capture", "Release"]
        elif player.team == Team.THIEF:
            actions += ["Push to talk", "Stop talking"]
        actions.append("Stats")
    actions.append("Leave room")
    return actions


async def get_room_action(game: GameStore, player: PlayerStore) -> Optional[str]:
    return await questionary.select(
        "Action:",
        choices=room_actions(game, player),
        use_indicator=True,
    ).ask_async()


async def get_chat_text() -> Optional[str]:
    return await questionary.text("Message:").ask_async()


async def select_thief(game: GameStore) -> Optional[str]:
    """Pick a thief from the roster. Returns a player id."""
    thieves = game.players_on_team(Team.THIEF)
    if not thieves:
        print_info("No thieves in the roster.")
        return None
    choices = [questionary.Choice(p.nickname or p.player_id, value=p.player_id) for p in thieves]
    return await questionary.select("Thief:", choices=choices).ask_async()
