"""Terminal chess board viewer for pgchess.

Renders a Rich-based board that auto-updates by watching the synced
current_game.json via watchdog at ~4Hz. With --pgn it renders one frame
of a replay instead and exits.
"""

from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path

import chess
from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from pgchess import rules
from pgchess.replay import ReplayEngine, ReplayLoadError
from pgchess.settings import load_settings

# Unicode piece symbols
_PIECE_SYMBOLS = {
    "K": "♔", "Q": "♕", "R": "♖", "B": "♗",
    "N": "♘", "P": "♙",
    "k": "♚", "q": "♛", "r": "♜", "b": "♝",
    "n": "♞", "p": "♟",
}

_LIGHT_SQ = "grey85"
_DARK_SQ = "grey50"
_HIGHLIGHT = "yellow"
_SELECTED = "green3"
_TARGET = "pale_green3"
_CHECK = "red3"


def _load_view(path: Path) -> dict | None:
    """Load a view dict from a JSON file.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed dict or None if file missing/corrupt.
    """
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError):
        return None
    return data if isinstance(data, dict) else None


def _square_styles(state: dict) -> dict[int, str]:
    """Background overrides: last move, then destinations, selection, check."""
    styles: dict[int, str] = {}
    last_move = state.get("last_move")
    if last_move:
        for key in ("from", "to"):
            try:
                styles[chess.parse_square(last_move[key])] = _HIGHLIGHT
            except (KeyError, ValueError):
                pass
    for name in state.get("legal_destinations") or []:
        styles[chess.parse_square(name)] = _TARGET
    if state.get("selected_square"):
        styles[chess.parse_square(state["selected_square"])] = _SELECTED
    if state.get("check_square"):
        styles[chess.parse_square(state["check_square"])] = _CHECK
    return styles


def render_board(state: dict) -> Layout:
    """Render the full board layout from a session view or replay frame.

    Args:
        state: Dict with fen, last_move, move_list, etc.

    Returns:
        Rich Layout with board and sidebar.
    """
    layout = Layout()
    layout.split_row(
        Layout(name="board", ratio=2),
        Layout(name="sidebar", ratio=1),
    )
    layout["board"].update(_render_board_panel(state))
    layout["sidebar"].update(_render_sidebar(state))
    return layout


def _render_board_panel(state: dict) -> Panel:
    fen = state.get("fen", chess.STARTING_FEN)
    is_flipped = state.get("human_color") == "black"
    board = chess.Board(fen)
    styles = _square_styles(state)

    table = Table(show_header=False, show_edge=False, pad_edge=False,
                  box=None, padding=(0, 1))
    table.add_column(width=2, justify="right")
    for _ in range(8):
        table.add_column(width=3, justify="center")

    ranks = range(8) if is_flipped else range(7, -1, -1)
    files = list(range(7, -1, -1)) if is_flipped else list(range(8))

    for rank in ranks:
        row: list[Text] = [Text(str(rank + 1), style="bold")]
        for file in files:
            sq = chess.square(file, rank)
            piece = board.piece_at(sq)
            is_light = (rank + file) % 2 == 1
            bg = styles.get(sq, _LIGHT_SQ if is_light else _DARK_SQ)
            symbol = _PIECE_SYMBOLS.get(piece.symbol(), "?") if piece else " "
            row.append(Text(f" {symbol} ", style=f"on {bg}"))
        table.add_row(*row)

    file_labels = [Text("  ")]
    for f in files:
        file_labels.append(Text(f" {chr(ord('a') + f)} ", style="bold"))
    table.add_row(*file_labels)

    title = "pgchess"
    termination = state.get("termination") or {}
    if state.get("is_game_over"):
        title = f"Game Over: {termination.get('result', '?')} ({termination.get('kind', '')})"
    elif "ply" in state:
        title = f"Replay: move {state['ply'] + 1} / {state.get('move_count', 0)}"

    return Panel(table, title=title, border_style="blue")


def _render_sidebar(state: dict) -> Panel:
    parts: list[str] = []

    if "ply" not in state:
        parts.append(f"[bold]Mode:[/bold] {state.get('mode', '?')}")
        if state.get("mode") == "ai":
            parts.append(f"Opponent level: {state.get('level', '?')}")
            parts.append(f"Playing as: {state.get('human_color', 'white')}")
        turn = state.get("turn") or "?"
        parts.append(f"To move: {turn}")
        if state.get("is_thinking"):
            parts.append("[italic]Opponent is thinking...[/italic]")
        if state.get("opponent_error"):
            parts.append(f"[red]{state['opponent_error']}[/red]")
        parts.append("")

    move_list = state.get("move_list", [])
    if move_list:
        parts.append("[bold]Moves:[/bold]")
        for i in range(0, len(move_list), 2):
            move_num = i // 2 + 1
            white_move = move_list[i]
            black_move = move_list[i + 1] if i + 1 < len(move_list) else ""
            parts.append(f"  {move_num}. {white_move} {black_move}")
        parts.append("")

    annotation = state.get("annotation")
    if annotation:
        parts.append(f"[bold]{annotation['san']}[/bold]: {annotation['classification']}")
        if annotation.get("explanation"):
            parts.append(f"  {annotation['explanation']}")
        if annotation.get("evaluation") is not None:
            parts.append(f"  Eval: {annotation['evaluation'] / 100.0:+.2f}")
        parts.append("")

    accuracy = state.get("accuracy")
    if accuracy:
        parts.append("[bold]Accuracy:[/bold]")
        for color in ("white", "black"):
            value = accuracy.get(color)
            shown = f"{value:.1f}%" if value is not None else "n/a"
            parts.append(f"  {color.capitalize()}: {shown}")

    captured = state.get("captured_pieces")
    if captured:
        white_taken = "".join(_PIECE_SYMBOLS[p] for p in captured.get("white", []))
        black_taken = "".join(_PIECE_SYMBOLS[p.upper()] for p in captured.get("black", []))
        parts.append(f"White took: {white_taken}")
        parts.append(f"Black took: {black_taken}")
        balance = state.get("material_balance", 0)
        if balance:
            parts.append(f"Material: {balance:+d}")

    return Panel("\n".join(parts), title="Info", border_style="green")


def _render_waiting() -> Panel:
    return Panel(
        Text("Waiting for game...\n\nStart a game via the MCP server to see the board.",
             justify="center"),
        title="pgchess",
        border_style="dim",
    )


def _watch_loop(console: Console, path: Path) -> None:
    """Watch the synced view file and auto-update display at ~4Hz.

    Args:
        console: Rich Console instance.
        path: current_game.json to watch.
    """
    from watchdog.events import FileSystemEventHandler
    from watchdog.observers import Observer

    last_state: dict | None = None
    state_changed = True

    class _Handler(FileSystemEventHandler):
        def on_any_event(self, event):
            nonlocal state_changed
            if str(event.src_path).endswith(path.name) or str(
                getattr(event, "dest_path", "")
            ).endswith(path.name):
                state_changed = True

    observer = Observer()
    path.parent.mkdir(parents=True, exist_ok=True)
    observer.schedule(_Handler(), str(path.parent), recursive=False)
    observer.start()

    try:
        with Live(console=console, refresh_per_second=4) as live:
            while True:
                if state_changed:
                    state = _load_view(path)
                    if state is not None and "fen" in state:
                        last_state = state
                        live.update(render_board(state))
                    elif last_state is None:
                        live.update(_render_waiting())
                    state_changed = False
                time.sleep(0.25)
    except KeyboardInterrupt:
        pass
    finally:
        observer.stop()
        observer.join()


def main() -> None:
    """CLI entry point for tui.py."""
    parser = argparse.ArgumentParser(description="pgchess terminal viewer")
    parser.add_argument("--pgn", type=Path, help="Render a replay of this PGN file and exit")
    parser.add_argument(
        "--annotations", type=Path,
        help="JSON annotation list (or analysis result) for --pgn",
    )
    parser.add_argument("--ply", type=int, default=-1, help="Ply to show with --pgn (-1 = last)")
    args = parser.parse_args()

    console = Console()

    if args.pgn is not None:
        pgn = args.pgn.read_text(encoding="utf-8")
        accuracies = None
        if args.annotations is not None:
            data = json.loads(args.annotations.read_text(encoding="utf-8"))
            annotations = data if isinstance(data, list) else data["annotations"]
            accuracies = None if isinstance(data, list) else data.get("accuracies")
        else:
            try:
                moves = rules.decode(pgn)
            except rules.NotationError as exc:
                console.print(f"[red]Could not load game: {exc}[/red]")
                sys.exit(1)
            annotations = [
                {"ply": i, "side": m.color, "san": m.san, "classification": "Okay"}
                for i, m in enumerate(moves)
            ]
        try:
            replay = ReplayEngine.load(pgn, annotations, accuracies)
        except ReplayLoadError as exc:
            console.print(f"[red]Could not load game: {exc}[/red]")
            sys.exit(1)
        ply = replay.move_count - 1 if args.ply == -1 else args.ply
        console.print(render_board(replay.frame(ply)))
        return

    _watch_loop(console, load_settings().current_game_path)


if __name__ == "__main__":
    main()
