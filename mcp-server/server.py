"""MCP server for pgchess.

Exposes interactive game sessions and game replay/analysis via FastMCP.
Sessions and replays are stored in memory keyed by UUID. The full session
view is synced to data/current_game.json after every change for the
terminal viewer; finished games are saved as PGN and appended to the
game history.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
import uuid
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path

# Add project root and mcp-server dir to path for imports
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_MCP_SERVER_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(_PROJECT_ROOT))
sys.path.insert(0, str(_MCP_SERVER_DIR))

from mcp.server.fastmcp import FastMCP  # noqa: E402

from pgchess import rules  # noqa: E402
from pgchess.analysis import GameAnalyzer  # noqa: E402
from pgchess.difficulty import adjust_difficulty as _adjust_difficulty  # noqa: E402
from pgchess.engine import StockfishSuggester  # noqa: E402
from pgchess.history import HistoryStore  # noqa: E402
from pgchess.oracle import MoveSuggestionOracle, RandomOracle, SuggestionError  # noqa: E402
from pgchess.replay import ReplayEngine, ReplayLoadError  # noqa: E402
from pgchess.session import MODE_AI, SessionEngine  # noqa: E402
from pgchess.settings import load_settings  # noqa: E402

from response_schemas import (  # noqa: E402
    minify_replay_frame,
    minify_replay_report,
    minify_session_view,
)

logger = logging.getLogger(__name__)

mcp = FastMCP("pgchess")

_settings = load_settings()
_DATA_DIR = _settings.data_dir

# In-memory stores: game_id -> SessionEngine, replay_id -> ReplayEngine
_games: dict[str, SessionEngine] = {}
_replays: dict[str, ReplayEngine] = {}
_saved_games: set[tuple[str, int]] = set()

_history = HistoryStore(_settings.history_path)


def _make_oracle() -> MoveSuggestionOracle:
    """Stockfish if installed, otherwise a random legal-move opponent."""
    try:
        return StockfishSuggester(stockfish_path=_settings.stockfish_path)
    except FileNotFoundError as exc:
        logger.warning("%s Falling back to random moves.", exc)
        return RandomOracle()


def _sync_game_json(view: dict) -> None:
    """Write the session view to data/current_game.json atomically.

    Args:
        view: Full session view dict to persist.
    """
    _DATA_DIR.mkdir(parents=True, exist_ok=True)
    target = _DATA_DIR / "current_game.json"
    tmp = _DATA_DIR / "current_game.tmp"
    tmp.write_text(
        json.dumps(view, indent=2, default=str, ensure_ascii=False),
        encoding="utf-8",
    )
    os.replace(tmp, target)


def _auto_save(game_id: str, engine: SessionEngine) -> None:
    """Save a finished game's PGN to data/games/ and append it to history.

    Args:
        game_id: UUID of the game.
        engine: Session engine holding the finished game.
    """
    record = engine.to_record()

    games_dir = _DATA_DIR / "games"
    games_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    filename = f"game_{timestamp}_{game_id[:8]}.pgn"
    target = games_dir / filename
    tmp = games_dir / f"{filename}.tmp"
    tmp.write_text(record.pgn + "\n", encoding="utf-8")
    os.replace(tmp, target)

    _history.append(record)
    logger.info("Saved finished game %s to %s", game_id, target)


def _on_change_for(game_id: str):
    def _on_change(engine: SessionEngine) -> None:
        _sync_game_json(engine.view())
        key = (game_id, engine.generation)
        if engine.termination.is_terminal and key not in _saved_games:
            _saved_games.add(key)
            _auto_save(game_id, engine)

    return _on_change


def _get_game(game_id: str) -> SessionEngine | None:
    return _games.get(game_id)


def _session_response(game_id: str, engine: SessionEngine, **extra) -> dict:
    view = engine.view()
    view["game_id"] = game_id
    response = minify_session_view(view)
    response.update(extra)
    return response


# ---------------------------------------------------------------------------
# Session tools
# ---------------------------------------------------------------------------


@mcp.tool()
async def new_game(
    mode: str = "ai",
    human_color: str = "white",
    level: int | None = None,
    tier: str | None = None,
    starting_fen: str | None = None,
    wait: bool = True,
) -> dict:
    """Start a new game against the computer or between two humans.

    Args:
        mode: 'ai' (play the computer) or 'two-player'. Default 'ai'.
        human_color: 'white' or 'black' in 'ai' mode. Default 'white'.
        level: Opponent difficulty 1-10.
        tier: 'Beginner', 'Intermediate' or 'Advanced' (overrides level).
        starting_fen: Optional custom starting position FEN.
        wait: If the computer moves first, wait for its move.

    Returns:
        Minified session view with the new game_id.
    """
    if tier is not None:
        try:
            level = _adjust_difficulty(tier).level
        except ValueError as exc:
            return {"error": str(exc)}

    game_id = str(uuid.uuid4())
    oracle = _make_oracle() if mode == MODE_AI else None
    try:
        engine = SessionEngine(
            oracle=oracle,
            settings=_settings,
            mode=mode,
            human_color=human_color,
            level=level,
            starting_fen=starting_fen,
            on_change=_on_change_for(game_id),
        )
        engine.reset()
    except ValueError as exc:
        close = getattr(oracle, "close", None)
        if callable(close):
            close()
        return {"error": f"Could not start game: {exc}"}

    _games[game_id] = engine
    if wait:
        await engine.wait_for_opponent()
    return _session_response(game_id, engine)


@mcp.tool()
async def reset_game(
    game_id: str,
    human_color: str | None = None,
    wait: bool = True,
) -> dict:
    """Abandon the current game and start over with the same settings.

    Args:
        game_id: UUID of the game.
        human_color: Optionally switch sides.
        wait: If the computer moves first, wait for its move.

    Returns:
        Minified session view of the fresh game.
    """
    engine = _get_game(game_id)
    if engine is None:
        return {"error": f"Game not found: {game_id}"}
    try:
        engine.reset(human_color=human_color)
    except ValueError as exc:
        return {"error": str(exc)}
    if wait:
        await engine.wait_for_opponent()
    return _session_response(game_id, engine)


@mcp.tool()
def get_board(game_id: str) -> dict:
    """Get the current view of a game.

    Args:
        game_id: UUID of the game.

    Returns:
        Minified session view.
    """
    engine = _get_game(game_id)
    if engine is None:
        return {"error": f"Game not found: {game_id}"}
    return _session_response(game_id, engine)


@mcp.tool()
def end_game(game_id: str) -> dict:
    """Close a game and stop its opponent engine.

    Args:
        game_id: UUID of the game.

    Returns:
        Dict with the closed game_id, or error.
    """
    engine = _games.pop(game_id, None)
    if engine is None:
        return {"error": f"Game not found: {game_id}"}
    engine.close()
    logger.info("Closed game %s", game_id)
    return {"game_id": game_id, "closed": True}


@mcp.tool()
async def click_square(game_id: str, square: str, wait: bool = True) -> dict:
    """Click a square: select a piece, reselect, deselect or move.

    Args:
        game_id: UUID of the game.
        square: Square name (e.g. 'e2').
        wait: After a committed move, wait for the computer's reply.

    Returns:
        Minified session view plus 'moved' flag.
    """
    engine = _get_game(game_id)
    if engine is None:
        return {"error": f"Game not found: {game_id}"}
    moved = engine.click(square.strip().lower())
    if moved and wait:
        await engine.wait_for_opponent()
    return _session_response(game_id, engine, moved=moved)


@mcp.tool()
async def make_move(game_id: str, move: str, wait: bool = True) -> dict:
    """Make a move given as origin and destination squares.

    Args:
        game_id: UUID of the game.
        move: Move in UCI form (e.g. 'e2e4', 'e7e8q'); 'e2-e4' also accepted.
        wait: Wait for the computer's reply before returning.

    Returns:
        Minified session view plus 'accepted' flag. Illegal moves are not
        errors: the position is unchanged and 'accepted' is False.
    """
    engine = _get_game(game_id)
    if engine is None:
        return {"error": f"Game not found: {game_id}"}

    text = move.strip().lower().replace("-", "")
    if len(text) not in (4, 5):
        return {"error": f"Invalid move format: {move}. Use UCI, e.g. e2e4 or e7e8q."}

    accepted = engine.attempt_move(text[:2], text[2:4], text[4:5] or None)
    if accepted and wait:
        await engine.wait_for_opponent()
    return _session_response(game_id, engine, accepted=accepted)


@mcp.tool()
async def retry_opponent(game_id: str) -> dict:
    """Ask the computer to move again after a failed attempt.

    Args:
        game_id: UUID of the game.

    Returns:
        Minified session view plus 'moved' flag.
    """
    engine = _get_game(game_id)
    if engine is None:
        return {"error": f"Game not found: {game_id}"}
    moved = await engine.play_opponent_move()
    return _session_response(game_id, engine, moved=moved)


@mcp.tool()
async def get_hint(game_id: str) -> dict:
    """Suggest a strong move for the side to move, without playing it.

    Args:
        game_id: UUID of the game.

    Returns:
        Dict with uci, san and explanation.
    """
    engine = _get_game(game_id)
    if engine is None:
        return {"error": f"Game not found: {game_id}"}
    if engine.mode != MODE_AI:
        return {"error": "Hints are only available in games against the computer"}
    try:
        hint = await engine.request_hint()
    except SuggestionError as exc:
        return {"error": f"Hint failed: {exc}"}
    if hint is None:
        return {"error": "No hint available right now"}
    return {"uci": hint.move.uci, "san": hint.move.san, "explanation": hint.explanation}


@mcp.tool()
def set_difficulty(game_id: str, level: int) -> dict:
    """Change the computer's difficulty mid-game.

    Args:
        game_id: UUID of the game.
        level: New level (clamped to 1-10).

    Returns:
        Confirmation dict with the applied level.
    """
    engine = _get_game(game_id)
    if engine is None:
        return {"error": f"Game not found: {game_id}"}
    applied = engine.set_level(level)
    return {
        "game_id": game_id,
        "level": applied,
        "message": f"Difficulty set to level {applied}",
    }


@mcp.tool()
def adjust_difficulty(tier: str) -> dict:
    """Map a named difficulty tier to a numeric level and description.

    Args:
        tier: 'Beginner', 'Intermediate' or 'Advanced'.

    Returns:
        Dict with tier, level and description.
    """
    try:
        return asdict(_adjust_difficulty(tier))
    except ValueError as exc:
        return {"error": str(exc)}


@mcp.tool()
def get_game_pgn(game_id: str) -> dict:
    """Export a game as PGN.

    Args:
        game_id: UUID of the game.

    Returns:
        Dict with pgn string.
    """
    engine = _get_game(game_id)
    if engine is None:
        return {"error": f"Game not found: {game_id}"}
    return {"pgn": engine.pgn()}


# ---------------------------------------------------------------------------
# Replay tools
# ---------------------------------------------------------------------------


def _store_replay(replay: ReplayEngine) -> str:
    replay_id = str(uuid.uuid4())
    _replays[replay_id] = replay
    return replay_id


@mcp.tool()
def load_replay(
    annotations: list[dict],
    pgn: str | None = None,
    history_index: int | None = None,
    accuracies: dict | None = None,
) -> dict:
    """Load a finished game and its per-move annotations for review.

    Args:
        annotations: One dict per ply: ply, side, san, classification,
            explanation, evaluation, best_alternative.
        pgn: PGN of the game. Either this or history_index is required.
        history_index: Index into the saved game history instead of pgn.
        accuracies: Optional {'white': float, 'black': float}.

    Returns:
        Dict with replay_id, move_count and the final frame.
    """
    if pgn is None:
        if history_index is None:
            return {"error": "Provide pgn or history_index"}
        try:
            pgn = _history.get(history_index).pgn
        except IndexError as exc:
            return {"error": str(exc)}

    try:
        replay = ReplayEngine.load(pgn, annotations, accuracies)
    except ReplayLoadError as exc:
        return {"error": str(exc), "reason": exc.reason}

    replay_id = _store_replay(replay)
    return {
        "replay_id": replay_id,
        "move_count": replay.move_count,
        "frame": minify_replay_frame(replay.frame(replay.move_count - 1)),
    }


@mcp.tool()
async def analyze_game(pgn: str) -> dict:
    """Annotate every move of a game with Stockfish and load it for review.

    Args:
        pgn: PGN of the finished game.

    Returns:
        Dict with replay_id, move_count and the aggregate report.
    """
    analyzer = GameAnalyzer()
    try:
        result = await asyncio.to_thread(analyzer.analyze, pgn)
    except rules.NotationError as exc:
        return {"error": f"Invalid PGN: {exc}"}
    except FileNotFoundError as exc:
        return {"error": str(exc)}

    try:
        replay = ReplayEngine.load(result.pgn, result.annotations, result.accuracies)
    except ReplayLoadError as exc:
        return {"error": str(exc), "reason": exc.reason}

    replay_id = _store_replay(replay)
    return {
        "replay_id": replay_id,
        "move_count": replay.move_count,
        "report": minify_replay_report(replay.aggregate()),
    }


@mcp.tool()
def replay_board(replay_id: str, ply: int) -> dict:
    """Show the board after a given ply of a loaded replay.

    Args:
        replay_id: UUID of the replay.
        ply: 0-based ply; -1 for the starting position. Out-of-range
            values are clamped.

    Returns:
        Minified replay frame.
    """
    replay = _replays.get(replay_id)
    if replay is None:
        return {"error": f"Replay not found: {replay_id}"}
    frame = replay.frame(ply)
    _sync_game_json(frame)
    return minify_replay_frame(frame)


@mcp.tool()
def replay_report(replay_id: str) -> dict:
    """Per-side classification counts and accuracy for a loaded replay.

    Args:
        replay_id: UUID of the replay.

    Returns:
        Minified report dict.
    """
    replay = _replays.get(replay_id)
    if replay is None:
        return {"error": f"Replay not found: {replay_id}"}
    return minify_replay_report(replay.aggregate())


@mcp.tool()
def evaluation_series(replay_id: str) -> dict:
    """Evaluation (centipawns, white's view) after each ply.

    Args:
        replay_id: UUID of the replay.

    Returns:
        Dict with a list of [ply, evaluation] pairs.
    """
    replay = _replays.get(replay_id)
    if replay is None:
        return {"error": f"Replay not found: {replay_id}"}
    return {"replay_id": replay_id, "series": [[p, e] for p, e in replay.evaluation_series()]}


# ---------------------------------------------------------------------------
# History tools
# ---------------------------------------------------------------------------


@mcp.tool()
def list_history() -> dict:
    """List saved finished games, oldest first.

    Returns:
        Dict with games (index, date, white, black, result).
    """
    records = _history.load()
    return {
        "games": [
            {"index": i, "date": r.date, "white": r.white, "black": r.black, "result": r.result}
            for i, r in enumerate(records)
        ]
    }


@mcp.tool()
def clear_history() -> dict:
    """Delete all saved game history."""
    _history.clear()
    return {"message": "Game history cleared"}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    mcp.run()
