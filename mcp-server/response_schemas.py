"""Response schemas and minification for MCP tool responses.

Minifies MCP tool return values to reduce LLM context token waste.
data/current_game.json (TUI sync) keeps the full view; only MCP return
values are minified.

PGN string format for move_list uses standard chess notation
(1.e4 e5 2.Nf3 ...) which is natural for the LLM agent to read.
"""

from __future__ import annotations

import os


# ---------------------------------------------------------------------------
# Minification functions
# ---------------------------------------------------------------------------


def minify_session_view(view: dict) -> dict:
    """Minify a session view dict for MCP response.

    Drops the per-square board listing (the FEN carries it), compacts
    move_list to a PGN string and flattens termination to its result.

    Args:
        view: Full session view (SessionEngine.view() plus game_id).

    Returns:
        Minified dict with reduced token footprint.
    """
    result = {}

    for key in (
        "game_id", "state", "mode", "human_color", "level", "fen", "turn",
        "selected_square", "legal_destinations", "check_square",
        "is_thinking", "is_game_over", "material_balance",
    ):
        if key in view:
            result[key] = view[key]

    last_move = view.get("last_move")
    result["last_move"] = last_move["san"] if isinstance(last_move, dict) else None

    move_list = view.get("move_list", [])
    if isinstance(move_list, list):
        result["move_list"] = _moves_to_pgn_string(move_list)
    else:
        result["move_list"] = move_list

    termination = view.get("termination")
    if isinstance(termination, dict):
        result["result"] = termination.get("result", "*")
        if termination.get("kind") != "in_progress":
            result["termination"] = termination.get("kind")
    else:
        result["result"] = "*"

    # Only include optional fields when set
    if view.get("opponent_error"):
        result["opponent_error"] = view["opponent_error"]
    if view.get("hint"):
        result["hint"] = view["hint"]

    # Removed fields: board, captured_pieces, session_id, is_opponent_turn

    return result


def minify_replay_frame(frame: dict) -> dict:
    """Minify a replay frame for MCP response.

    Args:
        frame: Full frame dict from ReplayEngine.frame().

    Returns:
        Minified dict; annotation nulls are dropped.
    """
    result = {
        "ply": frame.get("ply"),
        "move_count": frame.get("move_count"),
        "fen": frame.get("fen"),
    }

    last_move = frame.get("last_move")
    result["last_move"] = last_move["san"] if isinstance(last_move, dict) else None

    annotation = frame.get("annotation")
    if isinstance(annotation, dict):
        result["annotation"] = {
            k: v for k, v in annotation.items() if v not in (None, "")
        }
    else:
        result["annotation"] = None

    # Removed fields: board, move_list, accuracy (see replay_report)

    return result


def minify_replay_report(report) -> dict:
    """Minify a ReplayReport for MCP response.

    Keeps only non-zero classification counts per side.

    Args:
        report: ReplayReport from ReplayEngine.aggregate().

    Returns:
        Dict with total_moves, counts and accuracy.
    """
    return {
        "total_moves": report.total_moves,
        "counts": {
            side: {tag: n for tag, n in counts.items() if n}
            for side, counts in report.counts.items()
        },
        "accuracy": dict(report.accuracy),
    }


# ---------------------------------------------------------------------------
# Helper: move list to PGN string
# ---------------------------------------------------------------------------


def _moves_to_pgn_string(moves: list[str]) -> str:
    """Convert a list of SAN moves to a PGN move string.

    E.g., ['e4', 'e5', 'Nf3', 'Nc6'] -> '1.e4 e5 2.Nf3 Nc6'

    Args:
        moves: List of SAN move strings.

    Returns:
        PGN-formatted move string.
    """
    if not moves:
        return ""

    parts = []
    for i, move in enumerate(moves):
        if i % 2 == 0:
            parts.append(f"{i // 2 + 1}.{move}")
        else:
            parts.append(move)

    return " ".join(parts)


# ---------------------------------------------------------------------------
# Validation schemas (dict-based)
# ---------------------------------------------------------------------------

SESSION_VIEW_SCHEMA = {
    "game_id": str,
    "state": str,
    "mode": str,
    "human_color": str,
    "level": int,
    "fen": str,
    "turn": str,
    "selected_square": (str, type(None)),
    "legal_destinations": list,
    "check_square": (str, type(None)),
    "is_thinking": bool,
    "is_game_over": bool,
    "material_balance": int,
    "last_move": (str, type(None)),
    "move_list": str,
    "result": str,
}

REPLAY_FRAME_SCHEMA = {
    "ply": int,
    "move_count": int,
    "fen": str,
    "last_move": (str, type(None)),
    "annotation": (dict, type(None)),
}

REPLAY_REPORT_SCHEMA = {
    "total_moves": int,
    "counts": dict,
    "accuracy": dict,
}

ERROR_SCHEMA = {
    "error": str,
}


def validate_response(response: dict, schema: dict) -> list[str]:
    """Validate a response dict against a schema.

    Only runs when PGCHESS_VALIDATE=1 env var is set.

    Args:
        response: Response dict to validate.
        schema: Dict mapping key names to expected types (or tuple of types).

    Returns:
        List of validation error strings (empty = valid).
    """
    if os.environ.get("PGCHESS_VALIDATE") != "1":
        return []

    errors = []

    if not isinstance(response, dict):
        errors.append(f"Response is not a dict: {type(response).__name__}")
        return errors

    for key, expected_types in schema.items():
        if key not in response:
            errors.append(f"Missing key: {key}")
            continue

        value = response[key]
        if isinstance(expected_types, tuple):
            if not isinstance(value, expected_types):
                type_names = ", ".join(t.__name__ for t in expected_types)
                errors.append(
                    f"Key '{key}': expected ({type_names}), "
                    f"got {type(value).__name__}"
                )
        else:
            if not isinstance(value, expected_types):
                errors.append(
                    f"Key '{key}': expected {expected_types.__name__}, "
                    f"got {type(value).__name__}"
                )

    return errors
