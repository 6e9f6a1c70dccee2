"""Environment-driven configuration for pgchess.

Variables:
    PGCHESS_DATA_DIR            - directory for current_game.json, saved PGNs
                                  and history.json (default: <project>/data)
    PGCHESS_SUGGESTION_TIMEOUT  - seconds to wait for an opponent move (15)
    PGCHESS_DEFAULT_LEVEL       - difficulty level 1-10 for new AI games (4)
    PGCHESS_STOCKFISH           - explicit Stockfish binary path
    PGCHESS_VALIDATE            - "1" enables MCP response schema validation
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

_PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEFAULT_SUGGESTION_TIMEOUT = 15.0
DEFAULT_LEVEL = 4


@dataclass(frozen=True)
class Settings:
    """Resolved runtime settings."""

    data_dir: Path = _PROJECT_ROOT / "data"
    suggestion_timeout: float = DEFAULT_SUGGESTION_TIMEOUT
    default_level: int = DEFAULT_LEVEL
    stockfish_path: str | None = None

    @property
    def current_game_path(self) -> Path:
        return self.data_dir / "current_game.json"

    @property
    def history_path(self) -> Path:
        return self.data_dir / "history.json"


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def _level_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    return max(1, min(10, value))


def load_settings() -> Settings:
    """Read settings from the environment.

    Returns:
        Settings with defaults for unset variables.

    Raises:
        ValueError: If a numeric variable is malformed.
    """
    data_dir = os.environ.get("PGCHESS_DATA_DIR")
    return Settings(
        data_dir=Path(data_dir) if data_dir else _PROJECT_ROOT / "data",
        suggestion_timeout=_float_env(
            "PGCHESS_SUGGESTION_TIMEOUT", DEFAULT_SUGGESTION_TIMEOUT
        ),
        default_level=_level_env("PGCHESS_DEFAULT_LEVEL", DEFAULT_LEVEL),
        stockfish_path=os.environ.get("PGCHESS_STOCKFISH") or None,
    )
