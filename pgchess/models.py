"""Shared data models for pgchess.

Position, Move and TerminationStatus are the shared contract between the
session engine, the replay engine and the presentation layers (MCP server
and terminal viewer).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import chess

WHITE = "white"
BLACK = "black"


def color_name(color: chess.Color) -> str:
    """Map a python-chess color to 'white' or 'black'."""
    return WHITE if color == chess.WHITE else BLACK


def optional_float(value) -> float | None:
    """float(value), keeping None. Raises ValueError/TypeError on junk."""
    return None if value is None else float(value)


@dataclass(frozen=True)
class Position:
    """Immutable snapshot of a game: the starting FEN plus moves played from it.

    Keeping the move sequence (not just the final FEN) lets the rules layer
    answer repetition questions. Only pgchess.rules derives boards from it.
    """

    starting_fen: str = chess.STARTING_FEN
    moves: tuple[str, ...] = ()

    @property
    def ply_count(self) -> int:
        return len(self.moves)

    @property
    def fen(self) -> str:
        board = chess.Board(self.starting_fen)
        for uci in self.moves:
            board.push_uci(uci)
        return board.fen()


@dataclass(frozen=True)
class Move:
    """A committed (or legal candidate) move."""

    origin: str
    destination: str
    promotion: str | None
    san: str
    uci: str
    color: str


@dataclass(frozen=True)
class PlacedPiece:
    """A piece standing on a square."""

    square: str
    piece_type: str
    color: str


@dataclass(frozen=True)
class PositionStatus:
    """Check/end-of-game predicates of a position."""

    in_check: bool = False
    is_checkmate: bool = False
    is_stalemate: bool = False
    is_draw: bool = False
    is_threefold_repetition: bool = False


@dataclass(frozen=True)
class TerminationStatus:
    """End-of-game classification derived from the rules layer.

    kind is one of: in_progress, checkmate, stalemate, draw, repetition.
    """

    kind: str = "in_progress"
    winner: str | None = None
    reason: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.kind != "in_progress"

    @property
    def result(self) -> str:
        if self.kind == "in_progress":
            return "*"
        if self.kind == "checkmate":
            return "1-0" if self.winner == WHITE else "0-1"
        return "1/2-1/2"


IN_PROGRESS = TerminationStatus()


@dataclass(frozen=True)
class Selection:
    """Currently selected origin square and its legal moves."""

    square: str | None = None
    moves: tuple[Move, ...] = ()

    @property
    def destinations(self) -> list[str]:
        return sorted({m.destination for m in self.moves})


EMPTY_SELECTION = Selection()


@dataclass(frozen=True)
class SuggestionRequest:
    """Request sent to a move suggestion oracle."""

    fen: str
    level: int
    legal_moves: tuple[str, ...] = ()


@dataclass(frozen=True)
class Suggestion:
    """Move returned by a suggestion oracle, in UCI format, plus rationale."""

    move: str
    explanation: str = ""


@dataclass(frozen=True)
class DifficultyProfile:
    """Numeric difficulty level and human-readable description for a tier."""

    tier: str
    level: int
    description: str


class Classification(str, Enum):
    """Move quality tags produced by the analysis step."""

    BRILLIANT = "Brilliant"
    GREAT = "Great"
    BEST = "Best"
    EXCELLENT = "Excellent"
    GOOD = "Good"
    BOOK = "Book"
    INACCURACY = "Inaccuracy"
    MISTAKE = "Mistake"
    BLUNDER = "Blunder"
    FORCED = "Forced"
    OKAY = "Okay"
    THEORY = "Theory"
    MISSED_WIN = "Missed Win"


@dataclass(frozen=True)
class Annotation:
    """Quality annotation for a single ply of a finished game."""

    ply: int
    side: str
    san: str
    classification: str
    explanation: str = ""
    evaluation: float | None = None
    best_alternative: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> Annotation:
        """Build an annotation from a loosely-keyed dict (MCP/JSON input).

        Args:
            data: Dict with ply/side/san/classification and optional keys.

        Returns:
            Annotation instance.
        """
        side = str(data.get("side", data.get("player", ""))).lower()
        return cls(
            ply=int(data["ply"]),
            side=side,
            san=str(data["san"]),
            classification=str(data["classification"]),
            explanation=str(data.get("explanation", "")),
            evaluation=optional_float(data.get("evaluation")),
            best_alternative=data.get("best_alternative"),
        )


@dataclass
class MoveEvaluation:
    """Evaluation of a single move compared to the engine's best move."""

    move_san: str
    best_move_san: str
    cp_loss: int
    eval_before: float
    eval_after: float
    classification: str
    is_best: bool
    best_line: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ReconstructedBoard:
    """Position at a requested ply of a replay, plus the move made at that ply."""

    ply: int
    position: Position
    move: Move | None
    pieces: tuple[PlacedPiece, ...]
    annotation: Annotation | None = None


@dataclass
class ReplayReport:
    """Aggregate statistics over a replay's annotations."""

    counts: dict[str, dict[str, int]] = field(
        default_factory=lambda: {WHITE: {}, BLACK: {}}
    )
    accuracy: dict[str, float | None] = field(
        default_factory=lambda: {WHITE: None, BLACK: None}
    )
    total_moves: int = 0


@dataclass
class GameRecord:
    """Persisted history entry for a finished game."""

    pgn: str
    date: str
    white: str
    black: str
    result: str
