"""Replay and analysis reconstruction for finished games.

A ReplayEngine is built once from a game's notation and its per-ply
annotations, then queried by ply index. It holds no cursor: every
board_at_ply() call replays from the initial position, so repeated
queries are deterministic and the engine can be shared freely.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import asdict, dataclass, replace

from pgchess import rules
from pgchess.models import (
    BLACK,
    WHITE,
    Annotation,
    Classification,
    GameRecord,
    Move,
    Position,
    ReconstructedBoard,
    ReplayReport,
    optional_float,
)

logger = logging.getLogger(__name__)


class ReplayLoadError(ValueError):
    """Raised when a replay cannot be built. No engine is created.

    Attributes:
        reason: One of 'notation', 'count_mismatch', 'ply_order',
            'side_mismatch', 'accuracy'.
    """

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class EvaluationSeries:
    """Restartable iterable of (ply, evaluation) pairs.

    Each iteration walks the annotation tuple afresh; plies without an
    evaluation are skipped rather than interpolated.
    """

    def __init__(self, annotations: tuple[Annotation, ...]) -> None:
        self._annotations = annotations

    def __iter__(self) -> Iterator[tuple[int, float]]:
        for annotation in self._annotations:
            if annotation.evaluation is not None:
                yield annotation.ply, float(annotation.evaluation)

    def __len__(self) -> int:
        return sum(1 for a in self._annotations if a.evaluation is not None)


@dataclass(frozen=True)
class _ReplayRecord:
    notation: str
    initial: Position
    moves: tuple[Move, ...]
    annotations: tuple[Annotation, ...]
    accuracy: dict


class ReplayEngine:
    """Read-only view over one finished, annotated game."""

    def __init__(self, record: _ReplayRecord) -> None:
        self._record = record

    @classmethod
    def load(
        cls,
        notation: str,
        annotations: Sequence[Annotation | dict],
        accuracies: dict[str, float] | None = None,
    ) -> ReplayEngine:
        """Validate a game and its annotations and build a replay.

        Args:
            notation: PGN text (or bare SAN movetext) of the finished game.
            annotations: One annotation per ply, as Annotation or dict.
            accuracies: Optional per-side accuracy supplied by the analysis
                producer ({'white': float, 'black': float}).

        Returns:
            ReplayEngine over an immutable record.

        Raises:
            ReplayLoadError: If the notation does not replay end to end, or
                the annotations do not line up one-to-one with the moves.
        """
        try:
            starting_fen, moves = rules.decode_game(notation)
        except rules.NotationError as exc:
            logger.info("Replay load rejected: %s", exc)
            raise ReplayLoadError("notation", str(exc)) from exc
        if not moves:
            raise ReplayLoadError("notation", "Notation contains no moves")

        try:
            parsed = tuple(
                replace(a, side=a.side.lower(), evaluation=optional_float(a.evaluation))
                for a in (
                    item if isinstance(item, Annotation) else Annotation.from_dict(item)
                    for item in annotations
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ReplayLoadError("ply_order", f"Malformed annotation: {exc}") from exc

        if len(parsed) != len(moves):
            logger.info(
                "Replay load rejected: %d moves but %d annotations", len(moves), len(parsed)
            )
            raise ReplayLoadError(
                "count_mismatch",
                f"Notation has {len(moves)} moves but {len(parsed)} annotations were given",
            )

        for index, (annotation, move) in enumerate(zip(parsed, moves)):
            if annotation.ply != index:
                raise ReplayLoadError(
                    "ply_order",
                    f"Annotation {index} has ply {annotation.ply}; plies must be 0-based "
                    f"and strictly increasing",
                )
            if annotation.side and annotation.side != move.color:
                raise ReplayLoadError(
                    "side_mismatch",
                    f"Annotation for ply {index} is for {annotation.side} but "
                    f"{move.san} was played by {move.color}",
                )

        accuracy = {WHITE: None, BLACK: None}
        for side, value in (accuracies or {}).items():
            key = str(side).lower()
            if key not in accuracy or value is None:
                continue
            try:
                accuracy[key] = float(value)
            except (TypeError, ValueError) as exc:
                raise ReplayLoadError(
                    "accuracy", f"Accuracy for {key} is not a number: {value!r}"
                ) from exc

        record = _ReplayRecord(
            notation=notation,
            initial=rules.initial_position(starting_fen),
            moves=tuple(moves),
            annotations=parsed,
            accuracy=accuracy,
        )
        return cls(record)

    @classmethod
    def from_record(
        cls,
        record: GameRecord,
        annotations: Sequence[Annotation | dict],
        accuracies: dict[str, float] | None = None,
    ) -> ReplayEngine:
        """Build a replay from a persisted history record."""
        return cls.load(record.pgn, annotations, accuracies)

    @property
    def move_count(self) -> int:
        return len(self._record.moves)

    @property
    def moves(self) -> tuple[Move, ...]:
        return self._record.moves

    @property
    def annotations(self) -> tuple[Annotation, ...]:
        return self._record.annotations

    @property
    def initial_position(self) -> Position:
        return self._record.initial

    def clamp(self, ply: int) -> int:
        """Clamp a ply index into [-1, move_count - 1]."""
        return max(-1, min(self.move_count - 1, ply))

    def board_at_ply(self, ply: int) -> ReconstructedBoard:
        """Reconstruct the board after the move at ``ply``.

        Args:
            ply: 0-based ply index; -1 is the initial position. Values
                outside [-1, move_count - 1] are clamped.

        Returns:
            ReconstructedBoard with the position, the move made at that
            ply (None for -1) and its annotation.
        """
        ply = self.clamp(ply)
        # Moves were validated at load, so the prefix is a legal Position.
        initial = self._record.initial
        position = Position(
            initial.starting_fen,
            initial.moves + tuple(m.uci for m in self._record.moves[: ply + 1]),
        )

        if ply < 0:
            return ReconstructedBoard(
                ply=-1,
                position=position,
                move=None,
                pieces=tuple(rules.board_contents(position)),
            )
        return ReconstructedBoard(
            ply=ply,
            position=position,
            move=self._record.moves[ply],
            pieces=tuple(rules.board_contents(position)),
            annotation=self._record.annotations[ply],
        )

    # Navigation (first / previous / next / last)

    def first(self) -> ReconstructedBoard:
        return self.board_at_ply(-1)

    def last(self) -> ReconstructedBoard:
        return self.board_at_ply(self.move_count - 1)

    def step(self, current: int, delta: int) -> ReconstructedBoard:
        return self.board_at_ply(self.clamp(current) + delta)

    def aggregate(self) -> ReplayReport:
        """Count classifications per side and pass accuracy through.

        Every known classification tag appears for both sides (zero when
        unused); unknown tags from the producer are counted as given.
        """
        counts = {
            WHITE: {c.value: 0 for c in Classification},
            BLACK: {c.value: 0 for c in Classification},
        }
        for annotation in self._record.annotations:
            side = annotation.side or self._record.moves[annotation.ply].color
            per_side = counts[side]
            per_side[annotation.classification] = per_side.get(annotation.classification, 0) + 1

        return ReplayReport(
            counts=counts,
            accuracy=dict(self._record.accuracy),
            total_moves=self.move_count,
        )

    def evaluation_series(self) -> EvaluationSeries:
        """(ply, evaluation) pairs for the trend chart."""
        return EvaluationSeries(self._record.annotations)

    def frame(self, ply: int) -> dict:
        """Plain snapshot of the board at a ply, for presentation layers."""
        board = self.board_at_ply(ply)
        move = board.move
        annotation = board.annotation
        return {
            "ply": board.ply,
            "move_count": self.move_count,
            "fen": rules.encode(board.position),
            "board": [
                {"square": p.square, "piece": p.piece_type, "color": p.color}
                for p in board.pieces
            ],
            "last_move": (
                {"from": move.origin, "to": move.destination, "san": move.san, "uci": move.uci}
                if move is not None else None
            ),
            "move_list": [m.san for m in self._record.moves],
            "annotation": asdict(annotation) if annotation is not None else None,
            "accuracy": dict(self._record.accuracy),
        }
