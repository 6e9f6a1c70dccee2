"""Stockfish-backed game analysis.

Produces the per-ply annotation list and per-side accuracy that
ReplayEngine.load consumes. Accuracy is the share of a side's moves that
lose at most 30 centipawns against the engine's best move.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

import chess

from pgchess import rules
from pgchess.engine import ChessEngine
from pgchess.models import BLACK, WHITE, Annotation, Classification

logger = logging.getLogger(__name__)

_ACCURATE_CP_LOSS = 30


@dataclass
class AnalysisResult:
    """Annotated game ready for ReplayEngine.load."""

    pgn: str
    annotations: list[Annotation] = field(default_factory=list)
    accuracies: dict[str, float] = field(
        default_factory=lambda: {WHITE: 0.0, BLACK: 0.0}
    )

    def to_dict(self) -> dict:
        return {
            "pgn": self.pgn,
            "annotations": [asdict(a) for a in self.annotations],
            "accuracies": dict(self.accuracies),
        }


def _explain(san: str, classification: str, cp_loss: int, best_san: str) -> str:
    if classification == Classification.FORCED.value:
        return f"{san} was the only legal move."
    if classification == Classification.BEST.value:
        return f"{san} is the engine's top choice."
    return f"{san} loses {cp_loss} centipawns; {best_san} was stronger."


class GameAnalyzer:
    """Annotates every ply of a game with a full-strength engine."""

    def __init__(self, engine: ChessEngine | None = None, depth: int = 16) -> None:
        self._engine = engine
        self._owns_engine = engine is None
        self._depth = depth

    def analyze(self, pgn: str) -> AnalysisResult:
        """Evaluate and classify every move of a game.

        Args:
            pgn: PGN text (or bare SAN movetext).

        Returns:
            AnalysisResult with one annotation per ply.

        Raises:
            NotationError: If the PGN does not replay cleanly.
            FileNotFoundError: If no engine was given and Stockfish is missing.
        """
        starting_fen, moves = rules.decode_game(pgn)
        engine = self._engine
        if engine is None:
            engine = ChessEngine()
            engine.set_difficulty(3000)

        board = chess.Board(starting_fen)
        annotations: list[Annotation] = []
        counts = {WHITE: 0, BLACK: 0}
        accurate = {WHITE: 0, BLACK: 0}

        try:
            for ply, move in enumerate(moves):
                chess_move = chess.Move.from_uci(move.uci)
                forced = board.legal_moves.count() == 1
                evaluation = engine.evaluate_move(board, chess_move, depth=self._depth)

                classification = (
                    Classification.FORCED.value if forced else evaluation.classification
                )
                sign = 1 if move.color == WHITE else -1
                counts[move.color] += 1
                if evaluation.cp_loss <= _ACCURATE_CP_LOSS:
                    accurate[move.color] += 1

                annotations.append(Annotation(
                    ply=ply,
                    side=move.color,
                    san=move.san,
                    classification=classification,
                    explanation=_explain(
                        move.san, classification, evaluation.cp_loss, evaluation.best_move_san
                    ),
                    evaluation=round(evaluation.eval_after * 100 * sign),
                    best_alternative=(
                        None if evaluation.is_best or forced else evaluation.best_move_san
                    ),
                ))
                board.push(chess_move)
        finally:
            if self._owns_engine:
                engine.close()

        accuracies = {
            color: round(accurate[color] / counts[color] * 100, 1) if counts[color] else 0.0
            for color in (WHITE, BLACK)
        }
        logger.info(
            "Analyzed %d plies (accuracy white %.1f, black %.1f)",
            len(annotations), accuracies[WHITE], accuracies[BLACK],
        )
        return AnalysisResult(pgn=pgn, annotations=annotations, accuracies=accuracies)
