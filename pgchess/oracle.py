"""Move suggestion oracle contract.

An oracle receives a position (FEN), a difficulty level and the legal
moves, and eventually answers with one move in UCI format plus a short
rationale. Latency is unbounded and the call may fail; callers bound the
wait themselves.
"""

from __future__ import annotations

import random
from typing import Protocol

import chess

from pgchess.models import Suggestion, SuggestionRequest


class SuggestionError(RuntimeError):
    """Raised by an oracle that cannot produce a move."""


class MoveSuggestionOracle(Protocol):
    """Anything that can suggest a move asynchronously."""

    async def suggest_move(self, request: SuggestionRequest) -> Suggestion:
        ...


class RandomOracle:
    """Oracle that plays a uniformly random legal move.

    Used when Stockfish is not installed, and as a predictable stand-in
    when seeded.
    """

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    async def suggest_move(self, request: SuggestionRequest) -> Suggestion:
        board = chess.Board(request.fen)
        legal = [m.uci() for m in board.legal_moves]
        if not legal:
            raise SuggestionError("No legal moves available")
        return Suggestion(
            move=self._rng.choice(legal),
            explanation="Random legal move.",
        )
