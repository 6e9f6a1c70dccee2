"""Shared test fixtures with dual-mode support (mocked vs real Stockfish).

Usage:
    pytest tests/                  # Fast, scripted oracles (no Stockfish)
    pytest tests/ --e2e            # Real Stockfish for integration tests

Fixtures:
    scripted_oracle    - Oracle answering from a queue of UCI moves.
    mock_chess_engine  - MagicMock ChessEngine returning valid evaluations.
    enable_validation  - Sets PGCHESS_VALIDATE=1 for schema validation.
"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import chess
import pytest

from pgchess.models import MoveEvaluation, Suggestion, SuggestionRequest
from pgchess.oracle import SuggestionError
from pgchess.settings import Settings


# ---------------------------------------------------------------------------
# CLI option and marker registration
# ---------------------------------------------------------------------------


def pytest_addoption(parser):
    """Register --e2e CLI flag for real Stockfish tests."""
    parser.addoption(
        "--e2e",
        action="store_true",
        default=False,
        help="Run with real Stockfish engine (no mocks).",
    )


def pytest_configure(config):
    """Register the e2e marker."""
    config.addinivalue_line(
        "markers", "e2e: mark test as end-to-end (requires real Stockfish)"
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--e2e"):
        return
    skip_e2e = pytest.mark.skip(reason="needs --e2e and a Stockfish binary")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


# ---------------------------------------------------------------------------
# Oracles
# ---------------------------------------------------------------------------


class ScriptedOracle:
    """Answers with queued UCI moves; falls back to the first legal move.

    Every request is recorded in ``requests``. Queue an Exception instance
    to make the next call raise it.
    """

    def __init__(self, moves=None) -> None:
        self.queue = list(moves or [])
        self.requests: list[SuggestionRequest] = []

    async def suggest_move(self, request: SuggestionRequest) -> Suggestion:
        self.requests.append(request)
        if self.queue:
            item = self.queue.pop(0)
            if isinstance(item, Exception):
                raise item
            return Suggestion(move=item, explanation="scripted")
        legal = sorted(request.legal_moves)
        if not legal:
            raise SuggestionError("No legal moves available")
        return Suggestion(move=legal[0], explanation="first legal move")


class GatedOracle:
    """Blocks every request until ``release()`` supplies the answer."""

    def __init__(self) -> None:
        self.requests: list[SuggestionRequest] = []
        self._pending: list[asyncio.Future] = []

    async def suggest_move(self, request: SuggestionRequest) -> Suggestion:
        self.requests.append(request)
        future = asyncio.get_running_loop().create_future()
        self._pending.append(future)
        return await future

    @property
    def pending(self) -> int:
        return sum(1 for f in self._pending if not f.done())

    def release(self, move: str, index: int = -1) -> None:
        future = self._pending[index]
        if not future.done():
            future.set_result(Suggestion(move=move, explanation="released"))


@pytest.fixture()
def scripted_oracle():
    return ScriptedOracle()


@pytest.fixture()
def settings(tmp_path):
    """Fast-timeout settings rooted in a temp data directory."""
    return Settings(data_dir=tmp_path / "data", suggestion_timeout=0.5)


# ---------------------------------------------------------------------------
# Mock chess engine fixture
# ---------------------------------------------------------------------------


def _make_mock_engine():
    """Create a mock ChessEngine that returns valid moves and evaluations."""
    mock = MagicMock()

    def _get_engine_move(board: chess.Board):
        legal = sorted(board.legal_moves, key=lambda m: m.uci())
        if not legal:
            raise ValueError("No legal moves available")
        return legal[0]

    def _evaluate_move(board: chess.Board, move: chess.Move, depth: int = 16):
        move_san = board.san(move)
        legal = sorted(board.legal_moves, key=lambda m: m.uci())
        best_move = legal[0] if legal else move
        best_san = board.san(best_move)
        is_best = move == best_move
        return MoveEvaluation(
            move_san=move_san,
            best_move_san=best_san,
            cp_loss=0 if is_best else 45,
            eval_before=0.3,
            eval_after=0.3 if is_best else -0.15,
            classification="Best" if is_best else "Good",
            is_best=is_best,
            best_line=[best_san],
        )

    mock.get_engine_move = _get_engine_move
    mock.evaluate_move = _evaluate_move
    mock.set_difficulty = MagicMock()
    mock.close = MagicMock()
    return mock


@pytest.fixture()
def mock_chess_engine():
    return _make_mock_engine()


# ---------------------------------------------------------------------------
# Environment fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def enable_validation(monkeypatch):
    """Set PGCHESS_VALIDATE=1 for every test."""
    monkeypatch.setenv("PGCHESS_VALIDATE", "1")
