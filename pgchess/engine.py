"""Stockfish wrapper and move suggestion oracle for pgchess.

Wraps Stockfish via python-chess UCI interface. Provides:
- Adaptive strength (sub-1320 Elo uses depth + random blend)
- Move evaluation with centipawn-loss classification
- StockfishSuggester, an async MoveSuggestionOracle over the wrapper
- CLI for quick suggestions and a terminal game against the engine
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import random
import shutil
import sys
import threading
from pathlib import Path

import chess
import chess.engine

from pgchess.difficulty import level_to_elo
from pgchess.models import Classification, MoveEvaluation, Suggestion, SuggestionRequest
from pgchess.oracle import SuggestionError

logger = logging.getLogger(__name__)

# Stockfish search paths in priority order
_STOCKFISH_PATHS = [
    "/opt/homebrew/bin/stockfish",
    "/usr/local/bin/stockfish",
    "/usr/games/stockfish",
    "/usr/bin/stockfish",
]

# Move classification thresholds (cp_loss -> classification)
_CLASSIFICATION_THRESHOLDS = [
    (30, Classification.EXCELLENT),
    (80, Classification.GOOD),
    (150, Classification.INACCURACY),
    (300, Classification.MISTAKE),
]

_MATE_SCORE = 10000
_ANALYSIS_DEPTH = 16


def _find_stockfish() -> str:
    """Auto-detect Stockfish binary path.

    Checks known install paths, then falls back to PATH lookup.

    Returns:
        Path to Stockfish binary.

    Raises:
        FileNotFoundError: If Stockfish is not found anywhere.
    """
    for path_str in _STOCKFISH_PATHS:
        if Path(path_str).is_file():
            return path_str

    which_result = shutil.which("stockfish")
    if which_result is not None:
        return which_result

    raise FileNotFoundError(
        "Stockfish not found. Install it or set PGCHESS_STOCKFISH."
    )


def _classify_move(cp_loss: int) -> tuple[str, bool]:
    """Classify a move based on centipawn loss.

    Args:
        cp_loss: Absolute centipawn loss (non-negative).

    Returns:
        Tuple of (classification tag, is_best boolean).
    """
    abs_loss = abs(cp_loss)
    if abs_loss == 0:
        return Classification.BEST.value, True
    for threshold, label in _CLASSIFICATION_THRESHOLDS:
        if abs_loss <= threshold:
            return label.value, False
    return Classification.BLUNDER.value, False


class ChessEngine:
    """Stockfish wrapper with adaptive difficulty and evaluation."""

    def __init__(self, stockfish_path: str | None = None) -> None:
        """Initialize engine with Stockfish.

        Args:
            stockfish_path: Explicit path to Stockfish binary.
                If None, auto-detects from known locations.

        Raises:
            FileNotFoundError: If Stockfish is not found.
        """
        self._stockfish_path = stockfish_path or _find_stockfish()
        self._engine = chess.engine.SimpleEngine.popen_uci(self._stockfish_path)
        self._target_elo: int = 800
        self._random_pct: float = 0.0
        self._depth: int = 1
        self._use_uci_elo: bool = False
        self.set_difficulty(self._target_elo)

    def _open_engine(self) -> chess.engine.SimpleEngine:
        """Open a fresh Stockfish process."""
        return chess.engine.SimpleEngine.popen_uci(self._stockfish_path)

    def _ensure_engine(self) -> None:
        """Ensure engine process is alive, restart once if terminated."""
        try:
            self._engine.ping()
        except chess.engine.EngineTerminatedError:
            logger.warning("Stockfish process terminated, restarting")
            self._engine = self._open_engine()
            self.set_difficulty(self._target_elo)

    def set_difficulty(self, target_elo: int) -> None:
        """Configure engine strength.

        For sub-1320 Elo: uses depth limiting + random move blending.
        For 1320+ Elo: uses Stockfish UCI_Elo directly.

        Args:
            target_elo: Desired engine Elo rating.
        """
        self._target_elo = target_elo

        if target_elo >= 1320:
            self._use_uci_elo = True
            self._random_pct = 0.0
            self._depth = 20
            self._ensure_engine()
            self._engine.configure({"UCI_LimitStrength": True, "UCI_Elo": target_elo})
        else:
            self._use_uci_elo = False
            self._random_pct = max(0.0, 0.85 - (target_elo / 1320) * 0.85)
            self._depth = max(1, min(5, target_elo // 250))
            self._ensure_engine()
            self._engine.configure({"UCI_LimitStrength": False})

    @property
    def target_elo(self) -> int:
        return self._target_elo

    def get_engine_move(self, board: chess.Board) -> chess.Move:
        """Get an engine move at the configured difficulty.

        Args:
            board: Current board position.

        Returns:
            The engine's chosen move.

        Raises:
            ValueError: If the game is already over.
        """
        if board.is_game_over():
            raise ValueError("Game is already over")

        self._ensure_engine()

        try:
            return self._get_engine_move_inner(board)
        except chess.engine.EngineTerminatedError:
            self._engine = self._open_engine()
            self.set_difficulty(self._target_elo)
            return self._get_engine_move_inner(board)

    def _get_engine_move_inner(self, board: chess.Board) -> chess.Move:
        """Internal move generation without crash recovery."""
        if self._use_uci_elo:
            result = self._engine.play(board, chess.engine.Limit(time=1.0))
            return result.move

        # Sub-1320: random blend
        if random.random() < self._random_pct:
            legal_moves = list(board.legal_moves)
            return random.choice(legal_moves)

        result = self._engine.play(board, chess.engine.Limit(depth=self._depth))
        return result.move

    def evaluate_move(
        self,
        board: chess.Board,
        move: chess.Move,
        depth: int = _ANALYSIS_DEPTH,
    ) -> MoveEvaluation:
        """Evaluate a move against the engine's best, at full strength.

        Args:
            board: Position before the move is played.
            move: The move to evaluate.
            depth: Analysis depth.

        Returns:
            MoveEvaluation with classification. Evaluations are in pawns
            from the moving side's point of view.
        """
        self._ensure_engine()

        try:
            return self._evaluate_move_inner(board, move, depth)
        except chess.engine.EngineTerminatedError:
            self._engine = self._open_engine()
            self.set_difficulty(self._target_elo)
            return self._evaluate_move_inner(board, move, depth)

    def _evaluate_move_inner(
        self,
        board: chess.Board,
        move: chess.Move,
        depth: int,
    ) -> MoveEvaluation:
        info_before = self._engine.analyse(
            board,
            chess.engine.Limit(depth=depth),
            multipv=1,
        )
        score_before = info_before[0]["score"].relative
        eval_before_cp = score_before.score(mate_score=_MATE_SCORE)

        pv_moves = info_before[0].get("pv", [])
        best_move = pv_moves[0] if pv_moves else move
        best_move_san = board.san(best_move)

        best_line_san: list[str] = []
        temp_board = board.copy()
        for pv_move in pv_moves:
            best_line_san.append(temp_board.san(pv_move))
            temp_board.push(pv_move)

        move_san = board.san(move)
        board_after = board.copy()
        board_after.push(move)

        if board_after.is_game_over():
            # Nothing to search; score the final position directly
            outcome = board_after.outcome()
            if outcome is not None and outcome.winner is not None:
                eval_after_cp = -_MATE_SCORE
            else:
                eval_after_cp = 0
        else:
            info_after = self._engine.analyse(
                board_after,
                chess.engine.Limit(depth=depth),
                multipv=1,
            )
            eval_after_cp = info_after[0]["score"].relative.score(mate_score=_MATE_SCORE)

        # eval_after is from the opponent's view; the mover's view is its negation
        cp_loss = max(0, eval_before_cp - (-eval_after_cp))
        if move == best_move:
            cp_loss = 0

        classification, is_best = _classify_move(cp_loss)

        return MoveEvaluation(
            move_san=move_san,
            best_move_san=best_move_san,
            cp_loss=cp_loss,
            eval_before=eval_before_cp / 100.0,
            eval_after=-eval_after_cp / 100.0,
            classification=classification,
            is_best=is_best,
            best_line=best_line_san,
        )

    def close(self) -> None:
        """Clean up Stockfish process."""
        try:
            self._engine.quit()
        except chess.engine.EngineTerminatedError:
            pass


class StockfishSuggester:
    """Move suggestion oracle backed by a ChessEngine.

    The blocking UCI calls run in a worker thread so the session's event
    loop keeps serving while Stockfish thinks.
    """

    def __init__(self, engine: ChessEngine | None = None, stockfish_path: str | None = None) -> None:
        self._engine = engine if engine is not None else ChessEngine(stockfish_path)
        self._lock = threading.Lock()

    def _suggest_blocking(self, request: SuggestionRequest) -> Suggestion:
        board = chess.Board(request.fen)
        target_elo = level_to_elo(request.level)
        with self._lock:
            try:
                self._engine.set_difficulty(target_elo)
                move = self._engine.get_engine_move(board)
            except (ValueError, chess.engine.EngineError) as exc:
                raise SuggestionError(f"Stockfish could not move: {exc}") from exc
        if move is None:
            raise SuggestionError("Stockfish returned no move")
        return Suggestion(
            move=move.uci(),
            explanation=(
                f"{board.san(move)} chosen at level {request.level} "
                f"(target Elo {target_elo})."
            ),
        )

    async def suggest_move(self, request: SuggestionRequest) -> Suggestion:
        return await asyncio.to_thread(self._suggest_blocking, request)

    def close(self) -> None:
        self._engine.close()


# ---------------------------------------------------------------------------
# CLI interface
# ---------------------------------------------------------------------------


def _cli_suggest(fen: str, level: int) -> None:
    """Print one suggested move for a FEN position.

    Args:
        fen: FEN string of the position.
        level: Difficulty level 1-10.
    """
    suggester = StockfishSuggester()
    try:
        suggestion = asyncio.run(
            suggester.suggest_move(SuggestionRequest(fen=fen, level=level))
        )
        print(f"Position: {fen}")
        print(f"Suggested: {suggestion.move}")
        print(f"  {suggestion.explanation}")
    finally:
        suggester.close()


async def _play_loop(level: int, human_color: str) -> None:
    from pgchess.session import SessionEngine

    suggester = StockfishSuggester()
    session = SessionEngine(oracle=suggester, human_color=human_color, level=level)
    try:
        session.reset()
        while not session.termination.is_terminal:
            if session.is_opponent_turn:
                await session.wait_for_opponent()
                if session.last_fault is not None:
                    print(f"Engine failed: {session.last_fault.message}", file=sys.stderr)
                    return
                if session.last_move is not None:
                    print(f"Engine plays: {session.last_move.san}")
                continue

            print(session.board_text())
            user_input = input("Your move (UCI, e.g. e2e4; 'q' to quit): ").strip()
            if user_input.lower() == "q":
                print("Game ended by user.")
                return
            if len(user_input) not in (4, 5):
                print("Invalid move format. Use UCI (e.g. e2e4, e7e8q).")
                continue
            promotion = user_input[4] if len(user_input) == 5 else None
            if not session.attempt_move(user_input[:2], user_input[2:4], promotion):
                print("Illegal move. Try again.")

        print(session.board_text())
        print(f"Game over: {session.termination.result} ({session.termination.kind})")
    finally:
        suggester.close()


def main() -> None:
    """CLI entry point for engine.py."""
    parser = argparse.ArgumentParser(
        description="Stockfish opponent - suggest moves or play a game"
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    suggest_parser = subparsers.add_parser("suggest", help="Suggest a move for a FEN")
    suggest_parser.add_argument("fen", type=str, help="FEN string")
    suggest_parser.add_argument("--level", type=int, default=10, help="Difficulty 1-10")

    play_parser = subparsers.add_parser("play", help="Play against the engine")
    play_parser.add_argument("--level", type=int, default=4, help="Difficulty 1-10")
    play_parser.add_argument(
        "--color", choices=["white", "black"], default="white", help="Your color"
    )

    args = parser.parse_args()
    logging.basicConfig(level=logging.WARNING)

    if args.command == "suggest":
        _cli_suggest(args.fen, args.level)
    elif args.command == "play":
        asyncio.run(_play_loop(args.level, args.color))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
