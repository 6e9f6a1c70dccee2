"""Interactive game session engine.

Owns one live game: arbitrates whose turn it is, validates and commits
moves through pgchess.rules, and drives the asynchronous opponent-move
cycle against a MoveSuggestionOracle.

Opponent requests are tagged with the session generation they were issued
for. reset() bumps the generation and cancels the outstanding task, and a
response that still arrives for an older generation is discarded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from pgchess import rules
from pgchess.difficulty import HINT_LEVEL, clamp_level
from pgchess.models import (
    EMPTY_SELECTION,
    IN_PROGRESS,
    WHITE,
    GameRecord,
    Move,
    PlacedPiece,
    Position,
    Selection,
    Suggestion,
    SuggestionRequest,
    TerminationStatus,
)
from pgchess.oracle import MoveSuggestionOracle, SuggestionError
from pgchess.settings import Settings, load_settings

logger = logging.getLogger(__name__)

MODE_AI = "ai"
MODE_TWO_PLAYER = "two-player"
_MODES = (MODE_AI, MODE_TWO_PLAYER)


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_HUMAN_INPUT = "awaiting_human_input"
    AWAITING_OPPONENT_MOVE = "awaiting_opponent_move"
    TERMINATED = "terminated"


@dataclass
class GameSession:
    """Mutable root of one game. Replaced wholesale on reset."""

    session_id: int
    position: Position
    human_color: str
    mode: str
    history: list[Move] = field(default_factory=list)
    termination: TerminationStatus = IN_PROGRESS
    thinking: bool = False


@dataclass(frozen=True)
class OpponentFault:
    """Recoverable failure of the opponent-move cycle."""

    session_id: int
    message: str
    suggestion: Suggestion | None = None


@dataclass(frozen=True)
class Hint:
    move: Move
    explanation: str


class SessionEngine:
    """Drives a single interactive game against a human or an oracle."""

    def __init__(
        self,
        oracle: MoveSuggestionOracle | None = None,
        settings: Settings | None = None,
        mode: str = MODE_AI,
        human_color: str = WHITE,
        level: int | None = None,
        auto_promote: str = "q",
        starting_fen: str | None = None,
        on_fault: Callable[[OpponentFault], None] | None = None,
        on_change: Callable[[SessionEngine], None] | None = None,
    ) -> None:
        """Create an engine in the Idle state; call reset() to start a game.

        Args:
            oracle: Move suggestion oracle; required for mode 'ai'.
            settings: Runtime settings (defaults to load_settings()).
            mode: 'ai' or 'two-player'.
            human_color: Color the human plays in 'ai' mode.
            level: Opponent difficulty 1-10 (defaults to settings).
            auto_promote: Piece used when a promotion has no explicit hint.
            starting_fen: Optional custom starting position.
            on_fault: Called with every reported OpponentFault.
            on_change: Called after every state mutation.

        Raises:
            ValueError: On an unknown mode or color, or 'ai' without oracle.
        """
        self._settings = settings or load_settings()
        self._oracle = oracle
        self._mode = self._check_mode(mode)
        self._human_color = self._check_color(human_color)
        self._level = clamp_level(level if level is not None else self._settings.default_level)
        self._auto_promote = auto_promote
        self._starting_fen = starting_fen
        self._on_fault = on_fault
        self._on_change = on_change

        self._session: GameSession | None = None
        self._generation = 0
        self._selection: Selection = EMPTY_SELECTION
        self._task: asyncio.Task | None = None
        self._last_fault: OpponentFault | None = None
        self._hint: Hint | None = None

    def _check_mode(self, mode: str) -> str:
        if mode not in _MODES:
            raise ValueError(f"Unknown game mode: {mode}")
        if mode == MODE_AI and self._oracle is None:
            raise ValueError("An AI game needs a move suggestion oracle")
        return mode

    @staticmethod
    def _check_color(color: str) -> str:
        if color not in ("white", "black"):
            raise ValueError(f"Invalid color: {color}")
        return color

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(
        self,
        human_color: str | None = None,
        mode: str | None = None,
        level: int | None = None,
        starting_fen: str | None = None,
    ) -> GameSession:
        """Discard the current game and start a new one.

        Any outstanding opponent request is cancelled and its eventual
        response ignored. If the opponent moves first, its cycle starts
        immediately (or on play_opponent_move() without a running loop).

        Returns:
            The new GameSession.
        """
        fen = starting_fen if starting_fen is not None else self._starting_fen
        position = rules.initial_position(fen)
        color = self._check_color(human_color) if human_color is not None else self._human_color
        mode = self._check_mode(mode) if mode is not None else self._mode

        self._starting_fen = fen
        self._human_color = color
        self._mode = mode
        if level is not None:
            self._level = clamp_level(level)

        self._generation += 1
        if self._task is not None and not self._task.done():
            logger.debug("Cancelling opponent request for session %d", self._generation - 1)
            self._task.cancel()
        self._task = None

        self._session = GameSession(
            session_id=self._generation,
            position=position,
            human_color=self._human_color,
            mode=self._mode,
            termination=rules.termination(position),
        )
        self._selection = EMPTY_SELECTION
        self._last_fault = None
        self._hint = None
        logger.debug(
            "Started session %d (%s, human plays %s)",
            self._generation, self._mode, self._human_color,
        )
        self._notify()

        if self.is_opponent_turn:
            self._begin_opponent_cycle()
        return self._session

    def set_level(self, level: int) -> int:
        """Change opponent difficulty for subsequent requests."""
        self._level = clamp_level(level)
        return self._level

    def close(self) -> None:
        """Cancel any opponent request and release the oracle's resources.

        The oracle is closed only if it has a close() method (a Stockfish
        suggester owns a UCI process). Late responses are discarded.
        """
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        if self._session is not None:
            self._session.thinking = False
        close = getattr(self._oracle, "close", None)
        if callable(close):
            close()
        logger.debug("Closed session engine at generation %d", self._generation)

    # ------------------------------------------------------------------
    # Human input
    # ------------------------------------------------------------------

    def click(self, square: str) -> bool:
        """Handle a click on a square (select, reselect, deselect or move).

        Returns:
            True if the click committed a move.
        """
        if not self._accepts_human_input():
            return False

        selected = self._selection.square
        if selected is None:
            if self._owns_piece(square):
                self._select(square)
                self._notify()
            return False

        if square == selected:
            self._selection = EMPTY_SELECTION
            self._notify()
            return False

        return self.attempt_move(selected, square)

    def attempt_move(
        self,
        origin: str,
        destination: str,
        promotion: str | None = None,
    ) -> bool:
        """Try to commit a human move.

        Rejected attempts never touch the position or history. If the
        rejected destination holds a piece of the side to move, that piece
        becomes the selection; otherwise the selection is cleared.

        Args:
            origin: Origin square name.
            destination: Destination square name.
            promotion: Optional promotion piece letter.

        Returns:
            True if the move was committed.
        """
        if not self._accepts_human_input():
            if self._selection != EMPTY_SELECTION:
                self._selection = EMPTY_SELECTION
                self._notify()
            return False

        position = self._session.position
        if promotion is None and rules.needs_promotion(position, origin, destination):
            promotion = self._auto_promote

        try:
            new_position, move = rules.apply(position, origin, destination, promotion)
        except rules.IllegalMoveError as exc:
            logger.debug("Rejected %s-%s: %s", origin, destination, exc)
            if self._owns_piece(destination):
                self._select(destination)
            else:
                self._selection = EMPTY_SELECTION
            self._notify()
            return False

        self._commit(new_position, move)
        return True

    def _accepts_human_input(self) -> bool:
        session = self._session
        if session is None or session.termination.is_terminal or session.thinking:
            return False
        if session.mode == MODE_TWO_PLAYER:
            return True
        return self.turn == session.human_color

    def _owns_piece(self, square: str) -> bool:
        piece = rules.piece_at(self._session.position, square)
        return piece is not None and piece.color == self.turn

    def _select(self, square: str) -> None:
        moves = rules.legal_moves(self._session.position, square)
        self._selection = Selection(square=square, moves=tuple(moves))

    def _commit(self, new_position: Position, move: Move) -> None:
        session = self._session
        session.history.append(move)
        session.position = new_position
        session.termination = rules.termination(new_position)
        self._selection = EMPTY_SELECTION
        self._hint = None
        logger.debug("Session %d: %s played %s", session.session_id, move.color, move.san)
        if session.termination.is_terminal:
            logger.info(
                "Session %d finished: %s %s",
                session.session_id, session.termination.kind, session.termination.result,
            )
        self._notify()

        if self.is_opponent_turn:
            self._begin_opponent_cycle()

    # ------------------------------------------------------------------
    # Opponent cycle
    # ------------------------------------------------------------------

    def _begin_opponent_cycle(self) -> None:
        if self._task is not None and not self._task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; opponent move waits for play_opponent_move()")
            return
        self._task = loop.create_task(self._opponent_cycle(self._generation))

    async def play_opponent_move(self) -> bool:
        """Run (or retry) the opponent cycle and wait for it.

        Returns:
            True if the opponent's move was committed.
        """
        if self._task is None or self._task.done():
            if self.state is not SessionState.AWAITING_OPPONENT_MOVE:
                return False
            self._task = asyncio.get_running_loop().create_task(
                self._opponent_cycle(self._generation)
            )
        return await self.wait_for_opponent()

    async def wait_for_opponent(self) -> bool:
        """Wait for the outstanding opponent request, if any.

        Returns:
            True if it committed a move; False if it failed, was
            cancelled, or there was nothing outstanding.
        """
        task = self._task
        if task is None:
            return False
        await asyncio.wait([task])
        if task.cancelled():
            return False
        return task.result()

    async def _opponent_cycle(self, generation: int) -> bool:
        session = self._session
        position = session.position
        expected_color = rules.side_to_move(position)
        request = SuggestionRequest(
            fen=rules.encode(position),
            level=self._level,
            legal_moves=tuple(m.uci for m in rules.legal_moves(position)),
        )

        session.thinking = True
        self._last_fault = None
        self._notify()

        timeout = self._settings.suggestion_timeout
        try:
            suggestion = await asyncio.wait_for(
                self._oracle.suggest_move(request), timeout=timeout
            )
        except asyncio.CancelledError:
            if generation == self._generation:
                session.thinking = False
            raise
        except asyncio.TimeoutError:
            return self._fail(generation, f"Opponent did not answer within {timeout:g}s")
        except Exception as exc:
            return self._fail(generation, f"Opponent request failed: {exc}")

        if generation != self._generation:
            logger.debug(
                "Discarding opponent move %s for stale session %d", suggestion.move, generation
            )
            return False

        session.thinking = False
        return self._apply_suggestion(generation, suggestion, expected_color)

    def _apply_suggestion(
        self,
        generation: int,
        suggestion: Suggestion,
        expected_color: str,
    ) -> bool:
        position = self._session.position
        uci = (suggestion.move or "").strip()
        if len(uci) < 4:
            return self._fail(generation, f"Malformed opponent move: {uci!r}", suggestion)

        mover = rules.piece_at(position, uci[:2])
        if mover is None or mover.color != expected_color:
            return self._fail(
                generation,
                f"Opponent suggested {uci}, which is not a {expected_color} move",
                suggestion,
            )

        promotion = uci[4:5] or None
        if promotion is None and rules.needs_promotion(position, uci[:2], uci[2:4]):
            promotion = "q"
        try:
            new_position, move = rules.apply(position, uci[:2], uci[2:4], promotion)
        except rules.IllegalMoveError as exc:
            return self._fail(generation, f"Opponent suggested an illegal move: {exc}", suggestion)

        self._commit(new_position, move)
        return True

    def _fail(
        self,
        generation: int,
        message: str,
        suggestion: Suggestion | None = None,
    ) -> bool:
        if generation != self._generation:
            logger.debug("Ignoring failure of stale session %d: %s", generation, message)
            return False
        self._session.thinking = False
        fault = OpponentFault(session_id=generation, message=message, suggestion=suggestion)
        self._last_fault = fault
        logger.warning("Session %d opponent fault: %s", generation, message)
        if self._on_fault is not None:
            self._on_fault(fault)
        self._notify()
        return False

    # ------------------------------------------------------------------
    # Hints
    # ------------------------------------------------------------------

    async def request_hint(self) -> Hint | None:
        """Ask the oracle for a strong move for the side to move.

        The hint is validated against the current position but never
        committed.

        Returns:
            Hint, or None when no hint can be given (no game, game over,
            opponent thinking, or the game was reset meanwhile).

        Raises:
            SuggestionError: If the oracle fails or suggests an illegal move.
        """
        session = self._session
        if (
            self._oracle is None
            or session is None
            or session.termination.is_terminal
            or session.thinking
        ):
            return None

        generation = self._generation
        position = session.position
        request = SuggestionRequest(
            fen=rules.encode(position),
            level=HINT_LEVEL,
            legal_moves=tuple(m.uci for m in rules.legal_moves(position)),
        )
        try:
            suggestion = await asyncio.wait_for(
                self._oracle.suggest_move(request),
                timeout=self._settings.suggestion_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise SuggestionError("Hint request timed out") from exc

        if generation != self._generation or session.position != position:
            return None
        try:
            _, move = rules.apply_uci(position, suggestion.move)
        except rules.IllegalMoveError as exc:
            raise SuggestionError(f"Oracle suggested an invalid hint: {suggestion.move}") from exc

        self._hint = Hint(move=move, explanation=suggestion.explanation)
        self._notify()
        return self._hint

    # ------------------------------------------------------------------
    # Derived queries
    # ------------------------------------------------------------------

    @property
    def session(self) -> GameSession | None:
        return self._session

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def level(self) -> int:
        return self._level

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def human_color(self) -> str:
        return self._human_color

    @property
    def position(self) -> Position | None:
        return self._session.position if self._session else None

    @property
    def history(self) -> list[Move]:
        return list(self._session.history) if self._session else []

    @property
    def turn(self) -> str | None:
        if self._session is None:
            return None
        return rules.side_to_move(self._session.position)

    @property
    def termination(self) -> TerminationStatus:
        return self._session.termination if self._session else IN_PROGRESS

    @property
    def is_thinking(self) -> bool:
        return bool(self._session and self._session.thinking)

    @property
    def is_opponent_turn(self) -> bool:
        session = self._session
        if session is None or session.mode != MODE_AI or session.termination.is_terminal:
            return False
        return self.turn != session.human_color

    @property
    def state(self) -> SessionState:
        if self._session is None:
            return SessionState.IDLE
        if self._session.termination.is_terminal:
            return SessionState.TERMINATED
        if self.is_opponent_turn:
            return SessionState.AWAITING_OPPONENT_MOVE
        return SessionState.AWAITING_HUMAN_INPUT

    @property
    def selection(self) -> Selection:
        return self._selection

    @property
    def legal_destinations(self) -> list[str]:
        return self._selection.destinations

    @property
    def last_move(self) -> Move | None:
        if self._session is None or not self._session.history:
            return None
        return self._session.history[-1]

    @property
    def last_fault(self) -> OpponentFault | None:
        return self._last_fault

    @property
    def hint(self) -> Hint | None:
        return self._hint

    def board(self) -> list[PlacedPiece]:
        """Current board contents."""
        if self._session is None:
            return []
        return rules.board_contents(self._session.position)

    @property
    def check_square(self) -> str | None:
        """Square of the side-to-move's king while in check (game still on)."""
        session = self._session
        if session is None or session.termination.is_terminal:
            return None
        if not rules.status(session.position).in_check:
            return None
        turn = self.turn
        for placed in self.board():
            if placed.piece_type == "k" and placed.color == turn:
                return placed.square
        return None

    def captured_pieces(self) -> dict[str, list[str]]:
        if self._session is None:
            return {"white": [], "black": []}
        return rules.captured_pieces(self._session.position)

    def material_balance(self) -> int:
        if self._session is None:
            return 0
        return rules.material_balance(self._session.position)

    def board_text(self) -> str:
        """ASCII board for terminal output."""
        if self._session is None:
            return ""
        return str(rules.to_board(self._session.position))

    def player_names(self) -> tuple[str, str]:
        if self._mode == MODE_TWO_PLAYER:
            return "White", "Black"
        opponent = f"Computer (level {self._level})"
        if self._human_color == WHITE:
            return "Player", opponent
        return opponent, "Player"

    def pgn(self, headers: dict[str, str] | None = None) -> str:
        """Export the current game as PGN."""
        if self._session is None:
            return ""
        white, black = self.player_names()
        all_headers = {"Event": "pgchess game", "White": white, "Black": black}
        all_headers.update(headers or {})
        return rules.encode_game(self._session.position, all_headers)

    def to_record(self) -> GameRecord:
        """Build the persisted history record for the current game."""
        white, black = self.player_names()
        now = datetime.now(timezone.utc)
        return GameRecord(
            pgn=self.pgn({"Date": now.strftime("%Y.%m.%d")}),
            date=now.isoformat(),
            white=white,
            black=black,
            result=self.termination.result,
        )

    def view(self) -> dict:
        """Plain snapshot of everything the presentation layer renders."""
        session = self._session
        if session is None:
            return {"state": SessionState.IDLE.value}

        last = self.last_move
        termination = session.termination
        return {
            "session_id": session.session_id,
            "state": self.state.value,
            "mode": session.mode,
            "human_color": session.human_color,
            "level": self._level,
            "fen": rules.encode(session.position),
            "turn": self.turn,
            "board": [
                {"square": p.square, "piece": p.piece_type, "color": p.color}
                for p in self.board()
            ],
            "move_list": [m.san for m in session.history],
            "selected_square": self._selection.square,
            "legal_destinations": self.legal_destinations,
            "last_move": (
                {"from": last.origin, "to": last.destination, "san": last.san, "uci": last.uci}
                if last is not None else None
            ),
            "check_square": self.check_square,
            "is_thinking": session.thinking,
            "is_opponent_turn": self.is_opponent_turn,
            "termination": {
                "kind": termination.kind,
                "winner": termination.winner,
                "reason": termination.reason,
                "result": termination.result,
            },
            "is_game_over": termination.is_terminal,
            "captured_pieces": self.captured_pieces(),
            "material_balance": self.material_balance(),
            "opponent_error": self._last_fault.message if self._last_fault else None,
            "hint": (
                {"uci": self._hint.move.uci, "san": self._hint.move.san,
                 "explanation": self._hint.explanation}
                if self._hint is not None else None
            ),
        }

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self)
