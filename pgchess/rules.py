"""Rules layer for pgchess, backed by python-chess.

Everything that needs to know chess rules (legal moves, move application,
check/mate/draw detection, FEN/SAN/PGN encoding) goes through this module.
Positions are immutable pgchess.models.Position values; a fresh
chess.Board is derived from them on each call and never leaks out.
"""

from __future__ import annotations

import io

import chess
import chess.pgn

from pgchess.models import (
    IN_PROGRESS,
    Move,
    PlacedPiece,
    Position,
    PositionStatus,
    TerminationStatus,
    color_name,
)

PIECE_VALUES = {"p": 1, "n": 3, "b": 3, "r": 5, "q": 9, "k": 0}

_INITIAL_COUNTS = {"p": 8, "n": 2, "b": 2, "r": 2, "q": 1}


class IllegalMoveError(ValueError):
    """Raised when a move cannot be applied to a position."""


class NotationError(ValueError):
    """Raised when a notation string cannot be decoded into legal moves."""


def initial_position(fen: str | None = None) -> Position:
    """Build the starting Position, optionally from a custom FEN.

    Args:
        fen: Optional FEN; defaults to the standard starting position.

    Returns:
        A Position with no moves played.

    Raises:
        ValueError: If the FEN is malformed or describes an invalid position.
    """
    if fen is None:
        return Position()
    board = chess.Board(fen)
    if not board.is_valid():
        raise ValueError(f"Invalid FEN position: {fen}")
    return Position(starting_fen=board.fen())


def to_board(position: Position) -> chess.Board:
    """Derive a fresh python-chess board from a Position."""
    board = chess.Board(position.starting_fen)
    for uci in position.moves:
        board.push_uci(uci)
    return board


def _to_move(board: chess.Board, move: chess.Move) -> Move:
    """Describe a legal chess.Move in the position *before* it is pushed."""
    promotion = chess.piece_symbol(move.promotion) if move.promotion else None
    return Move(
        origin=chess.square_name(move.from_square),
        destination=chess.square_name(move.to_square),
        promotion=promotion,
        san=board.san(move),
        uci=move.uci(),
        color=color_name(board.turn),
    )


def _parse_square(name: str) -> chess.Square:
    try:
        return chess.parse_square(name)
    except ValueError as exc:
        raise IllegalMoveError(f"Invalid square: {name}") from exc


def side_to_move(position: Position) -> str:
    """Return 'white' or 'black' for the side to move."""
    return color_name(to_board(position).turn)


def piece_at(position: Position, square: str) -> PlacedPiece | None:
    """Return the piece on a square, or None if empty or not a square."""
    try:
        sq = chess.parse_square(square)
    except ValueError:
        return None
    piece = to_board(position).piece_at(sq)
    if piece is None:
        return None
    return PlacedPiece(
        square=square,
        piece_type=chess.piece_symbol(piece.piece_type),
        color=color_name(piece.color),
    )


def board_contents(position: Position) -> list[PlacedPiece]:
    """List every piece on the board, ordered a1..h8."""
    board = to_board(position)
    return [
        PlacedPiece(
            square=chess.square_name(sq),
            piece_type=chess.piece_symbol(piece.piece_type),
            color=color_name(piece.color),
        )
        for sq, piece in sorted(board.piece_map().items())
    ]


def legal_moves(position: Position, square: str | None = None) -> list[Move]:
    """List legal moves, optionally only those starting on a square.

    Args:
        position: Position to inspect.
        square: Optional origin square name (e.g. 'e2').

    Returns:
        List of legal Moves (empty for an invalid square).
    """
    board = to_board(position)
    origin = None
    if square is not None:
        try:
            origin = chess.parse_square(square)
        except ValueError:
            return []
    return [
        _to_move(board, m)
        for m in board.legal_moves
        if origin is None or m.from_square == origin
    ]


def needs_promotion(position: Position, origin: str, destination: str) -> bool:
    """Check whether moving origin -> destination is a pawn promotion."""
    return any(
        m.destination == destination and m.promotion is not None
        for m in legal_moves(position, origin)
    )


def apply(
    position: Position,
    origin: str,
    destination: str,
    promotion: str | None = None,
) -> tuple[Position, Move]:
    """Apply a move given as squares plus optional promotion piece.

    Args:
        position: Position before the move.
        origin: Origin square name.
        destination: Destination square name.
        promotion: Promotion piece letter ('q', 'r', 'b', 'n') or None.

    Returns:
        Tuple of (new Position, committed Move).

    Raises:
        IllegalMoveError: If the move is malformed or not legal.
    """
    from_sq = _parse_square(origin)
    to_sq = _parse_square(destination)
    promo_type = None
    if promotion:
        try:
            promo_type = chess.Piece.from_symbol(promotion.lower()).piece_type
        except ValueError as exc:
            raise IllegalMoveError(f"Invalid promotion piece: {promotion}") from exc

    board = to_board(position)
    move = chess.Move(from_sq, to_sq, promotion=promo_type)
    if move not in board.legal_moves:
        raise IllegalMoveError(f"Illegal move: {move.uci()}")

    committed = _to_move(board, move)
    return Position(position.starting_fen, position.moves + (move.uci(),)), committed


def apply_uci(position: Position, uci: str) -> tuple[Position, Move]:
    """Apply a move given in UCI format (e.g. 'e2e4', 'e7e8q')."""
    try:
        move = chess.Move.from_uci(uci.strip())
    except (ValueError, chess.InvalidMoveError) as exc:
        raise IllegalMoveError(f"Malformed move: {uci}") from exc
    promotion = chess.piece_symbol(move.promotion) if move.promotion else None
    return apply(
        position,
        chess.square_name(move.from_square),
        chess.square_name(move.to_square),
        promotion,
    )


def status(position: Position) -> PositionStatus:
    """Report check and end-of-game predicates for a position."""
    board = to_board(position)
    termination_ = _termination(board)
    return PositionStatus(
        in_check=board.is_check(),
        is_checkmate=board.is_checkmate(),
        is_stalemate=board.is_stalemate(),
        is_draw=termination_.kind in ("stalemate", "draw", "repetition"),
        is_threefold_repetition=board.is_repetition(3),
    )


def _termination(board: chess.Board) -> TerminationStatus:
    if board.is_checkmate():
        return TerminationStatus("checkmate", winner=color_name(not board.turn))
    if board.is_stalemate():
        return TerminationStatus("stalemate")
    if board.is_insufficient_material():
        return TerminationStatus("draw", reason="insufficient_material")
    if board.is_repetition(3):
        return TerminationStatus("repetition", reason="threefold_repetition")
    if board.halfmove_clock >= 100:
        return TerminationStatus("draw", reason="fifty_moves")
    return IN_PROGRESS


def termination(position: Position) -> TerminationStatus:
    """Derive the termination status of a position."""
    return _termination(to_board(position))


def encode(position: Position) -> str:
    """Encode a position as FEN."""
    return to_board(position).fen()


def encode_game(position: Position, headers: dict[str, str] | None = None) -> str:
    """Encode the moves leading to a position as a PGN string.

    Args:
        position: Position whose move sequence is exported.
        headers: Optional PGN headers (Event, White, Black, Date, ...).

    Returns:
        PGN text.
    """
    game = chess.pgn.Game.from_board(to_board(position))
    for key, value in (headers or {}).items():
        game.headers[key] = value
    game.headers["Result"] = termination(position).result
    return str(game)


def decode_game(notation: str) -> tuple[str, list[Move]]:
    """Decode PGN (or bare SAN movetext) into a starting FEN and its moves.

    Args:
        notation: PGN text, with or without headers.

    Returns:
        Tuple of (starting FEN, ordered list of Moves).

    Raises:
        NotationError: If the text is empty, unparseable or contains an
            illegal move.
    """
    if not notation or not notation.strip():
        raise NotationError("Notation is empty")

    game = chess.pgn.read_game(io.StringIO(notation))
    if game is None:
        raise NotationError("No game found in notation")
    if game.errors:
        raise NotationError(f"Could not parse notation: {game.errors[0]}")

    board = game.board()
    starting_fen = board.fen()
    moves: list[Move] = []
    for move in game.mainline_moves():
        if move not in board.legal_moves:
            raise NotationError(f"Illegal move in notation: {move.uci()}")
        moves.append(_to_move(board, move))
        board.push(move)
    return starting_fen, moves


def decode(notation: str) -> list[Move]:
    """Decode a notation string into its ordered list of Moves."""
    return decode_game(notation)[1]


def captured_pieces(position: Position) -> dict[str, list[str]]:
    """Pieces each side has captured, most valuable first.

    Returns:
        Dict with 'white' (black pieces taken by white) and 'black'.
    """
    counts = {"white": dict.fromkeys(_INITIAL_COUNTS, 0), "black": dict.fromkeys(_INITIAL_COUNTS, 0)}
    for placed in board_contents(position):
        if placed.piece_type in _INITIAL_COUNTS:
            counts[placed.color][placed.piece_type] += 1

    captured: dict[str, list[str]] = {"white": [], "black": []}
    for victim, taker in (("black", "white"), ("white", "black")):
        for piece_type, initial in _INITIAL_COUNTS.items():
            missing = max(0, initial - counts[victim][piece_type])
            captured[taker].extend([piece_type] * missing)
        captured[taker].sort(key=lambda p: PIECE_VALUES[p], reverse=True)
    return captured


def material_balance(position: Position) -> int:
    """White material minus black material (p=1, n=3, b=3, r=5, q=9)."""
    balance = 0
    for placed in board_contents(position):
        value = PIECE_VALUES[placed.piece_type]
        balance += value if placed.color == "white" else -value
    return balance
