"""Captured material derived from two position snapshots.

No capture history is kept: the captured pieces are recomputed from
piece counts every time the replay cursor moves.
"""

from __future__ import annotations

import chess

from game_review.models import CapturedMaterial

# Piece values in pawns, used for ordering and material balance
_PIECE_VALUES: dict[int, int] = {
    chess.PAWN: 1,
    chess.KNIGHT: 3,
    chess.BISHOP: 3,
    chess.ROOK: 5,
    chess.QUEEN: 9,
    chess.KING: 0,
}

# Most valuable first
_DISPLAY_ORDER = (chess.QUEEN, chess.ROOK, chess.BISHOP, chess.KNIGHT, chess.PAWN)

# Unicode piece symbols
PIECE_GLYPHS = {
    "K": "\u2654", "Q": "\u2655", "R": "\u2656", "B": "\u2657",
    "N": "\u2658", "P": "\u2659",
    "k": "\u265a", "q": "\u265b", "r": "\u265c", "b": "\u265d",
    "n": "\u265e", "p": "\u265f",
}


def piece_counts(board: chess.Board) -> dict[str, int]:
    """Count pieces on the board keyed by symbol ('P', 'n', ...)."""
    counts: dict[str, int] = {}
    for piece in board.piece_map().values():
        symbol = piece.symbol()
        counts[symbol] = counts.get(symbol, 0) + 1
    return counts


def captured_since(initial: chess.Board, current: chess.Board) -> CapturedMaterial:
    """Pieces that disappeared between `initial` and `current`.

    A missing white piece is credited to black and vice versa. Promotions
    can make a count go up; negative differences are clamped to zero.

    Args:
        initial: The game's starting position.
        current: The position under the replay cursor.

    Returns:
        CapturedMaterial with the symbols captured by each side, most
        valuable first.
    """
    before = piece_counts(initial)
    after = piece_counts(current)
    captured = CapturedMaterial()

    for piece_type in _DISPLAY_ORDER:
        for color in (chess.WHITE, chess.BLACK):
            symbol = chess.Piece(piece_type, color).symbol()
            missing = max(0, before.get(symbol, 0) - after.get(symbol, 0))
            if not missing:
                continue
            # A missing white piece was taken by black
            target = captured.black if color == chess.WHITE else captured.white
            target.extend([symbol] * missing)

    return captured


def captured_value(symbols: list[str]) -> int:
    """Total pawn value of a list of captured piece symbols."""
    return sum(_PIECE_VALUES[chess.Piece.from_symbol(s).piece_type] for s in symbols)


def to_glyphs(symbols: list[str]) -> str:
    """Render piece symbols with their unicode glyphs."""
    return "".join(PIECE_GLYPHS.get(s, "?") for s in symbols)
