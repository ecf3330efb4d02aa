"""Position stream for a finished game.

PositionCodec turns a move list into the initial position plus one
position per ply. Positions are handed out as fresh chess.Board copies
so callers can never mutate the codec's own state.
"""

from __future__ import annotations

import io
import logging

import chess
import chess.pgn

from game_review.errors import BestMoveUnparsable, InvalidMoveSequence
from game_review.models import Ply, Side

logger = logging.getLogger(__name__)


class PositionCodec:
    """Replayable sequence of positions for one game.

    Cursor indices follow the replay convention: -1 is the initial
    position and k is the position after ply k.
    """

    def __init__(self, moves_san: list[str], starting_fen: str | None = None) -> None:
        """Parse and validate every move of the game.

        Args:
            moves_san: Moves in SAN, in the order they were played.
            starting_fen: Optional non-standard starting position.

        Raises:
            InvalidMoveSequence: If the FEN is invalid or any move cannot
                be legally applied.
        """
        fen = starting_fen or chess.STARTING_FEN
        try:
            start = chess.Board(fen)
        except ValueError as exc:
            raise InvalidMoveSequence(f"Invalid starting FEN: {exc}") from exc
        if not start.is_valid():
            raise InvalidMoveSequence(f"Invalid starting position: {fen}")

        self._start = start
        self._moves: list[chess.Move] = []
        self._plies: list[Ply] = []
        self._fens: list[str] = [start.fen()]

        board = start.copy(stack=False)
        for index, san in enumerate(moves_san):
            try:
                move = board.parse_san(san)
            except ValueError as exc:
                # InvalidMoveError, IllegalMoveError and AmbiguousMoveError
                # are all ValueError subclasses
                raise InvalidMoveSequence(
                    f"Move {index + 1} ({san!r}) cannot be played: {exc}",
                    index=index,
                    move=san,
                ) from exc
            self._plies.append(_make_ply(board, move, index))
            self._moves.append(move)
            board.push(move)
            self._fens.append(board.fen())

        logger.debug("Loaded %d plies from %s", len(self._plies), fen)

    @classmethod
    def from_pgn(cls, pgn_text: str) -> PositionCodec:
        """Build a codec from the mainline of a PGN game.

        Raises:
            InvalidMoveSequence: If no game can be read or the mainline
                contains an illegal move.
        """
        game = chess.pgn.read_game(io.StringIO(pgn_text))
        if game is None:
            raise InvalidMoveSequence("No PGN game found")
        if game.errors:
            raise InvalidMoveSequence(f"PGN could not be replayed: {game.errors[0]}")

        board = game.board()
        starting_fen = board.fen()
        moves_san: list[str] = []
        for move in game.mainline_moves():
            moves_san.append(board.san(move))
            board.push(move)

        fen = None if starting_fen == chess.STARTING_FEN else starting_fen
        return cls(moves_san, starting_fen=fen)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def ply_count(self) -> int:
        return len(self._plies)

    @property
    def plies(self) -> list[Ply]:
        return list(self._plies)

    @property
    def starting_fen(self) -> str:
        return self._start.fen()

    def ply(self, index: int) -> Ply:
        return self._plies[index]

    def _check_index(self, index: int) -> None:
        if not -1 <= index < self.ply_count:
            raise IndexError(
                f"Position index {index} out of range [-1, {self.ply_count - 1}]"
            )

    def position_at(self, index: int) -> chess.Board:
        """Reconstruct the position after ply `index`.

        Replays moves 0..index onto the starting position, so the result
        is always reproducible from the move list alone.

        Args:
            index: -1 for the initial position, else a ply index.

        Returns:
            A fresh chess.Board the caller may mutate freely.

        Raises:
            IndexError: If index is outside [-1, N-1].
        """
        self._check_index(index)
        board = self._start.copy(stack=False)
        for move in self._moves[: index + 1]:
            board.push(move)
        return board

    def fen_at(self, index: int) -> str:
        """FEN of the position after ply `index` (cached)."""
        self._check_index(index)
        return self._fens[index + 1]

    def initial_position(self) -> chess.Board:
        return self.position_at(-1)

    def final_position(self) -> chess.Board:
        return self.position_at(self.ply_count - 1)

    def apply_uci(self, ply_index: int, uci: str) -> chess.Board:
        """Play an engine move instead of ply `ply_index`.

        Args:
            ply_index: Ply whose pre-move position is the base.
            uci: Move in UCI notation, e.g. 'e2e4' or 'e7e8q'.

        Returns:
            The position after the engine's move.

        Raises:
            BestMoveUnparsable: If the move is malformed or illegal there.
        """
        board, move = self._engine_move(ply_index, uci)
        board.push(move)
        return board

    def engine_san(self, ply_index: int, uci: str) -> str:
        """SAN of an engine move in the position before ply `ply_index`.

        Raises:
            BestMoveUnparsable: If the move is malformed or illegal there.
        """
        board, move = self._engine_move(ply_index, uci)
        return board.san(move)

    def _engine_move(self, ply_index: int, uci: str) -> tuple[chess.Board, chess.Move]:
        board = self.position_at(ply_index - 1)
        try:
            move = chess.Move.from_uci(uci.strip())
        except (ValueError, AttributeError) as exc:
            raise BestMoveUnparsable(f"Malformed engine move: {uci!r}") from exc
        if move not in board.legal_moves:
            raise BestMoveUnparsable(
                f"Engine move {uci} is illegal in {board.fen()}"
            )
        return board, move


def _make_ply(board: chess.Board, move: chess.Move, index: int) -> Ply:
    """Describe `move` played from `board` (before it is pushed)."""
    promotion = None
    if move.promotion is not None:
        promotion = chess.piece_symbol(move.promotion)
    return Ply(
        index=index,
        san=board.san(move),
        uci=move.uci(),
        side=Side.from_color(board.turn),
        from_square=chess.square_name(move.from_square),
        to_square=chess.square_name(move.to_square),
        promotion=promotion,
    )
