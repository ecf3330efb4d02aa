"""Exceptions raised by the game review pipeline."""

from __future__ import annotations


class ReviewError(Exception):
    """Base class for game review errors."""


class InvalidMoveSequence(ReviewError):
    """The supplied game cannot be replayed from its starting position.

    Fatal at load time: analysis never starts for such a game.
    """

    def __init__(self, message: str, index: int | None = None, move: str | None = None) -> None:
        super().__init__(message)
        self.index = index
        self.move = move


class EvaluationUnavailable(ReviewError):
    """The evaluation service gave no usable answer for a position."""


class BestMoveUnparsable(ReviewError):
    """The engine's suggested move could not be parsed or applied."""


class NavigationRejected(ReviewError):
    """A replay transition was refused (out of range, busy or throttled)."""
