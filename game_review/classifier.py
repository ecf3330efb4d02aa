"""Move quality classification and per-move rating estimates.

Turns the centipawn loss of a move into a discrete quality label and an
instantaneous playing-strength estimate.
"""

from __future__ import annotations

import chess.pgn

from game_review.config import BOOK_MAX_CPL, BOOK_PLY_LIMIT, BrilliantThresholds
from game_review.models import Quality, Side

# Move classification thresholds (cpl upper bound -> quality)
_QUALITY_THRESHOLDS = [
    (8, Quality.BEST),
    (20, Quality.EXCELLENT),
    (40, Quality.GOOD),
    (80, Quality.INACCURACY),
    (150, Quality.MISTAKE),
]

# Rating curve anchors (cpl, rating); linear in between
_RATING_ANCHORS = [
    (5, 2200),
    (10, 2000),
    (20, 1800),
    (35, 1600),
    (55, 1400),
    (80, 1200),
    (120, 1000),
    (180, 800),
]
_RATING_CEILING = 2200
_RATING_FLOOR = 700

QUALITY_SYMBOLS: dict[Quality, str] = {
    Quality.BRILLIANT: "!!",
    Quality.BEST: "!",
    Quality.INACCURACY: "?!",
    Quality.MISTAKE: "?",
    Quality.BLUNDER: "??",
}

QUALITY_NAGS: dict[Quality, int] = {
    Quality.BRILLIANT: chess.pgn.NAG_BRILLIANT_MOVE,
    Quality.BEST: chess.pgn.NAG_GOOD_MOVE,
    Quality.INACCURACY: chess.pgn.NAG_DUBIOUS_MOVE,
    Quality.MISTAKE: chess.pgn.NAG_MISTAKE,
    Quality.BLUNDER: chess.pgn.NAG_BLUNDER,
}


def _for_side(score_cp: float, side: Side) -> float:
    """Flip a white-POV score to the mover's point of view."""
    return score_cp if side is Side.WHITE else -score_cp


def centipawn_loss(side: Side, actual_cp: float, best_cp: float) -> float:
    """Loss of the move played versus the best move, never negative.

    Args:
        side: Side that moved.
        actual_cp: White-POV evaluation after the move played.
        best_cp: White-POV evaluation after the engine's best move.

    Returns:
        Centipawn loss >= 0.
    """
    if side is Side.WHITE:
        return max(0.0, best_cp - actual_cp)
    return max(0.0, actual_cp - best_cp)


def quality_for_cpl(cpl: float) -> Quality:
    """Map a centipawn loss onto the Best..Blunder scale."""
    for threshold, quality in _QUALITY_THRESHOLDS:
        if cpl <= threshold:
            return quality
    return Quality.BLUNDER


def rating_for_cpl(cpl: float) -> float:
    """Instantaneous rating estimate for one move.

    Piecewise linear and monotonically non-increasing: 2200 below 5 cpl,
    interpolated between the anchors, 700 from 180 cpl upwards.
    """
    if cpl < _RATING_ANCHORS[0][0]:
        return float(_RATING_CEILING)
    if cpl >= _RATING_ANCHORS[-1][0]:
        return float(_RATING_FLOOR)
    for (lo_cpl, lo_rating), (hi_cpl, hi_rating) in zip(_RATING_ANCHORS, _RATING_ANCHORS[1:]):
        if lo_cpl <= cpl < hi_cpl:
            fraction = (cpl - lo_cpl) / (hi_cpl - lo_cpl)
            return lo_rating + fraction * (hi_rating - lo_rating)
    return float(_RATING_FLOOR)


class MoveClassifier:
    """Labels moves from the two evaluation series."""

    def __init__(self, brilliant: BrilliantThresholds | None = None) -> None:
        self._brilliant = brilliant or BrilliantThresholds()

    def is_brilliant(self, side: Side, prev_cp: float, actual_cp: float, cpl: float) -> bool:
        """Near-best move that turns a non-winning position in the mover's favour."""
        prior = _for_side(prev_cp, side)
        swing = _for_side(actual_cp, side) - prior
        return (
            cpl <= self._brilliant.max_cpl
            and prior < self._brilliant.max_prior_advantage
            and swing >= self._brilliant.min_swing
        )

    def classify(
        self,
        ply_index: int,
        side: Side,
        prev_cp: float,
        actual_cp: float,
        best_cp: float,
    ) -> tuple[Quality, float]:
        """Classify one ply.

        First match wins: Book (early and near-best), Brilliant, then the
        centipawn-loss bands.

        Args:
            ply_index: 0-based ply index of the move.
            side: Side that moved.
            prev_cp: after_actual[i], white POV.
            actual_cp: after_actual[i + 1], white POV.
            best_cp: after_best[i + 1], white POV.

        Returns:
            Tuple of (quality, centipawn loss).
        """
        cpl = centipawn_loss(side, actual_cp, best_cp)
        if ply_index < BOOK_PLY_LIMIT and cpl < BOOK_MAX_CPL:
            return Quality.BOOK, cpl
        if self.is_brilliant(side, prev_cp, actual_cp, cpl):
            return Quality.BRILLIANT, cpl
        return quality_for_cpl(cpl), cpl


def describe_evaluation(pawns: float) -> str:
    """Plain-language reading of a white-POV evaluation in pawns."""
    if pawns > 3:
        return "White is winning"
    if pawns > 1.5:
        return "White has the advantage"
    if pawns > 0.5:
        return "White is slightly better"
    if pawns >= -0.5:
        return "Equal position"
    if pawns >= -1.5:
        return "Black is slightly better"
    if pawns >= -3:
        return "Black has the advantage"
    return "Black is winning"
