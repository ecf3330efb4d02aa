"""Running rating estimates, accuracy and per-side statistics.

The aggregator folds classified plies into one MoveAnalysis per ply and
keeps an exponentially smoothed rating for each side.
"""

from __future__ import annotations

import math

import chess

from game_review.classifier import MoveClassifier, rating_for_cpl
from game_review.config import DEFAULT_RATING, RATING_SMOOTHING
from game_review.models import (
    EvaluationSample,
    MoveAnalysis,
    Ply,
    Quality,
    RunningRatingState,
    Side,
)

# Lichess-style accuracy curve from average centipawn loss
_ACC_SCALE = 103.1668
_ACC_DECAY = 0.04354
_ACC_OFFSET = 3.1668

_GOOD_QUALITIES = {Quality.BRILLIANT, Quality.BEST, Quality.EXCELLENT}
_BAD_QUALITIES = {Quality.INACCURACY, Quality.MISTAKE, Quality.BLUNDER}

# Graph values are capped to +-5 pawns
_GRAPH_CAP = 5.0


def accuracy_from_cpl(avg_cpl: float) -> float:
    """Convert an average centipawn loss into a 0-100 accuracy score.

    Formula: 103.1668 * e^(-0.04354 * avg_cpl) - 3.1668, clamped to
    [0, 100] and rounded to one decimal.
    """
    raw = _ACC_SCALE * math.exp(-_ACC_DECAY * max(0.0, avg_cpl)) - _ACC_OFFSET
    return round(max(0.0, min(100.0, raw)), 1)


def phase_for_move_number(move_number: int) -> str:
    if move_number <= 10:
        return "opening"
    if move_number <= 30:
        return "middlegame"
    return "endgame"


def detect_game_phase(board: chess.Board) -> str:
    """Game phase of a position judged by the pieces left on the board."""
    majors = minors = total = 0
    for piece in board.piece_map().values():
        total += 1
        if piece.piece_type in (chess.QUEEN, chess.ROOK):
            majors += 1
        elif piece.piece_type in (chess.BISHOP, chess.KNIGHT):
            minors += 1

    if total >= 28:
        return "opening"
    if total <= 12 or (majors <= 2 and minors <= 2):
        return "endgame"
    return "middlegame"


def evaluation_graph(samples: tuple[EvaluationSample, ...] | list[EvaluationSample]) -> list[float]:
    """Pawn values for an evaluation chart, capped to +-5."""
    return [max(-_GRAPH_CAP, min(_GRAPH_CAP, s.pawns)) for s in samples]


def _phase_label(qualities: list[Quality]) -> str:
    if not qualities:
        return "-"
    good = sum(1 for q in qualities if q in _GOOD_QUALITIES)
    bad = sum(1 for q in qualities if q in _BAD_QUALITIES)
    if Quality.BRILLIANT in qualities or good / len(qualities) > 0.7:
        return "Excellent"
    if good / len(qualities) > 0.5:
        return "Good"
    if bad / len(qualities) > 0.3:
        return "Inaccuracy"
    if Quality.BLUNDER in qualities:
        return "Mistake"
    return "Average"


class RatingAccuracyAggregator:
    """Owns the MoveAnalysis collection and the running ratings."""

    def __init__(
        self,
        white_rating: int | None = None,
        black_rating: int | None = None,
        default_rating: int = DEFAULT_RATING,
        smoothing: float = RATING_SMOOTHING,
        classifier: MoveClassifier | None = None,
    ) -> None:
        """Start both running ratings from the known or default rating.

        Args:
            white_rating: Known rating of white, if any.
            black_rating: Known rating of black, if any.
            default_rating: Starting value when a rating is unknown.
            smoothing: Weight of each new move rating (alpha).
            classifier: MoveClassifier to label plies with.
        """
        self._smoothing = smoothing
        self._classifier = classifier or MoveClassifier()
        self._ratings: dict[Side, RunningRatingState] = {}
        for side, known in ((Side.WHITE, white_rating), (Side.BLACK, black_rating)):
            start = float(known if known is not None else default_rating)
            self._ratings[side] = RunningRatingState(side=side, initial=start, rating=start)
        self._analyses: list[MoveAnalysis] = []

    @property
    def analyses(self) -> tuple[MoveAnalysis, ...]:
        return tuple(self._analyses)

    def analysis_at(self, ply_index: int) -> MoveAnalysis | None:
        if 0 <= ply_index < len(self._analyses):
            return self._analyses[ply_index]
        return None

    def rating_state(self, side: Side) -> RunningRatingState:
        return self._ratings[side]

    def rating(self, side: Side) -> float:
        return self._ratings[side].rating

    def fold(
        self,
        ply: Ply,
        prev: EvaluationSample,
        actual: EvaluationSample,
        best: EvaluationSample,
        best_move_uci: str | None = None,
        best_move_san: str | None = None,
    ) -> MoveAnalysis:
        """Classify the next ply and update the mover's running rating.

        Plies must be folded in order. Book moves leave the running rating
        untouched and only report its current value.

        Args:
            ply: The ply being classified.
            prev: after_actual[ply.index].
            actual: after_actual[ply.index + 1].
            best: after_best[ply.index + 1].
            best_move_uci: Engine's suggestion for this ply, if known.
            best_move_san: The same suggestion in SAN.

        Returns:
            The new MoveAnalysis, also appended to `analyses`.

        Raises:
            ValueError: If the ply is folded out of order.
        """
        if ply.index != len(self._analyses):
            raise ValueError(
                f"Ply {ply.index} folded out of order, expected {len(self._analyses)}"
            )

        quality, cpl = self._classifier.classify(
            ply.index, ply.side, prev.score_cp, actual.score_cp, best.score_cp
        )
        state = self._ratings[ply.side]
        if quality is not Quality.BOOK:
            move_rating = rating_for_cpl(cpl)
            state.rating = self._smoothing * move_rating + (1 - self._smoothing) * state.rating
            state.moves_counted += 1

        analysis = MoveAnalysis(
            ply=ply.index,
            move_number=ply.move_number,
            side=ply.side,
            san=ply.san,
            cpl=cpl,
            quality=quality,
            eval_before=prev.pawns,
            eval_after=actual.pawns,
            eval_best=best.pawns,
            estimated_rating=state.rating,
            best_move_uci=best_move_uci,
            best_move_san=best_move_san,
        )
        self._analyses.append(analysis)
        return analysis

    # ------------------------------------------------------------------
    # Per-side statistics
    # ------------------------------------------------------------------

    def _moves(self, side: Side) -> list[MoveAnalysis]:
        return [a for a in self._analyses if a.side is side]

    def average_cpl(self, side: Side) -> float:
        """Mean CPL over the side's non-book moves, 0 if there are none."""
        losses = [a.cpl for a in self._moves(side) if a.quality is not Quality.BOOK]
        if not losses:
            return 0.0
        return sum(losses) / len(losses)

    def accuracy(self, side: Side) -> float:
        return accuracy_from_cpl(self.average_cpl(side))

    def quality_counts(self, side: Side) -> dict[str, int]:
        counts = {q.value: 0 for q in Quality}
        for analysis in self._moves(side):
            counts[analysis.quality.value] += 1
        return counts

    def phase_quality(self, side: Side) -> dict[str, str]:
        """Summary label per game phase, '-' where the side made no move."""
        by_phase: dict[str, list[Quality]] = {"opening": [], "middlegame": [], "endgame": []}
        for analysis in self._moves(side):
            by_phase[phase_for_move_number(analysis.move_number)].append(analysis.quality)
        return {phase: _phase_label(qualities) for phase, qualities in by_phase.items()}
