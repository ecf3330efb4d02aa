"""Sequential evaluation pipeline for a loaded game.

Walks the position stream ply by ply and builds two parallel series:

  after_actual[i]  evaluation after the move actually played at ply i-1
                   (index 0 is the initial position)
  after_best[i]    evaluation after the engine's best move from the same
                   base position

Requests are strictly sequential with a fixed delay before each one; the
evaluation service is rate limited. Individual evaluation failures degrade
to fallback values and never stop the run.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from game_review.config import DEFAULT_DEPTH, DEFAULT_REQUEST_DELAY_S
from game_review.engine import Evaluator
from game_review.errors import BestMoveUnparsable, EvaluationUnavailable, InvalidMoveSequence
from game_review.models import EngineResult, EvaluationSample, PipelineState
from game_review.positions import PositionCodec

logger = logging.getLogger(__name__)

PlyListener = Callable[[int], None]


def _sample(ply: int, result: EngineResult) -> EvaluationSample:
    return EvaluationSample(
        ply=ply,
        score_cp=result.score_cp,
        is_mate=result.is_mate,
        mate_in=result.mate_in,
    )


class EvaluationPipeline:
    """Builds the evaluation series for one game.

    State machine: IDLE -> RUNNING -> COMPLETE | FAILED. A cancelled run
    goes back to IDLE. Both series are append-only while RUNNING, so
    readers may look at any index below `available` at any time.
    """

    def __init__(
        self,
        codec: PositionCodec,
        evaluator: Evaluator,
        depth: int = DEFAULT_DEPTH,
        delay_s: float = DEFAULT_REQUEST_DELAY_S,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Prepare a pipeline; nothing is requested until run().

        Args:
            codec: Position stream of the game.
            evaluator: Evaluation service client.
            depth: Search depth for every request.
            delay_s: Delay before every request, in seconds.
            sleep: Awaitable sleep, replaceable in tests.
        """
        self._codec = codec
        self._evaluator = evaluator
        self._depth = depth
        self._delay_s = delay_s
        self._sleep = sleep
        self._listeners: list[PlyListener] = []
        self._state = PipelineState.IDLE
        self._reset()

    def _reset(self) -> None:
        self._after_actual: list[EvaluationSample] = []
        self._after_best: list[EvaluationSample] = []
        self._best_moves: list[str | None] = []
        self._completed = 0

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def ply_count(self) -> int:
        return self._codec.ply_count

    @property
    def completed_plies(self) -> int:
        return self._completed

    @property
    def progress(self) -> float:
        """Fraction of plies done, 0.0 to 1.0."""
        if self.ply_count == 0:
            return 1.0 if self._state is PipelineState.COMPLETE else 0.0
        return self._completed / self.ply_count

    @property
    def after_actual(self) -> tuple[EvaluationSample, ...]:
        return tuple(self._after_actual)

    @property
    def after_best(self) -> tuple[EvaluationSample, ...]:
        return tuple(self._after_best)

    @property
    def best_moves(self) -> tuple[str | None, ...]:
        """Engine best move (UCI) per ply, None where unknown."""
        return tuple(self._best_moves)

    @property
    def available(self) -> int:
        """Number of indices present in both series."""
        return min(len(self._after_actual), len(self._after_best))

    def actual_at(self, index: int) -> EvaluationSample | None:
        """after_actual[index] if it has been computed, else None."""
        if 0 <= index < len(self._after_actual):
            return self._after_actual[index]
        return None

    def add_listener(self, listener: PlyListener) -> None:
        """Register a callback invoked with the ply index after each ply."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Evaluate every position of the game in order.

        Raises:
            RuntimeError: If the pipeline is already running.
            InvalidMoveSequence: If the position stream cannot be rebuilt;
                the pipeline ends FAILED.
        """
        if self._state is PipelineState.RUNNING:
            raise RuntimeError("Pipeline is already running")

        self._reset()
        self._state = PipelineState.RUNNING
        logger.info("Evaluating %d plies at depth %d", self.ply_count, self._depth)

        try:
            initial = await self._request(self._codec.fen_at(-1))
            if initial is None:
                start = EvaluationSample(ply=0, score_cp=0.0)
            else:
                start = _sample(0, initial)
            self._after_actual.append(start)
            self._after_best.append(start)

            for ply_index in range(self.ply_count):
                await self._evaluate_ply(ply_index)
                self._completed += 1
                self._notify(ply_index)
        except asyncio.CancelledError:
            logger.info("Evaluation cancelled after %d plies", self._completed)
            self._state = PipelineState.IDLE
            raise
        except InvalidMoveSequence:
            logger.exception("Position stream broken, evaluation failed")
            self._state = PipelineState.FAILED
            raise

        self._state = PipelineState.COMPLETE
        logger.info("Evaluation complete: %d plies", self.ply_count)

    async def _request(self, fen: str) -> EngineResult | None:
        """Wait the fixed delay, then evaluate; None if unavailable."""
        await self._sleep(self._delay_s)
        try:
            return await self._evaluator.evaluate(fen, self._depth)
        except EvaluationUnavailable as exc:
            logger.warning("Evaluation unavailable for %s: %s", fen, exc)
            return None

    async def _evaluate_ply(self, ply_index: int) -> None:
        index = ply_index + 1

        result = await self._request(self._codec.fen_at(ply_index))
        if result is None:
            actual = self._after_actual[index - 1].relabel(index)
        else:
            actual = _sample(index, result)

        before = await self._request(self._codec.fen_at(ply_index - 1))
        best_uci = before.best_move_uci if before is not None else None

        try:
            best = await self._best_sample(ply_index, best_uci, actual)
        except BestMoveUnparsable as exc:
            logger.info("Ply %d: best move unusable (%s), using actual", ply_index, exc)
            best = actual

        self._after_actual.append(actual)
        self._after_best.append(best)
        self._best_moves.append(best_uci)

    async def _best_sample(
        self, ply_index: int, best_uci: str | None, actual: EvaluationSample
    ) -> EvaluationSample:
        if best_uci is None:
            raise BestMoveUnparsable("no best move returned")

        board = self._codec.apply_uci(ply_index, best_uci)
        if best_uci == self._codec.ply(ply_index).uci:
            # Same resulting position as the move played
            return actual

        result = await self._request(board.fen())
        if result is None:
            return actual
        return _sample(ply_index + 1, result)

    def _notify(self, ply_index: int) -> None:
        for listener in self._listeners:
            try:
                listener(ply_index)
            except Exception:
                logger.exception("Listener failed for ply %d", ply_index)
