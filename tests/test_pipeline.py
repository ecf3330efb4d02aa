"""Tests for the sequential evaluation pipeline.

All tests use the scripted FakeEvaluator from conftest.py and a sleep
that returns immediately.
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeEvaluator, no_sleep
from game_review.models import PipelineState
from game_review.pipeline import EvaluationPipeline
from game_review.positions import PositionCodec

_MOVES = ["e4", "e5", "Nf3", "Nc6", "Bb5", "a6", "Ba4", "Nf6"]


def _run(pipeline: EvaluationPipeline) -> None:
    asyncio.run(pipeline.run())


def _pipeline(codec: PositionCodec, evaluator, **kwargs) -> EvaluationPipeline:
    return EvaluationPipeline(codec, evaluator, depth=13, delay_s=0.15, sleep=no_sleep, **kwargs)


class TestSeries:

    def test_complete_series_have_n_plus_one_entries(self, fake_evaluator):
        codec = PositionCodec(_MOVES)
        pipeline = _pipeline(codec, fake_evaluator)
        _run(pipeline)
        assert pipeline.state is PipelineState.COMPLETE
        assert len(pipeline.after_actual) == len(_MOVES) + 1
        assert len(pipeline.after_best) == len(_MOVES) + 1
        assert len(pipeline.best_moves) == len(_MOVES)
        assert pipeline.completed_plies == len(_MOVES)
        assert pipeline.progress == 1.0

    def test_index_zero_shared(self):
        codec = PositionCodec(_MOVES[:2])
        evaluator = FakeEvaluator(scores={codec.fen_at(-1): 25.0})
        pipeline = _pipeline(codec, evaluator)
        _run(pipeline)
        assert pipeline.after_actual[0] == pipeline.after_best[0]
        assert pipeline.after_actual[0].score_cp == 25.0

    def test_samples_labelled_by_index(self, fake_evaluator):
        codec = PositionCodec(_MOVES)
        pipeline = _pipeline(codec, fake_evaluator)
        _run(pipeline)
        assert [s.ply for s in pipeline.after_actual] == list(range(len(_MOVES) + 1))

    def test_empty_game_completes(self, fake_evaluator):
        pipeline = _pipeline(PositionCodec([]), fake_evaluator)
        _run(pipeline)
        assert pipeline.state is PipelineState.COMPLETE
        assert len(pipeline.after_actual) == 1
        assert pipeline.progress == 1.0

    def test_every_request_uses_depth_and_delay(self):
        codec = PositionCodec(_MOVES[:2])
        evaluator = FakeEvaluator()
        delays: list[float] = []

        async def sleep(seconds: float) -> None:
            delays.append(seconds)

        pipeline = EvaluationPipeline(codec, evaluator, depth=9, delay_s=0.15, sleep=sleep)
        _run(pipeline)
        assert len(delays) == len(evaluator.calls)
        assert all(d == 0.15 for d in delays)
        assert all(depth == 9 for _, depth in evaluator.calls)

    def test_requests_are_sequential_in_ply_order(self):
        codec = PositionCodec(_MOVES[:2])
        evaluator = FakeEvaluator()
        _run(_pipeline(codec, evaluator))
        fens = [fen for fen, _ in evaluator.calls]
        # initial, then (after move, before move) per ply
        assert fens == [
            codec.fen_at(-1),
            codec.fen_at(0), codec.fen_at(-1),
            codec.fen_at(1), codec.fen_at(0),
        ]


class TestBestMove:

    def test_best_move_position_is_evaluated(self):
        codec = PositionCodec(["e4", "e5"])
        # Engine prefers 1.d4 from the start
        after_d4 = codec.apply_uci(0, "d2d4").fen()
        evaluator = FakeEvaluator(
            scores={codec.fen_at(0): 20.0, after_d4: 45.0},
            best_moves={codec.fen_at(-1): "d2d4"},
        )
        pipeline = _pipeline(codec, evaluator)
        _run(pipeline)
        assert pipeline.after_actual[1].score_cp == 20.0
        assert pipeline.after_best[1].score_cp == 45.0
        assert pipeline.best_moves[0] == "d2d4"

    def test_best_equal_to_played_reuses_actual(self):
        codec = PositionCodec(["e4"])
        evaluator = FakeEvaluator(
            scores={codec.fen_at(0): 30.0},
            best_moves={codec.fen_at(-1): "e2e4"},
        )
        pipeline = _pipeline(codec, evaluator)
        _run(pipeline)
        assert pipeline.after_best[1] == pipeline.after_actual[1]
        # initial, after move, before move; no extra request for the best move
        assert len(evaluator.calls) == 3

    def test_illegal_best_move_falls_back_to_actual(self):
        codec = PositionCodec(["e4"])
        evaluator = FakeEvaluator(
            scores={codec.fen_at(0): -40.0},
            best_moves={codec.fen_at(-1): "e2e5"},
        )
        pipeline = _pipeline(codec, evaluator)
        _run(pipeline)
        assert pipeline.after_best[1].score_cp == -40.0
        assert pipeline.state is PipelineState.COMPLETE

    def test_missing_best_move_falls_back_to_actual(self):
        codec = PositionCodec(["e4"])
        evaluator = FakeEvaluator(scores={codec.fen_at(0): 15.0})
        pipeline = _pipeline(codec, evaluator)
        _run(pipeline)
        assert pipeline.after_best[1].score_cp == 15.0
        assert pipeline.best_moves[0] is None

    def test_failed_best_move_request_falls_back_to_actual(self):
        codec = PositionCodec(["e4"])
        after_d4 = codec.apply_uci(0, "d2d4").fen()
        evaluator = FakeEvaluator(
            scores={codec.fen_at(0): 15.0},
            best_moves={codec.fen_at(-1): "d2d4"},
            fail_fens={after_d4},
        )
        pipeline = _pipeline(codec, evaluator)
        _run(pipeline)
        assert pipeline.after_best[1].score_cp == 15.0


class TestFailures:

    def test_failed_ply_reuses_previous_evaluation(self):
        codec = PositionCodec(_MOVES)
        scores = {codec.fen_at(i): float(10 * (i + 2)) for i in range(-1, len(_MOVES))}
        # Calls: 0 = initial, then two per ply (no best moves scripted).
        # Ply 5's "after actual" call is number 1 + 2 * 5.
        evaluator = FakeEvaluator(scores=scores, fail_calls={11})
        pipeline = _pipeline(codec, evaluator)
        _run(pipeline)

        actual = pipeline.after_actual
        assert actual[6].score_cp == actual[5].score_cp
        assert actual[6].ply == 6
        assert actual[7].score_cp == scores[codec.fen_at(6)]
        assert pipeline.state is PipelineState.COMPLETE
        assert len(actual) == len(_MOVES) + 1

    def test_failed_initial_evaluation_is_neutral(self):
        codec = PositionCodec(_MOVES[:2])
        evaluator = FakeEvaluator(default=35.0, fail_calls={0})
        pipeline = _pipeline(codec, evaluator)
        _run(pipeline)
        assert pipeline.after_actual[0].score_cp == 0.0
        assert pipeline.after_actual[1].score_cp == 35.0

    def test_total_outage_still_completes(self):
        codec = PositionCodec(_MOVES)
        evaluator = FakeEvaluator(fail_calls=range(1000))
        pipeline = _pipeline(codec, evaluator)
        _run(pipeline)
        assert pipeline.state is PipelineState.COMPLETE
        assert all(s.score_cp == 0.0 for s in pipeline.after_actual)
        assert len(pipeline.after_best) == len(_MOVES) + 1


class TestLifecycle:

    def test_listener_called_per_ply_in_order(self, fake_evaluator):
        codec = PositionCodec(_MOVES[:4])
        pipeline = _pipeline(codec, fake_evaluator)
        seen: list[tuple[int, int]] = []
        pipeline.add_listener(lambda ply: seen.append((ply, pipeline.available)))
        _run(pipeline)
        # Entries for the ply exist before the listener runs
        assert seen == [(0, 2), (1, 3), (2, 4), (3, 5)]

    def test_failing_listener_does_not_stall_run(self, fake_evaluator):
        codec = PositionCodec(_MOVES[:4])
        pipeline = _pipeline(codec, fake_evaluator)
        seen: list[int] = []

        def broken(ply: int) -> None:
            raise OSError("disk full")

        pipeline.add_listener(broken)
        pipeline.add_listener(seen.append)
        _run(pipeline)
        assert pipeline.state is PipelineState.COMPLETE
        assert seen == [0, 1, 2, 3]
        # Can be started again
        _run(pipeline)
        assert pipeline.state is PipelineState.COMPLETE

    def test_cancel_returns_to_idle(self):
        codec = PositionCodec(_MOVES)
        gate = asyncio.Event()

        async def blocking_sleep(_seconds: float) -> None:
            await gate.wait()

        pipeline = EvaluationPipeline(codec, FakeEvaluator(), sleep=blocking_sleep)

        async def run():
            task = asyncio.create_task(pipeline.run())
            await asyncio.sleep(0)
            assert pipeline.state is PipelineState.RUNNING
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(run())
        assert pipeline.state is PipelineState.IDLE

    def test_rerun_discards_previous_series(self):
        codec = PositionCodec(_MOVES[:2])
        evaluator = FakeEvaluator(default=50.0)
        pipeline = _pipeline(codec, evaluator)
        _run(pipeline)
        evaluator.default = -50.0
        _run(pipeline)
        assert len(pipeline.after_actual) == 3
        assert all(s.score_cp == -50.0 for s in pipeline.after_actual)

    def test_run_while_running_rejected(self):
        codec = PositionCodec(_MOVES)
        gate = asyncio.Event()

        async def blocking_sleep(_seconds: float) -> None:
            await gate.wait()

        pipeline = EvaluationPipeline(codec, FakeEvaluator(), sleep=blocking_sleep)

        async def run():
            task = asyncio.create_task(pipeline.run())
            await asyncio.sleep(0)
            with pytest.raises(RuntimeError):
                await pipeline.run()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(run())
