"""Tests for annotated PGN export and the markdown review summary."""

from __future__ import annotations

import asyncio
import io
import json
import sys
from pathlib import Path

import chess
import chess.engine
import chess.pgn

from conftest import FakeEvaluator, no_sleep
from game_review.aggregator import RatingAccuracyAggregator
from game_review.export import ANNOTATOR, annotated_pgn, export_review, main, move_comment
from game_review.models import MoveAnalysis, PlayerInfo, Quality, Side
from game_review.pipeline import EvaluationPipeline
from game_review.positions import PositionCodec

_SAMPLE = Path(__file__).resolve().parent.parent / "data" / "sample_review.json"

_MOVES = ["e4", "e5", "Nf3", "Nc6", "Bc4", "Nd4", "Nxe5", "Qg5"]


def _review(codec: PositionCodec, evaluator: FakeEvaluator):
    pipeline = EvaluationPipeline(codec, evaluator, sleep=no_sleep)
    asyncio.run(pipeline.run())
    aggregator = RatingAccuracyAggregator()
    for ply in codec.plies:
        i = ply.index
        aggregator.fold(
            ply,
            pipeline.after_actual[i],
            pipeline.after_actual[i + 1],
            pipeline.after_best[i + 1],
            pipeline.best_moves[i],
        )
    return pipeline, aggregator


def _blunder_game():
    """Game where 4.Nxe5 drops 4.5 pawns against 4.Nxd4."""
    codec = PositionCodec(_MOVES)
    after_nxd4 = codec.apply_uci(6, "f3d4").fen()
    evaluator = FakeEvaluator(
        scores={codec.fen_at(6): -400.0, after_nxd4: 50.0},
        best_moves={codec.fen_at(5): "f3d4"},
    )
    pipeline, aggregator = _review(codec, evaluator)
    return codec, pipeline, aggregator


def _read(pgn: str) -> chess.pgn.Game:
    game = chess.pgn.read_game(io.StringIO(pgn))
    assert game is not None
    return game


# ---------------------------------------------------------------------------
# Annotated PGN
# ---------------------------------------------------------------------------


class TestAnnotatedPgn:

    def test_mainline_is_preserved(self):
        codec, pipeline, aggregator = _blunder_game()
        pgn = annotated_pgn(
            codec, aggregator.analyses, pipeline.after_actual,
            PlayerInfo("alice", 1520), PlayerInfo("bob"),
        )
        game = _read(pgn)
        board = game.board()
        sans = []
        for move in game.mainline_moves():
            sans.append(board.san(move))
            board.push(move)
        assert sans == _MOVES

    def test_blunder_is_marked(self):
        codec, pipeline, aggregator = _blunder_game()
        assert aggregator.analyses[6].quality is Quality.BLUNDER
        pgn = annotated_pgn(
            codec, aggregator.analyses, pipeline.after_actual,
            PlayerInfo("alice"), PlayerInfo("bob"),
        )
        nodes = list(_read(pgn).mainline())
        assert chess.pgn.NAG_BLUNDER in nodes[6].nags
        assert "Blunder" in nodes[6].comment
        assert nodes[6].eval().white() == chess.engine.Cp(-400)
        # Book moves carry no NAG
        assert not nodes[0].nags

    def test_headers(self):
        codec, pipeline, aggregator = _blunder_game()
        pgn = annotated_pgn(
            codec, aggregator.analyses, pipeline.after_actual,
            PlayerInfo("alice", 1520), PlayerInfo("bob"),
            accuracy={Side.WHITE: 41.26, Side.BLACK: 100.0},
            headers={"Event": "Club night", "White": "ignored"},
        )
        headers = _read(pgn).headers
        assert headers["Event"] == "Club night"
        assert headers["White"] == "alice"
        assert headers["WhiteElo"] == "1520"
        assert "BlackElo" not in headers
        assert headers["WhiteAccuracy"] == "41.3"
        assert headers["BlackAccuracy"] == "100.0"
        assert headers["Annotator"] == ANNOTATOR

    def test_no_accuracy_headers_without_accuracy(self):
        codec, pipeline, aggregator = _blunder_game()
        pgn = annotated_pgn(
            codec, aggregator.analyses, pipeline.after_actual,
            PlayerInfo(), PlayerInfo(),
        )
        assert "WhiteAccuracy" not in _read(pgn).headers

    def test_partial_analysis_writes_bare_moves(self):
        codec, pipeline, aggregator = _blunder_game()
        pgn = annotated_pgn(
            codec, aggregator.analyses[:3], pipeline.after_actual[:4],
            PlayerInfo(), PlayerInfo(),
        )
        nodes = list(_read(pgn).mainline())
        assert len(nodes) == len(_MOVES)
        assert nodes[2].comment
        assert nodes[3].comment == ""
        assert nodes[3].eval() is None

    def test_custom_starting_position(self):
        fen = "4k3/8/8/8/8/8/4P3/4K3 w - - 0 1"
        codec = PositionCodec(["e4", "Kd7"], starting_fen=fen)
        pipeline, aggregator = _review(codec, FakeEvaluator())
        pgn = annotated_pgn(
            codec, aggregator.analyses, pipeline.after_actual, PlayerInfo(), PlayerInfo()
        )
        game = _read(pgn)
        assert game.headers["FEN"] == fen
        assert game.board().fen() == fen
        assert len(list(game.mainline_moves())) == 2

    def test_finished_game_gets_result(self):
        codec = PositionCodec(["f3", "e5", "g4", "Qh4#"])
        pipeline, aggregator = _review(codec, FakeEvaluator())
        pgn = annotated_pgn(
            codec, aggregator.analyses, pipeline.after_actual, PlayerInfo(), PlayerInfo()
        )
        assert _read(pgn).headers["Result"] == "0-1"


def test_move_comment():
    analysis = MoveAnalysis(
        ply=6, move_number=4, side=Side.WHITE, san="Nxe5", cpl=96.4,
        quality=Quality.MISTAKE, eval_before=0.3, eval_after=-0.66, eval_best=0.3,
        estimated_rating=1319.6,
    )
    assert move_comment(analysis) == "Mistake (cpl 96, est. 1320)"


# ---------------------------------------------------------------------------
# Markdown summary
# ---------------------------------------------------------------------------


def _sample_state() -> dict:
    return json.loads(_SAMPLE.read_text(encoding="utf-8"))


class TestExportReview:

    def test_empty_state(self):
        assert "No reviewed moves yet" in export_review({})

    def test_sections(self):
        markdown = export_review(_sample_state())
        assert markdown.startswith("# Game Review: alice vs bob")
        assert "## Summary" in markdown
        assert "- White alice (rated 1520): accuracy 0.0%, estimated 1461" in markdown
        assert "| Mistake | 1 | 0 |" in markdown
        assert "- Opening: White Average / Black Average" in markdown

    def test_key_mistakes(self):
        markdown = export_review(_sample_state())
        assert "## Key Mistakes" in markdown
        assert "- 4.Nxe5 (Mistake, -142cp, best Nxd4)" in markdown

    def test_no_key_mistakes_section_for_clean_game(self):
        state = _sample_state()
        state["move_annotations"] = state["move_annotations"][:6]
        assert "## Key Mistakes" not in export_review(state)


class TestMain:

    def test_summary_command(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["export", "summary", str(_SAMPLE)])
        assert main() == 0
        assert "alice vs bob" in capsys.readouterr().out

    def test_missing_file(self, monkeypatch, tmp_path, capsys):
        monkeypatch.setattr(sys, "argv", ["export", "summary", str(tmp_path / "none.json")])
        assert main() == 1

    def test_usage(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["export"])
        assert main() == 1
        assert "Usage" in capsys.readouterr().out
