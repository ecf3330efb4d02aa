"""Shared test fixtures with dual-mode support (scripted vs real service).

Usage:
    pytest tests/                  # Fast, scripted evaluator (no network)
    pytest tests/ --e2e            # Real evaluation service for e2e tests

Fixtures:
    fake_evaluator     - Scripted evaluator returning canned EngineResults.
    fake_clock         - Manual clock plus a sleep that advances it.
    clean_data_dir     - Backs up and restores data files around each test.
    enable_validation  - Sets CHESS_REVIEW_VALIDATE=1 for schema validation.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Iterable
from pathlib import Path

import pytest

from game_review.errors import EvaluationUnavailable
from game_review.models import EngineResult

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_DATA_DIR = _PROJECT_ROOT / "data"


# ---------------------------------------------------------------------------
# CLI option and marker registration
# ---------------------------------------------------------------------------


def pytest_addoption(parser):
    """Register --e2e CLI flag for real evaluation service tests."""
    parser.addoption(
        "--e2e",
        action="store_true",
        default=False,
        help="Run against the real evaluation service (network).",
    )


def pytest_configure(config):
    """Register the e2e marker."""
    config.addinivalue_line(
        "markers", "e2e: mark test as end-to-end (requires network access)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip e2e tests unless --e2e is passed."""
    if config.getoption("--e2e"):
        return
    skip = pytest.mark.skip(reason="needs --e2e")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip)


# ---------------------------------------------------------------------------
# Scripted evaluator
# ---------------------------------------------------------------------------


class FakeEvaluator:
    """Evaluator that answers from tables instead of the network.

    Args:
        scores: FEN -> white-POV centipawns. Unknown FENs get `default`.
        best_moves: FEN -> UCI best move. Unknown FENs get None.
        fail_calls: 0-based call numbers that raise EvaluationUnavailable.
        fail_fens: FENs that always raise EvaluationUnavailable.
        default: Score for FENs missing from `scores`.
    """

    def __init__(
        self,
        scores: dict[str, float] | None = None,
        best_moves: dict[str, str] | None = None,
        fail_calls: Iterable[int] = (),
        fail_fens: Iterable[str] = (),
        default: float = 0.0,
    ) -> None:
        self.scores = dict(scores or {})
        self.best_moves = dict(best_moves or {})
        self.fail_calls = set(fail_calls)
        self.fail_fens = set(fail_fens)
        self.default = default
        self.calls: list[tuple[str, int]] = []

    async def evaluate(self, fen: str, depth: int = 13) -> EngineResult:
        number = len(self.calls)
        self.calls.append((fen, depth))
        if number in self.fail_calls or fen in self.fail_fens:
            raise EvaluationUnavailable(f"scripted failure for call {number}")
        return EngineResult(
            score_cp=self.scores.get(fen, self.default),
            best_move_uci=self.best_moves.get(fen),
        )


@pytest.fixture()
def fake_evaluator():
    """A FakeEvaluator that scores every position 0.0."""
    return FakeEvaluator()


async def no_sleep(_seconds: float) -> None:
    """Sleep replacement that returns immediately."""


# ---------------------------------------------------------------------------
# Manual clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock under test control.

    `sleep` advances the clock instead of waiting and yields to the event
    loop once so other tasks can run.
    """

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture()
def fake_clock():
    return FakeClock()


# ---------------------------------------------------------------------------
# Clean data directory fixture
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_data_dir():
    """Back up and restore data/current_review.json around each test.

    Also removes PGN files the test wrote to data/games/.
    """
    review_path = _DATA_DIR / "current_review.json"
    games_dir = _DATA_DIR / "games"

    orig_review = None
    if review_path.exists():
        orig_review = review_path.read_text(encoding="utf-8")
    pre_pgn = set(games_dir.glob("*.pgn")) if games_dir.exists() else set()

    yield

    if games_dir.exists():
        for f in games_dir.glob("*.pgn"):
            if f not in pre_pgn:
                f.unlink(missing_ok=True)

    if orig_review is not None:
        review_path.write_text(orig_review, encoding="utf-8")
    elif review_path.exists():
        review_path.unlink()


# ---------------------------------------------------------------------------
# Schema validation fixture
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def enable_validation():
    """Set CHESS_REVIEW_VALIDATE=1 for the test session.

    Restores the original env var value after the test.
    """
    original = os.environ.get("CHESS_REVIEW_VALIDATE")
    os.environ["CHESS_REVIEW_VALIDATE"] = "1"
    yield
    if original is None:
        os.environ.pop("CHESS_REVIEW_VALIDATE", None)
    else:
        os.environ["CHESS_REVIEW_VALIDATE"] = original
