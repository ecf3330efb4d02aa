"""Shared data models for the game review pipeline.

ReviewState and MoveAnalysis are the shared contract between the
review session, the MCP server and the TUI.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import chess


class Side(str, Enum):
    """Colour of the side that made a move."""

    WHITE = "white"
    BLACK = "black"

    @classmethod
    def from_color(cls, color: chess.Color) -> Side:
        return cls.WHITE if color == chess.WHITE else cls.BLACK

    @property
    def color(self) -> chess.Color:
        return chess.WHITE if self is Side.WHITE else chess.BLACK


class Quality(str, Enum):
    """Move quality label, best to worst after the opening."""

    BOOK = "Book"
    BRILLIANT = "Brilliant"
    BEST = "Best"
    EXCELLENT = "Excellent"
    GOOD = "Good"
    INACCURACY = "Inaccuracy"
    MISTAKE = "Mistake"
    BLUNDER = "Blunder"


class PipelineState(str, Enum):
    """Lifecycle of one evaluation pipeline run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class Ply:
    """One half-move of the game."""

    index: int
    san: str
    uci: str
    side: Side
    from_square: str
    to_square: str
    promotion: str | None = None

    @property
    def move_number(self) -> int:
        """Full-move number, ceil((index + 1) / 2)."""
        return self.index // 2 + 1


@dataclass(frozen=True)
class EngineResult:
    """Normalised answer from the evaluation service for one position."""

    score_cp: float
    is_mate: bool = False
    mate_in: int | None = None
    best_move_uci: str | None = None


@dataclass(frozen=True)
class EvaluationSample:
    """Evaluation of one position in the game, white point of view."""

    ply: int
    score_cp: float
    is_mate: bool = False
    mate_in: int | None = None

    @property
    def pawns(self) -> float:
        return self.score_cp / 100.0

    def relabel(self, ply: int) -> EvaluationSample:
        """Return a copy of this sample standing in for another index."""
        return EvaluationSample(
            ply=ply, score_cp=self.score_cp, is_mate=self.is_mate, mate_in=self.mate_in
        )


@dataclass
class RunningRatingState:
    """Exponentially smoothed rating estimate for one side."""

    side: Side
    initial: float
    rating: float
    moves_counted: int = 0


@dataclass
class PlayerInfo:
    """Name and optional known rating of one player."""

    username: str = "?"
    rating: int | None = None


@dataclass
class GameSource:
    """A finished game as supplied by the game source.

    Exactly one of moves_san or pgn is expected; a game with neither
    is just its starting position.
    """

    moves_san: list[str] = field(default_factory=list)
    pgn: str | None = None
    starting_fen: str | None = None
    white: PlayerInfo = field(default_factory=PlayerInfo)
    black: PlayerInfo = field(default_factory=PlayerInfo)
    url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)

@dataclass(frozen=True)
class MoveAnalysis:
    """Quality assessment of a single ply. Evaluations are in pawns."""

    ply: int
    move_number: int
    side: Side
    san: str
    cpl: float
    quality: Quality
    eval_before: float
    eval_after: float
    eval_best: float
    estimated_rating: float
    best_move_uci: str | None = None
    best_move_san: str | None = None

    @property
    def move_text(self) -> str:
        """Numbered move text, e.g. '12.Nf3' or '12...Nc6'."""
        dots = "." if self.side is Side.WHITE else "..."
        return f"{self.move_number}{dots}{self.san}"


@dataclass
class CapturedMaterial:
    """Pieces captured by each side, as piece symbols."""

    white: list[str] = field(default_factory=list)
    black: list[str] = field(default_factory=list)


@dataclass
class ReviewState:
    """Everything the presentation layer reads for the current cursor."""

    game_id: str
    cursor: int
    ply_count: int
    fen: str
    game_phase: str = "opening"
    move_list: list[str] = field(default_factory=list)
    last_move_san: str | None = None
    current_evaluation: float | None = None
    evaluation_text: str = ""
    captured: CapturedMaterial = field(default_factory=CapturedMaterial)
    current_analysis: dict | None = None
    pipeline_state: str = PipelineState.IDLE.value
    progress_pct: float = 0.0
    is_playing: bool = False
    white: dict = field(default_factory=lambda: {"username": "?", "rating": None})
    black: dict = field(default_factory=lambda: {"username": "?", "rating": None})
    running_rating: dict = field(default_factory=lambda: {"white": 0.0, "black": 0.0})
    accuracy: dict = field(default_factory=lambda: {"white": 0.0, "black": 0.0})
    quality_counts: dict = field(default_factory=lambda: {"white": {}, "black": {}})
    phase_quality: dict = field(default_factory=lambda: {"white": {}, "black": {}})
    evaluation_graph: list[float] = field(default_factory=list)
    move_annotations: list[dict] = field(default_factory=list)
