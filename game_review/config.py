"""Configuration constants for the game review pipeline.

Module constants hold the fixed tuning values. ReviewConfig bundles the
values an operator may override through CHESS_REVIEW_* environment
variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

# Evaluation service (stockfish.online v2 compatible)
DEFAULT_API_URL = "https://stockfish.online/api/s/v2.php"
DEFAULT_DEPTH = 13
DEFAULT_REQUEST_DELAY_S = 0.150
DEFAULT_TIMEOUT_S = 10.0

# Mate scores are folded into centipawns at this magnitude
MATE_SCORE = 10000

# Running rating estimate
DEFAULT_RATING = 1500
RATING_SMOOTHING = 0.1

# Replay navigation
NAVIGATION_THROTTLE_S = 0.100
DEFAULT_PLAYBACK_MS = 1500
PLAYBACK_SPEEDS_MS: dict[str, int] = {
    "slow": 3000,
    "normal": 1500,
    "fast": 800,
    "very_fast": 400,
}

# Book window: plies before this index with low loss count as theory
BOOK_PLY_LIMIT = 10
BOOK_MAX_CPL = 25


@dataclass(frozen=True)
class BrilliantThresholds:
    """Heuristic bounds for a Brilliant move, in centipawns.

    Pawn equivalents: prior advantage below 1.5, swing of at least 1.0.
    Uncalibrated.
    """

    max_cpl: float = 5
    max_prior_advantage: float = 150
    min_swing: float = 100


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class ReviewConfig:
    """Settings for one review session."""

    api_url: str = DEFAULT_API_URL
    depth: int = DEFAULT_DEPTH
    request_delay_s: float = DEFAULT_REQUEST_DELAY_S
    timeout_s: float = DEFAULT_TIMEOUT_S
    playback_ms: int = DEFAULT_PLAYBACK_MS
    throttle_s: float = NAVIGATION_THROTTLE_S
    default_rating: int = DEFAULT_RATING
    smoothing: float = RATING_SMOOTHING
    brilliant: BrilliantThresholds = field(default_factory=BrilliantThresholds)

    @classmethod
    def from_env(cls) -> ReviewConfig:
        """Build a config from CHESS_REVIEW_* environment variables.

        Recognised variables: CHESS_REVIEW_API_URL, CHESS_REVIEW_DEPTH,
        CHESS_REVIEW_DELAY_MS, CHESS_REVIEW_TIMEOUT_S and
        CHESS_REVIEW_PLAYBACK_MS. Unset variables keep their defaults.

        Returns:
            A ReviewConfig instance.

        Raises:
            ValueError: If a numeric variable cannot be parsed or is
                out of range.
        """
        depth = _env_int("CHESS_REVIEW_DEPTH", DEFAULT_DEPTH)
        if not 1 <= depth <= 30:
            raise ValueError(f"CHESS_REVIEW_DEPTH out of range: {depth}")
        delay_ms = _env_int("CHESS_REVIEW_DELAY_MS", round(DEFAULT_REQUEST_DELAY_S * 1000))
        if delay_ms < 0:
            raise ValueError(f"CHESS_REVIEW_DELAY_MS must be >= 0: {delay_ms}")
        return cls(
            api_url=os.environ.get("CHESS_REVIEW_API_URL") or DEFAULT_API_URL,
            depth=depth,
            request_delay_s=delay_ms / 1000.0,
            timeout_s=_env_float("CHESS_REVIEW_TIMEOUT_S", DEFAULT_TIMEOUT_S),
            playback_ms=_env_int("CHESS_REVIEW_PLAYBACK_MS", DEFAULT_PLAYBACK_MS),
        )
