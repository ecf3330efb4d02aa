"""MCP server for the game review pipeline.

Exposes game review tools to an MCP client via FastMCP. One game is
under review at a time; loading another discards the previous one and
its game_id stops resolving. Review state is synced to
data/current_review.json after every change for TUI consumption.
"""

from __future__ import annotations

import json
import os
import sys
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path

# Add project root and mcp-server dir to path for imports
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_MCP_SERVER_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(_PROJECT_ROOT))
sys.path.insert(0, str(_MCP_SERVER_DIR))

from mcp.server.fastmcp import FastMCP

from game_review.config import ReviewConfig
from game_review.engine import EvaluationClient
from game_review.errors import InvalidMoveSequence
from game_review.export import export_review
from game_review.models import GameSource, PlayerInfo
from game_review.review import ReviewSession, annotation_dict, source_from_pgn

from response_schemas import (  # noqa: E402
    minify_move_analysis,
    minify_progress,
    minify_review_state,
)

mcp = FastMCP("game-review")

_DATA_DIR = _PROJECT_ROOT / "data"

# Created on first use so the HTTP client binds to the server's event loop
_session: ReviewSession | None = None


def _get_session() -> ReviewSession:
    global _session
    if _session is None:
        config = ReviewConfig.from_env()
        client = EvaluationClient(base_url=config.api_url, timeout=config.timeout_s)
        _session = ReviewSession(client, config)
    return _session


def _lookup(game_id: str) -> ReviewSession | None:
    """Return the session if game_id names the game under review."""
    session = _get_session()
    if not session.loaded or session.game_id != game_id:
        return None
    return session


def _sync_review_json(state: dict) -> None:
    """Write review state to data/current_review.json atomically.

    Uses temp file + os.replace() for atomic write.

    Args:
        state: ReviewState dict to persist.
    """
    _DATA_DIR.mkdir(parents=True, exist_ok=True)
    target = _DATA_DIR / "current_review.json"
    tmp = _DATA_DIR / "current_review.tmp"
    tmp.write_text(
        json.dumps(state, indent=2, default=str, ensure_ascii=False),
        encoding="utf-8",
    )
    os.replace(tmp, target)


def _sync(session: ReviewSession) -> dict:
    state = asdict(session.state())
    _sync_review_json(state)
    return state


def _start_analysis(session: ReviewSession) -> None:
    """Start analysis and sync the final state once the run ends."""
    task = session.start_analysis()
    task.add_done_callback(lambda _task: _sync(session))


def _save_pgn(game_id: str, pgn: str) -> Path:
    """Write an annotated PGN atomically to data/games/."""
    games_dir = _DATA_DIR / "games"
    games_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    filename = f"review_{timestamp}_{game_id[:8]}.pgn"
    target = games_dir / filename
    tmp = games_dir / f"{filename}.tmp"
    tmp.write_text(pgn + "\n", encoding="utf-8")
    os.replace(tmp, target)
    return target


def _not_found(game_id: str) -> dict:
    return {"error": f"Game not found: {game_id}"}


# ---------------------------------------------------------------------------
# Loading and analysis
# ---------------------------------------------------------------------------


@mcp.tool()
async def load_game(
    pgn: str | None = None,
    moves: list[str] | None = None,
    starting_fen: str | None = None,
    white: str = "?",
    black: str = "?",
    white_rating: int | None = None,
    black_rating: int | None = None,
    analyze: bool = True,
) -> dict:
    """Load a finished game for review, replacing the current one.

    Args:
        pgn: Game as PGN text. Player names and ratings are read from
            its headers.
        moves: Game as a list of SAN moves (used when pgn is not given).
        starting_fen: Optional custom starting position for `moves`.
        white: White player's name (moves only).
        black: Black player's name (moves only).
        white_rating: White's known rating, if any (moves only).
        black_rating: Black's known rating, if any (moves only).
        analyze: Start the engine analysis right away. Default True.

    Returns:
        ReviewState dict at the initial position.
    """
    if pgn:
        try:
            source = source_from_pgn(pgn)
        except InvalidMoveSequence as exc:
            return {"error": f"Invalid game: {exc}"}
    elif moves is not None:
        source = GameSource(
            moves_san=list(moves),
            starting_fen=starting_fen,
            white=PlayerInfo(username=white, rating=white_rating),
            black=PlayerInfo(username=black, rating=black_rating),
        )
    else:
        return {"error": "Provide either pgn or moves"}

    session = _get_session()
    try:
        await session.load(source)
    except InvalidMoveSequence as exc:
        return {"error": f"Invalid game: {exc}"}

    # Keep the TUI snapshot current as plies complete and autoplay steps
    session.pipeline.add_listener(lambda _ply: _sync(session))

    async def _on_cursor(_cursor: int) -> None:
        _sync(session)

    session.controller.add_listener(_on_cursor)

    if analyze:
        _start_analysis(session)
    return minify_review_state(_sync(session))


@mcp.tool()
async def analysis_progress(game_id: str) -> dict:
    """Get the evaluation progress of the game under review.

    Args:
        game_id: ID returned by load_game.

    Returns:
        Dict with state (idle/running/complete/failed) and progress_pct.
    """
    session = _lookup(game_id)
    if session is None:
        return _not_found(game_id)
    return minify_progress(session.analysis_progress())


@mcp.tool()
async def start_analysis(game_id: str) -> dict:
    """Start the engine analysis if load_game was called with analyze=False.

    Args:
        game_id: ID returned by load_game.

    Returns:
        Analysis progress dict.
    """
    session = _lookup(game_id)
    if session is None:
        return _not_found(game_id)
    _start_analysis(session)
    return minify_progress(session.analysis_progress())


@mcp.tool()
async def get_review_state(game_id: str) -> dict:
    """Get the review state at the current cursor.

    Args:
        game_id: ID returned by load_game.

    Returns:
        ReviewState dict: position, evaluation, captured material,
        current move analysis, accuracy and running ratings.
    """
    session = _lookup(game_id)
    if session is None:
        return _not_found(game_id)
    return minify_review_state(_sync(session))


@mcp.tool()
async def get_move_analysis(game_id: str, ply: int) -> dict:
    """Get the quality assessment of one ply.

    Args:
        game_id: ID returned by load_game.
        ply: 0-based ply index (0 = White's first move).

    Returns:
        Move analysis dict (move, quality, cpl, estimated_rating).
    """
    session = _lookup(game_id)
    if session is None:
        return _not_found(game_id)
    if not 0 <= ply < session.codec.ply_count:
        return {"error": f"Ply out of range: {ply}"}

    analysis = session.aggregator.analysis_at(ply)
    if analysis is None:
        return {"error": f"Ply {ply} not analysed yet"}

    return minify_move_analysis(annotation_dict(analysis))


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------


async def _navigate(game_id: str, action: str, *args) -> dict:
    session = _lookup(game_id)
    if session is None:
        return _not_found(game_id)
    controller = session.controller
    moved = await getattr(controller, action)(*args)
    result = minify_review_state(_sync(session))
    result["moved"] = moved
    return result


@mcp.tool()
async def next_move(game_id: str) -> dict:
    """Step forward one ply. Stops autoplay.

    Args:
        game_id: ID returned by load_game.

    Returns:
        ReviewState dict plus 'moved' (False if the step was rejected).
    """
    return await _navigate(game_id, "next")


@mcp.tool()
async def prev_move(game_id: str) -> dict:
    """Step back one ply. Stops autoplay.

    Args:
        game_id: ID returned by load_game.

    Returns:
        ReviewState dict plus 'moved'.
    """
    return await _navigate(game_id, "prev")


@mcp.tool()
async def first_move(game_id: str) -> dict:
    """Jump to the initial position.

    Args:
        game_id: ID returned by load_game.

    Returns:
        ReviewState dict plus 'moved'.
    """
    return await _navigate(game_id, "first")


@mcp.tool()
async def last_move(game_id: str) -> dict:
    """Jump to the final position.

    Args:
        game_id: ID returned by load_game.

    Returns:
        ReviewState dict plus 'moved'.
    """
    return await _navigate(game_id, "last")


@mcp.tool()
async def go_to_move(game_id: str, ply: int) -> dict:
    """Jump to the position after a given ply.

    Args:
        game_id: ID returned by load_game.
        ply: 0-based ply index, or -1 for the initial position.

    Returns:
        ReviewState dict plus 'moved' (False if out of range or already
        there).
    """
    return await _navigate(game_id, "go_to", ply)


@mcp.tool()
async def play_through(game_id: str) -> dict:
    """Start autoplay from the current position.

    Args:
        game_id: ID returned by load_game.

    Returns:
        ReviewState dict plus 'started'.
    """
    session = _lookup(game_id)
    if session is None:
        return _not_found(game_id)
    started = await session.controller.play_through()
    result = minify_review_state(_sync(session))
    result["started"] = started
    return result


@mcp.tool()
async def stop_play_through(game_id: str) -> dict:
    """Stop autoplay.

    Args:
        game_id: ID returned by load_game.

    Returns:
        ReviewState dict plus 'stopped'.
    """
    session = _lookup(game_id)
    if session is None:
        return _not_found(game_id)
    stopped = await session.controller.stop()
    result = minify_review_state(_sync(session))
    result["stopped"] = stopped
    return result


@mcp.tool()
async def set_playback_speed(game_id: str, speed: str) -> dict:
    """Set the autoplay speed.

    Args:
        game_id: ID returned by load_game.
        speed: 'slow', 'normal', 'fast', 'very_fast' or milliseconds.

    Returns:
        Dict with the new interval_ms.
    """
    session = _lookup(game_id)
    if session is None:
        return _not_found(game_id)
    value: str | int = int(speed) if speed.strip().isdigit() else speed
    try:
        interval = session.controller.set_playback_speed(value)
    except ValueError as exc:
        return {"error": str(exc)}
    return {"interval_ms": interval}


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


@mcp.tool()
async def download_annotated_game(game_id: str, save: bool = False) -> dict:
    """Get the game as PGN annotated with move quality.

    Each analysed move carries a NAG (!!, !, ?!, ?, ??), an [%eval] tag and
    a comment 'Quality (cpl N, est. R)'.

    Args:
        game_id: ID returned by load_game.
        save: Also write the PGN to data/games/. Default False.

    Returns:
        Dict with 'pgn' and, when saved, 'file'.
    """
    session = _lookup(game_id)
    if session is None:
        return _not_found(game_id)
    pgn = session.download_annotated_game()
    result = {"pgn": pgn}
    if save:
        result["file"] = str(_save_pgn(game_id, pgn))
    return result


@mcp.tool()
async def review_summary(game_id: str) -> dict:
    """Get a markdown summary of the review so far.

    Args:
        game_id: ID returned by load_game.

    Returns:
        Dict with 'markdown'.
    """
    session = _lookup(game_id)
    if session is None:
        return _not_found(game_id)
    return {"markdown": export_review(asdict(session.state()))}


if __name__ == "__main__":
    mcp.run()
