"""Response schemas and minification for MCP tool responses.

Minifies MCP tool return values to reduce LLM context token waste.
data/current_review.json (TUI sync) is NOT affected, only MCP return values are.

PGN string format for move_list uses standard chess notation
(1.e4 e5 2.Nf3 ...) which is natural for the LLM agent to read.
"""

from __future__ import annotations

import os


# ---------------------------------------------------------------------------
# Minification functions
# ---------------------------------------------------------------------------


def minify_review_state(state: dict) -> dict:
    """Minify a ReviewState dict for MCP response.

    Compacts move_list to a PGN string, captured material to piece
    strings and player info to one line. Drops the per-move annotation
    list, quality counts, phase summary and graph (all TUI-only).

    Args:
        state: Full ReviewState dict (from dataclasses.asdict).

    Returns:
        Minified dict with reduced token footprint.
    """
    result = {}

    for key in (
        "game_id", "cursor", "ply_count", "fen", "game_phase", "last_move_san",
        "current_evaluation", "evaluation_text", "pipeline_state",
        "progress_pct", "is_playing", "accuracy", "running_rating",
    ):
        if key in state:
            result[key] = state[key]

    move_list = state.get("move_list", [])
    if isinstance(move_list, list):
        result["move_list"] = _moves_to_pgn_string(move_list)
    else:
        result["move_list"] = move_list

    captured = state.get("captured") or {}
    result["captured"] = {
        "white": "".join(captured.get("white", [])),
        "black": "".join(captured.get("black", [])),
    }

    result["players"] = (
        f"{_player_text(state.get('white'))} vs {_player_text(state.get('black'))}"
    )

    current = state.get("current_analysis")
    result["current_analysis"] = (
        minify_move_analysis(current) if isinstance(current, dict) else None
    )

    # Removed fields: move_annotations, quality_counts, phase_quality,
    # evaluation_graph, white, black

    return result


def minify_move_analysis(analysis: dict) -> dict:
    """Minify a per-move annotation dict for MCP response.

    Drops the duplicated bare SAN and side (both readable from 'move')
    and the display symbol.

    Args:
        analysis: Annotation dict as produced by annotation_dict().

    Returns:
        Minified dict.
    """
    result = {}
    for key in ("ply", "move", "quality", "cpl", "estimated_rating"):
        if key in analysis:
            result[key] = analysis[key]

    # Only include best move when known
    for key in ("best_move_uci", "best_move_san"):
        if analysis.get(key) is not None:
            result[key] = analysis[key]

    return result


def minify_progress(progress: dict) -> dict:
    """Minify an analysis_progress dict: drop the redundant ply counts."""
    return {
        "state": progress.get("state"),
        "progress_pct": progress.get("progress_pct"),
    }


def _player_text(player: dict | None) -> str:
    if not isinstance(player, dict):
        return "?"
    name = player.get("username") or "?"
    rating = player.get("rating")
    return f"{name} ({rating})" if rating is not None else name


# ---------------------------------------------------------------------------
# Helper: move list to PGN string
# ---------------------------------------------------------------------------


def _moves_to_pgn_string(moves: list[str]) -> str:
    """Convert a list of SAN moves to a PGN move string.

    E.g., ['e4', 'e5', 'Nf3', 'Nc6'] -> '1.e4 e5 2.Nf3 Nc6'

    Args:
        moves: List of SAN move strings.

    Returns:
        PGN-formatted move string.
    """
    parts = []
    for i, move in enumerate(moves):
        if i % 2 == 0:
            parts.append(f"{i // 2 + 1}.{move}")
        else:
            parts.append(move)
    return " ".join(parts)


# ---------------------------------------------------------------------------
# Validation schemas (dict-based)
# ---------------------------------------------------------------------------

REVIEW_STATE_SCHEMA = {
    "game_id": str,
    "cursor": int,
    "ply_count": int,
    "fen": str,
    "game_phase": str,
    "last_move_san": (str, type(None)),
    "current_evaluation": (int, float, type(None)),
    "evaluation_text": str,
    "pipeline_state": str,
    "progress_pct": (int, float),
    "is_playing": bool,
    "accuracy": dict,
    "running_rating": dict,
    "move_list": str,
    "captured": dict,
    "players": str,
    "current_analysis": (dict, type(None)),
}

MOVE_ANALYSIS_SCHEMA = {
    "ply": int,
    "move": str,
    "quality": str,
    "cpl": (int, float),
    "estimated_rating": int,
}

PROGRESS_SCHEMA = {
    "state": str,
    "progress_pct": (int, float),
}

ERROR_SCHEMA = {
    "error": str,
}


def validate_response(response: dict, schema: dict) -> list[str]:
    """Validate a response dict against a schema.

    Only runs when CHESS_REVIEW_VALIDATE=1 env var is set.

    Args:
        response: Response dict to validate.
        schema: Dict mapping key names to expected types (or tuple of types).

    Returns:
        List of validation error strings (empty = valid).
    """
    if os.environ.get("CHESS_REVIEW_VALIDATE") != "1":
        return []

    if not isinstance(response, dict):
        return [f"Response is not a dict: {type(response).__name__}"]

    errors = []
    for key, expected_types in schema.items():
        if key not in response:
            errors.append(f"Missing key: {key}")
            continue

        value = response[key]
        types = expected_types if isinstance(expected_types, tuple) else (expected_types,)
        # bool is an int subclass; only accept it where bool is named
        if isinstance(value, bool) and bool not in types:
            errors.append(f"Key '{key}': unexpected bool")
        elif not isinstance(value, types):
            type_names = ", ".join(t.__name__ for t in types)
            errors.append(
                f"Key '{key}': expected ({type_names}), got {type(value).__name__}"
            )

    return errors
