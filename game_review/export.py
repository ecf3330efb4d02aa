#!/usr/bin/env python3
"""Export reviewed games as annotated PGN and markdown summaries."""

from __future__ import annotations

import json
import sys
from collections.abc import Sequence
from pathlib import Path

import chess
import chess.engine
import chess.pgn

from game_review.classifier import QUALITY_NAGS
from game_review.models import EvaluationSample, MoveAnalysis, PlayerInfo, Quality, Side
from game_review.positions import PositionCodec

DATA_DIR = Path(__file__).parent.parent / "data"
REVIEW_FILE = DATA_DIR / "current_review.json"

ANNOTATOR = "game-review"

_SUMMARY_QUALITIES = list(Quality)


def _load_json(filepath: Path) -> dict | list | None:
    """Load JSON file, returning None on error."""
    try:
        with open(filepath) as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        print(f"Warning: Could not read {filepath.name}, skipping.", file=sys.stderr)
        return None


def _pgn_score(sample: EvaluationSample) -> chess.engine.PovScore:
    if sample.is_mate and sample.mate_in:
        return chess.engine.PovScore(chess.engine.Mate(sample.mate_in), chess.WHITE)
    return chess.engine.PovScore(chess.engine.Cp(int(round(sample.score_cp))), chess.WHITE)


def move_comment(analysis: MoveAnalysis) -> str:
    """Comment text for one annotated move, e.g. 'Mistake (cpl 96, est. 1320)'."""
    return (
        f"{analysis.quality.value} "
        f"(cpl {analysis.cpl:.0f}, est. {analysis.estimated_rating:.0f})"
    )


def annotated_pgn(
    codec: PositionCodec,
    analyses: Sequence[MoveAnalysis],
    after_actual: Sequence[EvaluationSample],
    white: PlayerInfo,
    black: PlayerInfo,
    accuracy: dict[Side, float] | None = None,
    headers: dict[str, str] | None = None,
) -> str:
    """Serialise the game with per-move quality annotations.

    Every move of the original list is written; moves that have been
    analysed carry a quality NAG, an [%eval] tag and a comment. Moves the
    pipeline has not reached yet are written bare.

    Args:
        codec: Position stream of the game.
        analyses: MoveAnalysis records in ply order.
        after_actual: Evaluation series; index i + 1 belongs to ply i.
        white: White player info.
        black: Black player info.
        accuracy: Final accuracy per side, written as headers if given.
        headers: Extra PGN headers from the source game.

    Returns:
        PGN text.
    """
    game = chess.pgn.Game()
    for key, value in (headers or {}).items():
        if key not in ("FEN", "SetUp"):
            game.headers[key] = value
    game.setup(codec.initial_position())

    game.headers["White"] = white.username
    game.headers["Black"] = black.username
    if white.rating is not None:
        game.headers["WhiteElo"] = str(white.rating)
    if black.rating is not None:
        game.headers["BlackElo"] = str(black.rating)
    if accuracy is not None:
        game.headers["WhiteAccuracy"] = f"{accuracy[Side.WHITE]:.1f}"
        game.headers["BlackAccuracy"] = f"{accuracy[Side.BLACK]:.1f}"
    game.headers["Annotator"] = ANNOTATOR

    final = codec.final_position()
    if final.is_game_over():
        game.headers["Result"] = final.result()

    node: chess.pgn.GameNode = game
    for ply in codec.plies:
        node = node.add_variation(chess.Move.from_uci(ply.uci))
        if ply.index >= len(analyses):
            continue
        analysis = analyses[ply.index]
        nag = QUALITY_NAGS.get(analysis.quality)
        if nag is not None:
            node.nags.add(nag)
        node.comment = move_comment(analysis)
        if ply.index + 1 < len(after_actual):
            node.set_eval(_pgn_score(after_actual[ply.index + 1]))

    exporter = chess.pgn.StringExporter(headers=True, variations=False, comments=True)
    return game.accept(exporter)


# ---------------------------------------------------------------------------
# Markdown summary
# ---------------------------------------------------------------------------


def export_review(state: dict) -> str:
    """Render a review snapshot (ReviewState as a dict) as markdown."""
    if not state or not state.get("move_annotations"):
        return "No reviewed moves yet. Load a game and let the analysis run."

    white = state.get("white", {})
    black = state.get("black", {})
    lines = [
        f"# Game Review: {white.get('username', '?')} vs {black.get('username', '?')}",
        "",
    ]

    lines.append("## Summary")
    lines.append(
        f"- Analysis: {state.get('pipeline_state', 'idle')} "
        f"({state.get('progress_pct', 0):.0f}%)"
    )
    accuracy = state.get("accuracy", {})
    ratings = state.get("running_rating", {})
    for side, player in (("white", white), ("black", black)):
        known = player.get("rating")
        known_text = f" (rated {known})" if known else ""
        lines.append(
            f"- {side.title()} {player.get('username', '?')}{known_text}: "
            f"accuracy {accuracy.get(side, 0):.1f}%, "
            f"estimated {ratings.get(side, 0):.0f}"
        )
    lines.append("")

    counts = state.get("quality_counts", {})
    if counts.get("white") or counts.get("black"):
        lines.append("## Move Quality")
        lines.append("| Quality | White | Black |")
        lines.append("|---|---|---|")
        for quality in _SUMMARY_QUALITIES:
            w = counts.get("white", {}).get(quality.value, 0)
            b = counts.get("black", {}).get(quality.value, 0)
            lines.append(f"| {quality.value} | {w} | {b} |")
        lines.append("")

    phases = state.get("phase_quality", {})
    if phases.get("white") or phases.get("black"):
        lines.append("## Phases")
        for phase in ("opening", "middlegame", "endgame"):
            w = phases.get("white", {}).get(phase, "-")
            b = phases.get("black", {}).get(phase, "-")
            lines.append(f"- {phase.title()}: White {w} / Black {b}")
        lines.append("")

    bad = [
        m
        for m in state["move_annotations"]
        if m.get("quality") in (Quality.MISTAKE.value, Quality.BLUNDER.value)
    ]
    if bad:
        lines.append("## Key Mistakes")
        for m in bad[:10]:
            suggestion = m.get("best_move_san") or m.get("best_move_uci")
            best = f", best {suggestion}" if suggestion else ""
            lines.append(
                f"- {m.get('move', '?')} ({m.get('quality')}, -{m.get('cpl', 0):.0f}cp{best})"
            )
        lines.append("")

    return "\n".join(lines)


def main() -> int:
    if len(sys.argv) < 2 or sys.argv[1].lower() != "summary":
        print("Usage: python -m game_review.export summary [review.json]")
        return 1

    path = Path(sys.argv[2]) if len(sys.argv) > 2 else REVIEW_FILE
    if not path.exists():
        print(f"No review snapshot found at {path}")
        return 1

    state = _load_json(path)
    if not isinstance(state, dict):
        return 1
    print(export_review(state))
    return 0


if __name__ == "__main__":
    sys.exit(main())
