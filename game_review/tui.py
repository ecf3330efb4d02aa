"""Terminal review panel for the game review pipeline.

Renders a Rich-based review panel (move list with quality marks,
evaluation bar, accuracy, estimated ratings, captured material) that
auto-updates by watching data/current_review.json via watchdog at ~4Hz.
Supports --sample flag for standalone testing without MCP server.
"""

from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path

from rich.console import Console, Group
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from game_review.material import captured_value, to_glyphs

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_DATA_DIR = _PROJECT_ROOT / "data"
_CURRENT_REVIEW = _DATA_DIR / "current_review.json"
_SAMPLE_REVIEW = _DATA_DIR / "sample_review.json"

_QUALITY_STYLES = {
    "Book": "grey62",
    "Brilliant": "bold cyan",
    "Best": "green",
    "Excellent": "green",
    "Good": "white",
    "Inaccuracy": "yellow",
    "Mistake": "dark_orange",
    "Blunder": "bold red",
}

_SPARK_CHARS = "\u2581\u2582\u2583\u2584\u2585\u2586\u2587\u2588"
_EVAL_RANGE = 5.0


def _load_review_state(path: Path) -> dict | None:
    """Load a ReviewState dict from a JSON file.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed dict or None if file missing/corrupt.
    """
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError):
        return None
    return data if isinstance(data, dict) else None


def render_review(state: dict) -> Layout:
    """Render the full review layout from a ReviewState dict.

    Args:
        state: ReviewState dict as written by the MCP server.

    Returns:
        Rich Layout with move list and sidebar.
    """
    layout = Layout()
    layout.split_row(
        Layout(name="moves", ratio=2),
        Layout(name="sidebar", ratio=1),
    )
    layout["moves"].update(_render_moves_panel(state))
    layout["sidebar"].update(_render_sidebar(state))
    return layout


def _move_cell(annotation: dict | None, san: str, current: bool) -> Text:
    if annotation is None:
        text = Text(san, style="dim")
    else:
        quality = annotation.get("quality", "")
        text = Text(san + annotation.get("symbol", ""), style=_QUALITY_STYLES.get(quality, ""))
    if current:
        text.stylize("reverse")
    return text


def _render_moves_panel(state: dict) -> Panel:
    """Render the move list, two plies per row, as a Rich Panel.

    Args:
        state: ReviewState dict.

    Returns:
        Panel containing the move table.
    """
    moves = state.get("move_list", [])
    annotations = {a["ply"]: a for a in state.get("move_annotations", []) if "ply" in a}
    cursor = state.get("cursor", -1)

    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("#", justify="right", style="bold")
    table.add_column("White", min_width=10)
    table.add_column("", justify="right", style="dim")
    table.add_column("Black", min_width=10)
    table.add_column("", justify="right", style="dim")

    for i in range(0, len(moves), 2):
        row: list[Text | str] = [f"{i // 2 + 1}."]
        for ply in (i, i + 1):
            if ply >= len(moves):
                row.extend(["", ""])
                continue
            annotation = annotations.get(ply)
            row.append(_move_cell(annotation, moves[ply], ply == cursor))
            row.append(f"{annotation['cpl']:.0f}" if annotation else "")
        table.add_row(*row)

    white = state.get("white", {})
    black = state.get("black", {})
    title = f"{white.get('username', '?')} vs {black.get('username', '?')}"
    return Panel(table, title=title, border_style="blue")


def _eval_bar(pawns: float, width: int = 20) -> str:
    # Map eval to 0-1 over -5..+5
    normalized = max(0.0, min(1.0, (pawns + _EVAL_RANGE) / (2 * _EVAL_RANGE)))
    filled = int(normalized * width)
    return "\u2588" * filled + "\u2591" * (width - filled)


def _sparkline(values: list[float]) -> str:
    if not values:
        return ""
    top = len(_SPARK_CHARS) - 1
    chars = []
    for v in values:
        normalized = (max(-_EVAL_RANGE, min(_EVAL_RANGE, v)) + _EVAL_RANGE) / (2 * _EVAL_RANGE)
        chars.append(_SPARK_CHARS[round(normalized * top)])
    return "".join(chars)


def _render_sidebar(state: dict) -> Panel:
    """Render the sidebar with evaluation, statistics and progress.

    Args:
        state: ReviewState dict.

    Returns:
        Panel containing sidebar info.
    """
    parts: list[str] = []

    cursor = state.get("cursor", -1)
    ply_count = state.get("ply_count", 0)
    last = state.get("last_move_san")
    position = "Start" if cursor < 0 else f"Ply {cursor + 1}/{ply_count}: {last}"
    parts.append(f"[bold]{position}[/bold]")
    if state.get("game_phase"):
        parts.append(f"Phase: {state['game_phase']}")
    if state.get("is_playing"):
        parts.append("[italic]Playing...[/italic]")
    parts.append("")

    # Eval
    pawns = state.get("current_evaluation")
    if pawns is not None:
        parts.append(f"[bold]Eval:[/bold] {pawns:+.2f}  {state.get('evaluation_text', '')}")
        parts.append(f"  [{_eval_bar(pawns)}]")
    else:
        parts.append(f"[bold]Eval:[/bold] {state.get('evaluation_text', '-')}")
    graph = state.get("evaluation_graph", [])
    if graph:
        parts.append(f"  {_sparkline(graph)}")
    parts.append("")

    # Current move
    current = state.get("current_analysis")
    if current:
        style = _QUALITY_STYLES.get(current.get("quality", ""), "white")
        parts.append(f"[bold]{current.get('move', '')}[/bold]")
        parts.append(
            f"  [{style}]{current.get('quality')}[/{style}] "
            f"cpl {current.get('cpl', 0):.0f}, est. {current.get('estimated_rating', 0)}"
        )
        best = current.get("best_move_san") or current.get("best_move_uci")
        if best:
            parts.append(f"  Best: {best}")
        parts.append("")

    # Captured
    captured = state.get("captured", {})
    parts.append("[bold]Captured:[/bold]")
    by_white = captured.get("white", [])
    by_black = captured.get("black", [])
    lead = captured_value(by_white) - captured_value(by_black)
    white_lead = f" (+{lead})" if lead > 0 else ""
    black_lead = f" (+{-lead})" if lead < 0 else ""
    parts.append(f"  White: {to_glyphs(by_white) or '-'}{white_lead}")
    parts.append(f"  Black: {to_glyphs(by_black) or '-'}{black_lead}")
    parts.append("")

    # Accuracy and ratings
    accuracy = state.get("accuracy", {})
    ratings = state.get("running_rating", {})
    parts.append("[bold]Accuracy / est. rating:[/bold]")
    for side in ("white", "black"):
        parts.append(
            f"  {side.title()}: {accuracy.get(side, 0.0):.1f}% / {ratings.get(side, 0):.0f}"
        )

    # Progress
    parts.append("")
    pipeline_state = state.get("pipeline_state", "idle")
    parts.append(f"Analysis: {pipeline_state} ({state.get('progress_pct', 0.0):.0f}%)")

    return Panel(
        Group(Text.from_markup("\n".join(parts)), _render_quality_table(state)),
        title="Review",
        border_style="green",
    )


def _render_quality_table(state: dict) -> Table:
    counts = state.get("quality_counts", {})
    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("")
    table.add_column("W", justify="right")
    table.add_column("B", justify="right")
    for quality, style in _QUALITY_STYLES.items():
        w = counts.get("white", {}).get(quality, 0)
        b = counts.get("black", {}).get(quality, 0)
        if w or b:
            table.add_row(Text(quality, style=style), str(w), str(b))
    return table


def _render_waiting() -> Panel:
    """Render a waiting message when no game is loaded.

    Returns:
        Panel with waiting message.
    """
    return Panel(
        Text("Waiting for game...\n\nLoad a game via MCP server to see the review.",
             justify="center"),
        title="Game Review",
        border_style="dim",
    )


def _watch_loop(console: Console) -> None:
    """Watch current_review.json and auto-update display at ~4Hz.

    Args:
        console: Rich Console instance.
    """
    from watchdog.events import FileSystemEventHandler
    from watchdog.observers import Observer

    last_state: dict | None = None
    state_changed = True

    class _Handler(FileSystemEventHandler):
        def on_modified(self, event):
            nonlocal state_changed
            if str(event.src_path).endswith("current_review.json"):
                state_changed = True

        def on_moved(self, event):
            # The server writes a temp file and renames it into place
            nonlocal state_changed
            if str(event.dest_path).endswith("current_review.json"):
                state_changed = True

    observer = Observer()
    _DATA_DIR.mkdir(parents=True, exist_ok=True)
    observer.schedule(_Handler(), str(_DATA_DIR), recursive=False)
    observer.start()

    try:
        with Live(console=console, refresh_per_second=4) as live:
            while True:
                if state_changed:
                    state = _load_review_state(_CURRENT_REVIEW)
                    if state is not None:
                        last_state = state
                        live.update(render_review(state))
                    elif last_state is None:
                        live.update(_render_waiting())
                    state_changed = False
                time.sleep(0.25)
    except KeyboardInterrupt:
        pass
    finally:
        observer.stop()
        observer.join()


def main() -> None:
    """CLI entry point for tui.py."""
    parser = argparse.ArgumentParser(description="Game Review Terminal UI")
    parser.add_argument(
        "--sample", action="store_true",
        help="Render sample review and exit (no watch loop)"
    )
    args = parser.parse_args()

    console = Console()

    if args.sample:
        state = _load_review_state(_SAMPLE_REVIEW)
        if state is None:
            console.print("[red]Sample review file not found at data/sample_review.json[/red]")
            sys.exit(1)
        console.print(render_review(state))
        return

    _watch_loop(console)


if __name__ == "__main__":
    main()
