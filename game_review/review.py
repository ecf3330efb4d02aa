#!/usr/bin/env python3
"""Review session for one loaded game, plus the command line reviewer.

A ReviewSession owns everything derived from the current game: the
position stream, the evaluation pipeline task, the MoveAnalysis records
and the replay cursor. Loading another game cancels the running analysis
and discards all of it.
"""

from __future__ import annotations

import argparse
import asyncio
import io
import logging
import sys
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import asdict, replace
from pathlib import Path

import chess.pgn
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.table import Table

from game_review.aggregator import (
    RatingAccuracyAggregator,
    detect_game_phase,
    evaluation_graph,
)
from game_review.classifier import QUALITY_SYMBOLS, MoveClassifier, describe_evaluation
from game_review.config import ReviewConfig
from game_review.engine import EvaluationClient, Evaluator
from game_review.errors import BestMoveUnparsable, InvalidMoveSequence
from game_review.export import annotated_pgn, export_review
from game_review.models import (
    GameSource,
    MoveAnalysis,
    PipelineState,
    PlayerInfo,
    ReviewState,
    Side,
)
from game_review.pipeline import EvaluationPipeline
from game_review.positions import PositionCodec
from game_review.replay import ReplayController

logger = logging.getLogger(__name__)


def _parse_rating(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


def source_from_pgn(pgn_text: str) -> GameSource:
    """Read players and headers from PGN text.

    The move list itself stays in `pgn`; PositionCodec.from_pgn replays it.

    Raises:
        InvalidMoveSequence: If the text holds no PGN game.
    """
    headers = chess.pgn.read_headers(io.StringIO(pgn_text))
    if headers is None:
        raise InvalidMoveSequence("No PGN game found")
    return GameSource(
        pgn=pgn_text,
        white=PlayerInfo(
            username=headers.get("White", "?"),
            rating=_parse_rating(headers.get("WhiteElo")),
        ),
        black=PlayerInfo(
            username=headers.get("Black", "?"),
            rating=_parse_rating(headers.get("BlackElo")),
        ),
        url=headers.get("Site") or None,
        headers=dict(headers),
    )


def annotation_dict(analysis: MoveAnalysis) -> dict:
    """Flat per-move record for the presentation layer."""
    return {
        "ply": analysis.ply,
        "move": analysis.move_text,
        "san": analysis.san,
        "side": analysis.side.value,
        "quality": analysis.quality.value,
        "symbol": QUALITY_SYMBOLS.get(analysis.quality, ""),
        "cpl": round(analysis.cpl, 1),
        "estimated_rating": round(analysis.estimated_rating),
        "best_move_uci": analysis.best_move_uci,
        "best_move_san": analysis.best_move_san,
    }


class ReviewSession:
    """Holds the one game currently under review."""

    def __init__(
        self,
        evaluator: Evaluator,
        config: ReviewConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Create an empty session.

        Args:
            evaluator: Evaluation service client shared by every game.
            config: Tuning values; defaults to ReviewConfig().
            clock: Monotonic clock for navigation throttling.
            sleep: Awaitable sleep for request delays and autoplay.
        """
        self._evaluator = evaluator
        self._config = config or ReviewConfig()
        self._clock = clock
        self._sleep = sleep

        self._generation = 0
        self.game_id: str | None = None
        self._source: GameSource | None = None
        self._codec: PositionCodec | None = None
        self._pipeline: EvaluationPipeline | None = None
        self._aggregator: RatingAccuracyAggregator | None = None
        self._controller: ReplayController | None = None
        self._task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def loaded(self) -> bool:
        return self._codec is not None

    def _require(self) -> None:
        if self._codec is None:
            raise RuntimeError("No game loaded")

    @property
    def source(self) -> GameSource:
        self._require()
        return self._source

    @property
    def codec(self) -> PositionCodec:
        self._require()
        return self._codec

    @property
    def pipeline(self) -> EvaluationPipeline:
        self._require()
        return self._pipeline

    @property
    def aggregator(self) -> RatingAccuracyAggregator:
        self._require()
        return self._aggregator

    @property
    def controller(self) -> ReplayController:
        self._require()
        return self._controller

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load(self, source: GameSource) -> str:
        """Replace the current game with a new one.

        The new move list is validated before anything is discarded, so a
        rejected game leaves the previous review untouched.

        Args:
            source: Game to review.

        Returns:
            The new game id.

        Raises:
            InvalidMoveSequence: If the game cannot be replayed.
        """
        if source.pgn and not source.moves_san:
            codec = PositionCodec.from_pgn(source.pgn)
        else:
            codec = PositionCodec(source.moves_san, starting_fen=source.starting_fen)

        await self.close()
        self._generation += 1
        generation = self._generation

        cfg = self._config
        self._source = source
        self._codec = codec
        self._pipeline = EvaluationPipeline(
            codec,
            self._evaluator,
            depth=cfg.depth,
            delay_s=cfg.request_delay_s,
            sleep=self._sleep,
        )
        self._aggregator = RatingAccuracyAggregator(
            white_rating=source.white.rating,
            black_rating=source.black.rating,
            default_rating=cfg.default_rating,
            smoothing=cfg.smoothing,
            classifier=MoveClassifier(cfg.brilliant),
        )
        self._controller = ReplayController(
            codec,
            self._pipeline,
            throttle_s=cfg.throttle_s,
            playback_ms=cfg.playback_ms,
            clock=self._clock,
            sleep=self._sleep,
        )
        self._pipeline.add_listener(lambda ply: self._on_ply_complete(generation, ply))
        self.game_id = str(uuid.uuid4())
        logger.info(
            "Loaded game %s: %s vs %s, %d plies",
            self.game_id,
            source.white.username,
            source.black.username,
            codec.ply_count,
        )
        return self.game_id

    async def close(self) -> None:
        """Cancel the running analysis and autoplay of the current game."""
        if self._controller is not None:
            await self._controller.stop()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except InvalidMoveSequence:
                logger.debug("Discarded failed analysis run")

    def start_analysis(self) -> asyncio.Task:
        """Start the evaluation pipeline for the loaded game.

        Returns:
            The pipeline task; the running one if analysis already started.
        """
        self._require()
        if self._task is not None:
            return self._task
        self._task = asyncio.create_task(self._pipeline.run())
        self._task.add_done_callback(self._log_task_result)
        return self._task

    async def wait_complete(self) -> PipelineState:
        """Start analysis if needed and wait for it to finish."""
        task = self.start_analysis()
        pipeline = self._pipeline
        try:
            await asyncio.shield(task)
        except InvalidMoveSequence:
            pass
        return pipeline.state

    @staticmethod
    def _log_task_result(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Analysis task failed: %s", exc)

    def _on_ply_complete(self, generation: int, ply_index: int) -> None:
        if generation != self._generation:
            logger.debug("Dropping ply %d from a discarded run", ply_index)
            return
        pipeline = self._pipeline
        best_uci = pipeline.best_moves[ply_index]
        self._aggregator.fold(
            self._codec.ply(ply_index),
            pipeline.actual_at(ply_index),
            pipeline.actual_at(ply_index + 1),
            pipeline.after_best[ply_index + 1],
            best_uci,
            self._best_san(ply_index, best_uci),
        )
        self._controller.refresh()

    def _best_san(self, ply_index: int, best_uci: str | None) -> str | None:
        if best_uci is None:
            return None
        try:
            return self._codec.engine_san(ply_index, best_uci)
        except BestMoveUnparsable:
            return None

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    def analysis_progress(self) -> dict:
        self._require()
        pipeline = self._pipeline
        return {
            "state": pipeline.state.value,
            "completed_plies": pipeline.completed_plies,
            "ply_count": pipeline.ply_count,
            "progress_pct": round(pipeline.progress * 100, 1),
        }

    def accuracy(self) -> dict[Side, float]:
        self._require()
        return {side: self._aggregator.accuracy(side) for side in Side}

    def state(self) -> ReviewState:
        """Snapshot of everything shown for the current cursor."""
        self._require()
        controller = self._controller
        aggregator = self._aggregator
        pipeline = self._pipeline

        evaluation = controller.current_evaluation
        pawns = evaluation.pawns if evaluation is not None else None
        if evaluation is None:
            evaluation_text = "Not evaluated yet"
        elif evaluation.is_mate and evaluation.mate_in:
            winner = "White" if evaluation.mate_in > 0 else "Black"
            evaluation_text = f"{winner} mates in {abs(evaluation.mate_in)}"
        else:
            evaluation_text = describe_evaluation(pawns)

        current = aggregator.analysis_at(controller.cursor)
        last_move = controller.last_move

        return ReviewState(
            game_id=self.game_id,
            cursor=controller.cursor,
            ply_count=controller.ply_count,
            fen=controller.fen(),
            game_phase=detect_game_phase(controller.position()),
            move_list=[ply.san for ply in self._codec.plies],
            last_move_san=last_move.san if last_move else None,
            current_evaluation=pawns,
            evaluation_text=evaluation_text,
            captured=controller.captured,
            current_analysis=annotation_dict(current) if current else None,
            pipeline_state=pipeline.state.value,
            progress_pct=round(pipeline.progress * 100, 1),
            is_playing=controller.is_playing,
            white=asdict(self._source.white),
            black=asdict(self._source.black),
            running_rating={s.value: round(aggregator.rating(s), 1) for s in Side},
            accuracy={s.value: aggregator.accuracy(s) for s in Side},
            quality_counts={s.value: aggregator.quality_counts(s) for s in Side},
            phase_quality={s.value: aggregator.phase_quality(s) for s in Side},
            evaluation_graph=evaluation_graph(pipeline.after_actual),
            move_annotations=[annotation_dict(a) for a in aggregator.analyses],
        )

    def download_annotated_game(self) -> str:
        """PGN of the loaded game with the annotations computed so far.

        Accuracy headers are only written once the analysis is complete.
        """
        self._require()
        complete = self._pipeline.state is PipelineState.COMPLETE
        return annotated_pgn(
            self._codec,
            self._aggregator.analyses,
            self._pipeline.after_actual,
            self._source.white,
            self._source.black,
            accuracy=self.accuracy() if complete else None,
            headers=self._source.headers,
        )


# ---------------------------------------------------------------------------
# CLI interface
# ---------------------------------------------------------------------------


def _summary_table(session: ReviewSession) -> Table:
    aggregator = session.aggregator
    source = session.source
    table = Table(title="Game Review", show_header=True)
    table.add_column("", style="bold")
    table.add_column(f"White: {source.white.username}", justify="right")
    table.add_column(f"Black: {source.black.username}", justify="right")

    table.add_row(
        "Accuracy",
        f"{aggregator.accuracy(Side.WHITE):.1f}%",
        f"{aggregator.accuracy(Side.BLACK):.1f}%",
    )
    table.add_row(
        "Avg CPL",
        f"{aggregator.average_cpl(Side.WHITE):.1f}",
        f"{aggregator.average_cpl(Side.BLACK):.1f}",
    )
    table.add_row(
        "Est. rating",
        f"{aggregator.rating(Side.WHITE):.0f}",
        f"{aggregator.rating(Side.BLACK):.0f}",
    )
    white_counts = aggregator.quality_counts(Side.WHITE)
    black_counts = aggregator.quality_counts(Side.BLACK)
    for quality, count in white_counts.items():
        table.add_row(quality, str(count), str(black_counts[quality]))
    return table


async def _cli_review(args: argparse.Namespace, console: Console) -> int:
    try:
        text = Path(args.pgn).read_text(encoding="utf-8")
    except OSError as exc:
        console.print(f"[red]Error:[/red] cannot read {args.pgn}: {exc}")
        return 1

    config = ReviewConfig.from_env()
    if args.depth is not None:
        config = replace(config, depth=args.depth)

    async with EvaluationClient(base_url=config.api_url, timeout=config.timeout_s) as client:
        session = ReviewSession(client, config)
        try:
            source = source_from_pgn(text)
            await session.load(source)
        except InvalidMoveSequence as exc:
            console.print(f"[red]Invalid game:[/red] {exc}")
            return 1

        with Progress(
            TextColumn("[bold]Analysing"),
            BarColumn(),
            TaskProgressColumn(),
            TextColumn("{task.completed}/{task.total} plies"),
            console=console,
        ) as progress:
            bar = progress.add_task("analysis", total=session.codec.ply_count)
            session.pipeline.add_listener(lambda ply: progress.update(bar, completed=ply + 1))
            state = await session.wait_complete()

    if state is not PipelineState.COMPLETE:
        console.print(f"[red]Analysis ended in state {state.value}[/red]")
        return 1

    console.print(_summary_table(session))
    if args.markdown:
        console.print(export_review(asdict(session.state())))

    if args.output:
        Path(args.output).write_text(session.download_annotated_game(), encoding="utf-8")
        console.print(f"Annotated PGN written to {args.output}")
    return 0


def main() -> None:
    """CLI entry point for review.py."""
    parser = argparse.ArgumentParser(description="Review a finished chess game")
    parser.add_argument("pgn", type=str, help="PGN file of the game")
    parser.add_argument("--output", "-o", type=str, help="Write the annotated PGN here")
    parser.add_argument("--depth", type=int, default=None, help="Search depth")
    parser.add_argument("--markdown", action="store_true", help="Print a markdown summary")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    console = Console()
    sys.exit(asyncio.run(_cli_review(args, console)))


if __name__ == "__main__":
    main()
