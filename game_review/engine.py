"""Client for the external position-evaluation service.

Talks to a stockfish.online v2 compatible HTTP API. Provides:
- Single-position evaluation at a fixed search depth
- Mate score normalisation into the centipawn scale
- Failure normalisation into EvaluationUnavailable
- CLI for quick position analysis
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Protocol

import chess
import httpx

from game_review.config import DEFAULT_API_URL, DEFAULT_DEPTH, DEFAULT_TIMEOUT_S, MATE_SCORE
from game_review.errors import EvaluationUnavailable
from game_review.models import EngineResult

logger = logging.getLogger(__name__)


class Evaluator(Protocol):
    """Anything that can evaluate a FEN at a given depth."""

    async def evaluate(self, fen: str, depth: int = DEFAULT_DEPTH) -> EngineResult:
        ...


def mate_to_cp(mate_in: int, side_to_move: chess.Color) -> int:
    """Fold a mate distance into the centipawn scale (white point of view).

    Positive mate_in means white mates, negative means black mates. Mate in
    1 maps to 9999 and mate in 5 to 9995, so shorter mates always rank
    higher and never collide with ordinary evaluations. Mate in 0 means the
    side to move is already checkmated.

    Args:
        mate_in: Signed moves to mate as reported by the engine.
        side_to_move: Side to move in the evaluated position.

    Returns:
        Normalised score in centipawns.
    """
    if mate_in == 0:
        return -MATE_SCORE if side_to_move == chess.WHITE else MATE_SCORE
    if mate_in > 0:
        return MATE_SCORE - mate_in
    return -(MATE_SCORE + mate_in)


def _parse_best_move(raw: object) -> str | None:
    """Extract the UCI move from 'bestmove e2e4 ponder e7e5'."""
    if not isinstance(raw, str):
        return None
    parts = raw.split()
    if not parts:
        return None
    if parts[0] == "bestmove":
        parts = parts[1:]
    if not parts or parts[0] in ("(none)", "none", "0000"):
        return None
    return parts[0]


def _terminal_result(board: chess.Board) -> EngineResult | None:
    """Score finished positions locally; the service rejects them."""
    if board.is_checkmate():
        return EngineResult(
            score_cp=mate_to_cp(0, board.turn), is_mate=True, mate_in=0
        )
    if board.is_stalemate() or board.is_insufficient_material():
        return EngineResult(score_cp=0.0)
    return None


class EvaluationClient:
    """Async client for the evaluation service."""

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        timeout: float = DEFAULT_TIMEOUT_S,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Create the client.

        Args:
            base_url: Endpoint accepting `fen` and `depth` query params.
            timeout: Per-request timeout in seconds.
            client: Optional pre-built httpx.AsyncClient (tests pass one
                with a MockTransport). Owned by the caller if given.
        """
        self._base_url = base_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> EvaluationClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def evaluate(self, fen: str, depth: int = DEFAULT_DEPTH) -> EngineResult:
        """Evaluate one position.

        Args:
            fen: Position to evaluate.
            depth: Engine search depth.

        Returns:
            EngineResult with a white-POV score in centipawns and the
            engine's best move in UCI, if any.

        Raises:
            EvaluationUnavailable: On transport errors, HTTP errors or a
                response without a usable evaluation. No numeric default
                is substituted here; callers choose the fallback.
        """
        try:
            board = chess.Board(fen)
        except ValueError as exc:
            raise EvaluationUnavailable(f"Invalid FEN {fen!r}: {exc}") from exc

        terminal = _terminal_result(board)
        if terminal is not None:
            return terminal

        logger.debug("Evaluating %s at depth %d", fen, depth)
        try:
            response = await self._client.get(
                self._base_url, params={"fen": fen, "depth": depth}
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise EvaluationUnavailable(f"Evaluation request failed: {exc}") from exc
        except ValueError as exc:
            raise EvaluationUnavailable("Evaluation response is not JSON") from exc

        return self._parse_response(data, board)

    def _parse_response(self, data: object, board: chess.Board) -> EngineResult:
        if not isinstance(data, dict):
            raise EvaluationUnavailable(f"Unexpected response payload: {data!r}")
        if not data.get("success", False):
            raise EvaluationUnavailable(
                f"Service reported failure: {data.get('data', 'no details')}"
            )

        best_move = _parse_best_move(data.get("bestmove"))
        mate = data.get("mate")
        if mate is not None:
            try:
                mate_in = int(mate)
            except (TypeError, ValueError) as exc:
                raise EvaluationUnavailable(f"Malformed mate value: {mate!r}") from exc
            return EngineResult(
                score_cp=float(mate_to_cp(mate_in, board.turn)),
                is_mate=True,
                mate_in=mate_in,
                best_move_uci=best_move,
            )

        evaluation = data.get("evaluation")
        if isinstance(evaluation, bool) or not isinstance(evaluation, (int, float)):
            raise EvaluationUnavailable(f"Malformed evaluation value: {evaluation!r}")

        # Service reports pawns
        return EngineResult(
            score_cp=round(float(evaluation) * 100, 2),
            best_move_uci=best_move,
        )


# ---------------------------------------------------------------------------
# CLI interface
# ---------------------------------------------------------------------------


async def _cli_analyze(fen: str, depth: int, base_url: str) -> int:
    """Evaluate a FEN position and print the result.

    Args:
        fen: FEN string of the position to analyze.
        depth: Search depth.
        base_url: Evaluation service endpoint.

    Returns:
        Process exit code.
    """
    async with EvaluationClient(base_url=base_url) as client:
        try:
            result = await client.evaluate(fen, depth)
        except EvaluationUnavailable as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1

    board = chess.Board(fen)
    print(f"Position: {fen}")
    print(f"Side to move: {'White' if board.turn else 'Black'}")
    if result.is_mate:
        print(f"  Score: Mate in {result.mate_in}")
    else:
        print(f"  Score: {result.score_cp / 100.0:+.2f}")
    if result.best_move_uci:
        move = chess.Move.from_uci(result.best_move_uci)
        best = board.san(move) if move in board.legal_moves else result.best_move_uci
        print(f"  Best move: {best}")
    return 0


def main() -> None:
    """CLI entry point for engine.py."""
    parser = argparse.ArgumentParser(
        description="Evaluation service client - analyze a position"
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    analyze_parser = subparsers.add_parser("analyze", help="Analyze a FEN position")
    analyze_parser.add_argument("fen", type=str, help="FEN string to analyze")
    analyze_parser.add_argument(
        "--depth", type=int, default=DEFAULT_DEPTH, help="Search depth"
    )
    analyze_parser.add_argument(
        "--url", type=str, default=DEFAULT_API_URL, help="Evaluation service URL"
    )

    args = parser.parse_args()

    if args.command == "analyze":
        sys.exit(asyncio.run(_cli_analyze(args.fen, args.depth, args.url)))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
