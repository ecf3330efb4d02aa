"""Replay cursor state machine.

The cursor runs from -1 (initial position) to N-1 (after the last ply).
Transitions are single-flight and throttled; rejected transitions leave
the cursor, the displayed evaluation and the captured material untouched.
Autoplay steps forward on a fixed interval in its own asyncio task.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable

import chess

from game_review.config import DEFAULT_PLAYBACK_MS, NAVIGATION_THROTTLE_S, PLAYBACK_SPEEDS_MS
from game_review.errors import NavigationRejected
from game_review.material import captured_since
from game_review.models import CapturedMaterial, EvaluationSample, Ply
from game_review.pipeline import EvaluationPipeline
from game_review.positions import PositionCodec

logger = logging.getLogger(__name__)

CursorListener = Callable[[int], Awaitable[None]]


class ReplayController:
    """Cursor over one game's positions with navigation and autoplay."""

    def __init__(
        self,
        codec: PositionCodec,
        pipeline: EvaluationPipeline,
        throttle_s: float = NAVIGATION_THROTTLE_S,
        playback_ms: int = DEFAULT_PLAYBACK_MS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Place the cursor on the initial position.

        Args:
            codec: Position stream of the game.
            pipeline: Evaluation pipeline whose after_actual series is shown.
            throttle_s: Minimum time between accepted transitions.
            playback_ms: Autoplay step interval in milliseconds.
            clock: Monotonic clock in seconds, replaceable in tests.
            sleep: Awaitable sleep used by autoplay, replaceable in tests.
        """
        self._codec = codec
        self._pipeline = pipeline
        self._throttle_s = throttle_s
        self._playback_ms = playback_ms
        self._clock = clock
        self._sleep = sleep

        self._cursor = -1
        self._navigating = False
        self._last_transition: float | None = None
        self._autoplay_task: asyncio.Task | None = None
        self._listeners: list[CursorListener] = []

        self._initial = codec.initial_position()
        self._evaluation: EvaluationSample | None = None
        self._captured = CapturedMaterial()
        self._refresh()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def ply_count(self) -> int:
        return self._codec.ply_count

    @property
    def is_playing(self) -> bool:
        return self._autoplay_task is not None and not self._autoplay_task.done()

    @property
    def playback_ms(self) -> int:
        return self._playback_ms

    @property
    def current_evaluation(self) -> EvaluationSample | None:
        """Evaluation shown for the cursor, None before anything is known."""
        return self._evaluation

    @property
    def captured(self) -> CapturedMaterial:
        return CapturedMaterial(
            white=list(self._captured.white), black=list(self._captured.black)
        )

    @property
    def last_move(self) -> Ply | None:
        """Ply that led to the cursor position, None at the start."""
        if self._cursor < 0:
            return None
        return self._codec.ply(self._cursor)

    def position(self) -> chess.Board:
        return self._codec.position_at(self._cursor)

    def fen(self) -> str:
        return self._codec.fen_at(self._cursor)

    def add_listener(self, listener: CursorListener) -> None:
        """Register a coroutine awaited with the new cursor after each move."""
        self._listeners.append(listener)

    def refresh(self) -> None:
        """Recompute the displayed values without moving the cursor.

        Called when new evaluations arrive for the current position.
        """
        self._refresh()

    def _refresh(self) -> None:
        self._evaluation = (
            self._pipeline.actual_at(self._cursor + 1) or self._pipeline.actual_at(0)
        )
        self._captured = captured_since(self._initial, self.position())

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def go_to(self, index: int) -> bool:
        """Seek to a ply index. Returns True if the cursor moved."""
        return await self._manual(index)

    async def next(self) -> bool:
        return await self._manual(self._cursor + 1)

    async def prev(self) -> bool:
        return await self._manual(self._cursor - 1)

    async def first(self) -> bool:
        return await self._manual(-1)

    async def last(self) -> bool:
        return await self._manual(self.ply_count - 1)

    async def _manual(self, index: int) -> bool:
        # A transition in flight rejects the request and leaves autoplay alone
        if self._navigating:
            logger.debug("Navigation to %d rejected: another transition is settling", index)
            return False
        await self._stop_autoplay()
        return await self._attempt(index)

    async def _attempt(self, index: int) -> bool:
        try:
            await self._transition(index)
        except NavigationRejected as exc:
            logger.debug("Navigation to %d rejected: %s", index, exc)
            return False
        return True

    async def _transition(self, index: int) -> None:
        if self._navigating:
            raise NavigationRejected("another transition is settling")
        if not -1 <= index <= self.ply_count - 1:
            raise NavigationRejected(f"index {index} outside [-1, {self.ply_count - 1}]")
        if index == self._cursor:
            raise NavigationRejected(f"already at {index}")
        now = self._clock()
        if self._last_transition is not None and now - self._last_transition < self._throttle_s:
            raise NavigationRejected("throttled")

        self._navigating = True
        self._last_transition = now
        try:
            self._cursor = index
            self._refresh()
            for listener in list(self._listeners):
                await listener(self._cursor)
        finally:
            self._navigating = False

    # ------------------------------------------------------------------
    # Autoplay
    # ------------------------------------------------------------------

    def set_playback_speed(self, speed: str | int) -> int:
        """Set the autoplay interval from a preset name or milliseconds.

        Args:
            speed: One of 'slow', 'normal', 'fast', 'very_fast', or a
                positive interval in milliseconds.

        Returns:
            The new interval in milliseconds.

        Raises:
            ValueError: If the preset is unknown or the interval is not
                positive.
        """
        if isinstance(speed, str):
            key = speed.strip().lower().replace(" ", "_")
            if key not in PLAYBACK_SPEEDS_MS:
                raise ValueError(
                    f"Unknown playback speed {speed!r}, expected one of "
                    f"{', '.join(PLAYBACK_SPEEDS_MS)}"
                )
            interval = PLAYBACK_SPEEDS_MS[key]
        else:
            interval = int(speed)
            if interval <= 0:
                raise ValueError(f"Playback interval must be positive, got {speed}")
        self._playback_ms = interval
        return interval

    async def play_through(self) -> bool:
        """Start stepping forward every playback interval.

        Returns:
            False if autoplay is already running or the cursor is on the
            last ply.
        """
        if self.is_playing:
            logger.debug("Autoplay already running")
            return False
        if self._cursor >= self.ply_count - 1:
            logger.debug("Autoplay rejected at end of game")
            return False
        self._autoplay_task = asyncio.create_task(self._autoplay())
        return True

    async def stop(self) -> bool:
        """Stop autoplay. Returns False if it was not running."""
        if not self.is_playing:
            return False
        await self._stop_autoplay()
        return True

    async def _stop_autoplay(self) -> None:
        task = self._autoplay_task
        if task is None or task is asyncio.current_task():
            return
        self._autoplay_task = None
        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _autoplay(self) -> None:
        logger.debug("Autoplay started at %d every %d ms", self._cursor, self._playback_ms)
        try:
            while self._cursor < self.ply_count - 1:
                await self._sleep(self._playback_ms / 1000.0)
                await self._attempt(self._cursor + 1)
        finally:
            if self._autoplay_task is asyncio.current_task():
                self._autoplay_task = None
            logger.debug("Autoplay stopped at %d", self._cursor)
