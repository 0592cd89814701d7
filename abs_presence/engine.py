import logging
import time
from dataclasses import dataclass
from typing import Optional
from .config import Settings
from .state import LoopContext, PlaybackState, TimingInfo, TrackedBook

logger = logging.getLogger(__name__)

# Offsets closer than this are the same sample
OFFSET_EPSILON = 1e-6


@dataclass(frozen=True)
class TrackerOutput:
    is_playing: bool
    position: float
    first_sample: bool = False


def clamp_position(position: float, duration: float) -> float:
    position = max(0.0, position)
    if duration > 0:
        position = min(position, duration)
    return position


class PlaybackTracker:
    def __init__(self, settings: Settings):
        self.pause_threshold = settings.pause_threshold_seconds
        self.rate = settings.playback_rate

    def track_book(self, ctx: LoopContext, title: str) -> bool:
        """
        Returns True if the session switched to a different book. A switch discards
        all timing and extrapolation state.
        """
        if ctx.tracked_book is not None and ctx.tracked_book.title == title:
            return False

        if ctx.tracked_book is not None:
            logger.info(f"Session switched: {ctx.tracked_book.title!r} -> {title!r}")
        ctx.tracked_book = TrackedBook(title=title)
        ctx.playback = PlaybackState()
        ctx.timing = TimingInfo()
        ctx.chapters = None
        return True

    def infer(self, ctx: LoopContext, raw_offset: float, duration: float, now: Optional[float] = None) -> TrackerOutput:
        """
        Derives the play/pause verdict and the current position from one raw sample.
        """
        if now is None:
            now = time.time()
        playback = ctx.playback
        timing = ctx.timing

        # 1. A single sample cannot establish motion
        if not timing.is_set:
            timing.last_offset = raw_offset
            timing.last_fetch_at = now
            playback.is_playing = False
            playback.last_change_at = None
            playback.anchor_position = None
            playback.position = clamp_position(raw_offset, duration)
            return TrackerOutput(False, playback.position, first_sample=True)

        delta = abs(raw_offset - timing.last_offset)

        # 2. Offset moved: playing, restart extrapolation from ground truth
        if delta > OFFSET_EPSILON:
            if not playback.is_playing:
                logger.info(f"Playback started at {raw_offset:.1f}s")
            timing.last_offset = raw_offset
            timing.last_fetch_at = now
            playback.is_playing = True
            playback.last_change_at = now
            playback.anchor_position = raw_offset
            playback.position = clamp_position(raw_offset, duration)
            return TrackerOutput(True, playback.position)

        # 3. Offset unchanged for long enough: paused
        quiet_for = now - timing.last_fetch_at
        if quiet_for >= self.pause_threshold:
            if playback.is_playing:
                logger.info(f"Playback paused at {raw_offset:.1f}s (no change for {quiet_for:.1f}s)")
            timing.last_offset = raw_offset
            timing.last_fetch_at = now
            playback.is_playing = False
            playback.last_change_at = None
            playback.anchor_position = None
            playback.position = clamp_position(raw_offset, duration)
            return TrackerOutput(False, playback.position)

        # 4. Too soon to tell: keep the previous verdict
        if not playback.is_playing or playback.last_change_at is None:
            return TrackerOutput(False, clamp_position(raw_offset, duration))

        elapsed = max(0.0, now - playback.last_change_at)
        position = clamp_position(playback.anchor_position + elapsed * self.rate, duration)
        if playback.position is not None:
            position = max(position, playback.position)
        playback.position = position
        return TrackerOutput(True, position)
