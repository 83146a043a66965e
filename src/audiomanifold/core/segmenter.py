"""
Silence-based phrase segmentation.

Splits the track into phrases separated by silence runs, driven by the
smoothed per-frame loudness. Falls back to a handful of equal-length
segments when no phrase survives.
"""

import logging
import math
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class Phrase:
    """A contiguous ``[start, end)`` span and the frames inside it."""

    index: int
    start: float
    end: float
    frame_indices: np.ndarray  # int, ascending

    @property
    def duration(self) -> float:
        return self.end - self.start

    @property
    def label(self) -> str:
        return f"Phrase {self.index + 1}"


class PhraseSegmenter:
    """
    Groups frames into silence-delimited phrases.

    A frame is silent when its loudness is below ``silence_ratio`` of the
    track peak. A silence run longer than ``min_silence`` closes the open
    phrase; phrases shorter than ``min_phrase`` are discarded as noise.
    """

    def __init__(
        self,
        silence_ratio: float = 0.1,
        min_silence: float = 0.2,
        min_phrase: float = 0.3,
        max_fallback_segments: int = 4,
        fallback_segment_seconds: float = 5.0,
    ):
        self.silence_ratio = silence_ratio
        self.min_silence = min_silence
        self.min_phrase = min_phrase
        self.max_fallback_segments = max_fallback_segments
        self.fallback_segment_seconds = fallback_segment_seconds

    def _spans(self, times: np.ndarray, loudness: np.ndarray, duration: float) -> list:
        """Scan frames in time order and return ``(start, end)`` spans."""
        threshold = float(np.max(loudness)) * self.silence_ratio

        spans = []
        phrase_start = 0.0
        has_sound = False
        in_silence = False
        silence_start = 0.0

        for t, level in zip(times, loudness):
            t = float(t)
            silent = level < threshold

            if silent and not in_silence:
                in_silence = True
                silence_start = t
            elif not silent and in_silence:
                if t - silence_start > self.min_silence:
                    if has_sound:
                        if silence_start - phrase_start >= self.min_phrase:
                            spans.append((phrase_start, silence_start))
                        else:
                            logger.debug(
                                "Dropping %.3fs phrase at %.3fs as noise",
                                silence_start - phrase_start, phrase_start,
                            )
                    phrase_start = t
                    has_sound = False
                in_silence = False

            if not silent:
                has_sound = True

        if has_sound and duration - phrase_start >= self.min_phrase:
            spans.append((phrase_start, duration))
        return spans

    def _fallback_spans(self, duration: float) -> list:
        n_segments = min(
            self.max_fallback_segments,
            max(1, math.ceil(duration / self.fallback_segment_seconds)),
        )
        length = duration / n_segments
        return [
            (i * length, duration if i == n_segments - 1 else (i + 1) * length)
            for i in range(n_segments)
        ]

    def segment(
        self,
        times: np.ndarray,
        loudness: np.ndarray,
        duration: float,
    ) -> list[Phrase]:
        """
        Segment a track into phrases.

        Args:
            times: Frame start times in seconds, non-decreasing.
            loudness: Per-frame (smoothed) loudness.
            duration: Track duration in seconds.

        Returns:
            Phrases in time order; each holds the indices of the frames whose
            time lies in its ``[start, end)`` range.
        """
        times = np.asarray(times, dtype=np.float64)
        if len(times) == 0:
            return []

        spans = self._spans(times, np.asarray(loudness), duration)
        if not spans:
            logger.warning(
                "No phrase survived silence segmentation; using fixed-length segments"
            )
            spans = self._fallback_spans(duration)

        phrases = []
        for start, end in spans:
            lo = int(np.searchsorted(times, start, side="left"))
            hi = int(np.searchsorted(times, end, side="left"))
            if hi <= lo:
                continue
            phrases.append(
                Phrase(
                    index=len(phrases),
                    start=start,
                    end=end,
                    frame_indices=np.arange(lo, hi),
                )
            )
        return phrases
