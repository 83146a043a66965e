"""
Sample buffer container and decoder boundary.

The pipeline only ever sees a fully materialized mono float buffer.
Decoding and down-mixing happen here, before any numeric stage runs.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import librosa
import numpy as np

from audiomanifold.errors import InputError, UpstreamDecodeError


@dataclass(frozen=True)
class SampleBuffer:
    """Immutable mono waveform plus its sample rate."""

    samples: np.ndarray
    sample_rate: int
    duration: float

    @property
    def n_samples(self) -> int:
        """Total number of samples in the signal."""
        return len(self.samples)

    @classmethod
    def from_array(cls, y: np.ndarray, sr: Union[int, float]) -> "SampleBuffer":
        """
        Validate and down-mix an array into a buffer.

        Args:
            y: 1-D mono samples, or 2-D with the channel axis as the smaller
               one: ``(channels, samples)`` as returned by
               ``librosa.load(..., mono=False)`` or ``(samples, channels)``
               as written by soundfile.
            sr: Sample rate in Hz.

        Returns:
            SampleBuffer holding float64 mono samples.

        Raises:
            InputError: On an empty buffer, non-finite samples, a bad shape
                or a sample rate <= 0.
        """
        if sr is None or not np.isfinite(sr) or sr <= 0:
            raise InputError(f"Invalid sample rate: {sr!r}")

        y = np.asarray(y, dtype=np.float64)
        if y.ndim not in (1, 2):
            raise InputError(f"Expected 1-D or 2-D samples, got shape {y.shape}")
        if y.size == 0:
            raise InputError("Sample buffer is empty")
        if not np.all(np.isfinite(y)):
            raise InputError("Sample buffer contains NaN or infinite values")

        if y.ndim == 2 and y.shape[0] > y.shape[1]:
            # (samples, channels) layout: channels are the smaller axis
            y = y.T
        # Equal-weight channel average
        mono = librosa.to_mono(y) if y.ndim == 2 else y
        # Own copy, so freezing it never touches the caller's array
        mono = np.array(mono, dtype=np.float64, order="C", copy=True)
        mono.setflags(write=False)

        sr = int(sr)
        return cls(
            samples=mono,
            sample_rate=sr,
            duration=float(librosa.get_duration(y=mono, sr=sr)),
        )


class AudioLoader:
    """
    Thin wrapper around librosa's decoder.

    Anything the decoder raises is surfaced as :class:`UpstreamDecodeError`
    with the original exception chained, so callers can tell decode failures
    apart from malformed buffers.
    """

    def __init__(self, sr: Optional[int] = None):
        """
        Args:
            sr: Target sample rate. None keeps the file's native rate.
        """
        self.sr = sr

    def load_audio(self, audio_path: Union[str, Path]) -> tuple[np.ndarray, int]:
        """
        Decode an audio file without down-mixing.

        Returns:
            Tuple of (samples, sample_rate); samples are ``(channels, n)`` for
            multi-channel sources.
        """
        audio_path = Path(audio_path)
        if not audio_path.exists():
            raise UpstreamDecodeError(f"Audio file not found: {audio_path}")
        try:
            y, sr_out = librosa.load(audio_path, sr=self.sr, mono=False)
        except Exception as exc:
            raise UpstreamDecodeError(
                f"Failed to decode {audio_path.name}: {exc}"
            ) from exc
        return y, int(sr_out)

    def load(self, audio_path: Union[str, Path]) -> SampleBuffer:
        """Decode, down-mix and validate in one step."""
        y, sr = self.load_audio(audio_path)
        return SampleBuffer.from_array(y, sr)
