"""
Windowed magnitude spectrum via an iterative radix-2 FFT.

Performance notes:
  • SpectralCache keeps the Hann window, bit-reversal permutation and
    per-stage twiddle factors for one frame size and rebuilds them only
    when the size changes.
  • Butterflies are vectorized per stage: every block of one stage is
    processed in a single numpy operation.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np


@dataclass(frozen=True)
class SpectralTables:
    """Read-only lookup tables for one frame size."""

    frame_size: int
    window: np.ndarray       # (N,) Hann coefficients
    permutation: np.ndarray  # (N,) bit-reversed indices
    twiddles: tuple          # one complex array of length L/2 per stage


def _is_power_of_two(n: int) -> bool:
    return n >= 2 and (n & (n - 1)) == 0


def hann_window(size: int) -> np.ndarray:
    """Symmetric Hann window ``0.5 * (1 - cos(2*pi*n / (N-1)))``."""
    n = np.arange(size, dtype=np.float64)
    return 0.5 * (1.0 - np.cos(2.0 * np.pi * n / (size - 1)))


def bit_reversal_permutation(size: int) -> np.ndarray:
    bits = size.bit_length() - 1
    idx = np.arange(size)
    rev = np.zeros(size, dtype=np.int64)
    for b in range(bits):
        rev |= ((idx >> b) & 1) << (bits - 1 - b)
    return rev


def stage_twiddles(length: int) -> np.ndarray:
    """
    Twiddle factors ``exp(-2*pi*i*j/L)`` for ``j < L/2``.

    Generated by repeated rotation with the unit step, so only one
    cos/sin pair is evaluated per stage.
    """
    half = length // 2
    angle = -2.0 * np.pi / length
    step = complex(np.cos(angle), np.sin(angle))
    out = np.empty(half, dtype=np.complex128)
    current = 1.0 + 0.0j
    for j in range(half):
        out[j] = current
        current *= step
    return out


class SpectralCache:
    """
    Owned cache of spectral lookup tables.

    One instance per analysis run; tables are rebuilt when a different
    frame size is requested.
    """

    def __init__(self):
        self._tables = None

    def tables(self, frame_size: int) -> SpectralTables:
        if self._tables is not None and self._tables.frame_size == frame_size:
            return self._tables
        if not _is_power_of_two(frame_size):
            raise ValueError(f"frame_size must be a power of two, got {frame_size}")

        twiddles = []
        length = 2
        while length <= frame_size:
            twiddles.append(stage_twiddles(length))
            length <<= 1

        window = hann_window(frame_size)
        window.setflags(write=False)
        permutation = bit_reversal_permutation(frame_size)
        permutation.setflags(write=False)

        self._tables = SpectralTables(
            frame_size=frame_size,
            window=window,
            permutation=permutation,
            twiddles=tuple(twiddles),
        )
        return self._tables


class SpectralEngine:
    """
    Computes the Hann-windowed magnitude spectrum of analysis frames.

    Deterministic and reusable across frames; all state lives in the
    attached :class:`SpectralCache`.
    """

    def __init__(self, frame_size: int = 2048, cache: Optional[SpectralCache] = None):
        self.cache = cache or SpectralCache()
        self.frame_size = frame_size
        # Build eagerly so a bad size fails at construction
        self.cache.tables(frame_size)

    @property
    def n_bins(self) -> int:
        return self.frame_size // 2 + 1

    def transform(self, x: np.ndarray) -> np.ndarray:
        """
        In-place radix-2 Cooley-Tukey FFT of a complex array.

        Args:
            x: complex128 array whose length equals a cached frame size.

        Returns:
            The same array, now holding the DFT of its former contents.
        """
        n = len(x)
        tables = self.cache.tables(n)

        x[:] = x[tables.permutation]

        length = 2
        for w in tables.twiddles:
            half = length >> 1
            blocks = x.reshape(n // length, length)
            top = blocks[:, :half].copy()
            bottom = blocks[:, half:] * w
            blocks[:, :half] = top + bottom
            blocks[:, half:] = top - bottom
            length <<= 1
        return x

    def frame(self, samples: np.ndarray, start: int) -> np.ndarray:
        """Return the frame starting at *start*, zero-padded past the end."""
        out = np.zeros(self.frame_size, dtype=np.float64)
        end = min(start + self.frame_size, len(samples))
        if end > start:
            out[: end - start] = samples[start:end]
        return out

    def magnitude(self, samples: np.ndarray, start: int) -> np.ndarray:
        """
        Magnitude of bins ``0 .. N/2`` for the frame at *start*.

        Args:
            samples: Full mono sample buffer.
            start: Frame start offset in samples.

        Returns:
            Array of ``N/2 + 1`` non-negative magnitudes.
        """
        tables = self.cache.tables(self.frame_size)
        x = (self.frame(samples, start) * tables.window).astype(np.complex128)
        self.transform(x)
        return np.abs(x[: self.n_bins])
