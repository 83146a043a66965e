"""
Temporal smoothing and beat detection.

Applies a forward exponential moving average to the continuous features,
derives normalized per-band onsets and marks adaptive-threshold beats on
the spectral flux curve.

The EMA is strictly sequential: frame i depends on the smoothed value of
frame i-1, so this stage always runs in a single in-order pass.
"""

from dataclasses import dataclass

import numpy as np

from audiomanifold.core.analyzer import ExtractedFeatures

ONSET_FLOOR = 0.001


@dataclass
class PolishedFeatures:
    """Smoothed features plus onsets and beat strengths."""

    # Smoothed continuous signals
    f0: np.ndarray             # (n,) NaN where unvoiced
    centroid: np.ndarray
    loudness: np.ndarray
    bandwidth: np.ndarray
    band_energy: np.ndarray    # (n, 3)

    # Derived
    band_onset: np.ndarray     # (n, 3) each column in [0,1]
    beat_strength: np.ndarray  # (n,) [0,1]

    # Passed through unchanged
    raw: ExtractedFeatures

    @property
    def n_frames(self) -> int:
        return self.raw.n_frames

    @property
    def times(self) -> np.ndarray:
        return self.raw.times


class SignalPolisher:
    """
    Smooths raw features and detects beats.

    Beat candidates are local maxima of the normalized flux that rise above
    a sliding-window adaptive threshold.
    """

    def __init__(
        self,
        alpha: float = 0.5,
        beat_window: int = 10,
        threshold_scale: float = 1.3,
        threshold_offset: float = 0.1,
        min_beat_frames: int = 10,
    ):
        """
        Initialize the polisher.

        Args:
            alpha: EMA weight of the current frame.
            beat_window: Maximum half-width of the local-mean window, in frames.
            threshold_scale: Multiplier on the local mean.
            threshold_offset: Constant added to the scaled local mean.
            min_beat_frames: Tracks shorter than this get no beats.
        """
        self.alpha = alpha
        self.beat_window = beat_window
        self.threshold_scale = threshold_scale
        self.threshold_offset = threshold_offset
        self.min_beat_frames = min_beat_frames

    def smooth(self, signal: np.ndarray) -> np.ndarray:
        """
        Forward EMA seeded by the first frame's raw value.

        Works along axis 0, so a ``(n, k)`` array smooths each column.
        """
        signal = np.asarray(signal, dtype=np.float64)
        output = np.empty_like(signal)
        if len(signal) == 0:
            return output

        current = signal[0]
        for i in range(len(signal)):
            current = self.alpha * signal[i] + (1.0 - self.alpha) * current
            output[i] = current
        return output

    def smooth_pitch(self, f0: np.ndarray) -> np.ndarray:
        """
        EMA over voiced frames only.

        Unvoiced frames (NaN) stay unvoiced and each voiced run is re-seeded
        by its own first frame.
        """
        output = np.full(len(f0), np.nan)
        current = None
        for i, value in enumerate(f0):
            if np.isnan(value):
                current = None
                continue
            if current is None:
                current = value
            current = self.alpha * value + (1.0 - self.alpha) * current
            output[i] = current
        return output

    @staticmethod
    def band_onsets(band_energy: np.ndarray) -> np.ndarray:
        """
        Positive frame-to-frame band energy rise, normalized per band.

        The first frame has no predecessor and gets 0. Each band is divided
        by its track-wide maximum onset (floored to avoid division by zero).
        """
        onsets = np.zeros_like(band_energy, dtype=np.float64)
        if len(band_energy) < 2:
            return onsets
        onsets[1:] = np.maximum(np.diff(band_energy, axis=0), 0.0)
        peak = np.maximum(onsets.max(axis=0), ONSET_FLOOR)
        return onsets / peak

    def detect_beats(self, flux: np.ndarray) -> np.ndarray:
        """
        Beat strength per frame in [0,1].

        Args:
            flux: Raw spectral flux per frame.

        Returns:
            Strengths renormalized so the strongest beat is 1; all zero when
            the track is too short or has no flux.
        """
        n = len(flux)
        strengths = np.zeros(n)
        if n < self.min_beat_frames:
            return strengths

        max_flux = float(np.max(flux))
        if max_flux == 0:
            return strengths
        norm_flux = np.asarray(flux, dtype=np.float64) / max_flux

        window = min(self.beat_window, n // 4)
        cumulative = np.concatenate([[0.0], np.cumsum(norm_flux)])
        idx = np.arange(n)
        lo = np.maximum(0, idx - window)
        hi = np.minimum(n, idx + window + 1)
        local_mean = (cumulative[hi] - cumulative[lo]) / (hi - lo)
        threshold = local_mean * self.threshold_scale + self.threshold_offset

        inner = norm_flux[1:-1]
        is_peak = (inner > norm_flux[:-2]) & (inner >= norm_flux[2:])
        above = inner > threshold[1:-1]
        beats = np.nonzero(is_peak & above)[0] + 1
        strengths[beats] = np.minimum(1.0, norm_flux[beats] * 1.5)

        peak = strengths.max()
        if peak > 0:
            strengths = strengths / peak
        return strengths

    # ------------------------------------------------------------------
    # Main polishing entry point
    # ------------------------------------------------------------------

    def polish(self, features: ExtractedFeatures) -> PolishedFeatures:
        """
        Apply smoothing, onset and beat processing to extracted features.

        Args:
            features: Raw features from FeatureAnalyzer.

        Returns:
            PolishedFeatures aligned to the same frames.
        """
        band_energy = self.smooth(features.band_energy)

        return PolishedFeatures(
            f0=self.smooth_pitch(features.f0),
            centroid=self.smooth(features.centroid),
            loudness=self.smooth(features.loudness),
            bandwidth=self.smooth(features.bandwidth),
            band_energy=band_energy,
            band_onset=self.band_onsets(band_energy),
            beat_strength=self.detect_beats(features.flux),
            raw=features,
        )
