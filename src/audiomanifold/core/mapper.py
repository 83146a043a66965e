"""
Visual attribute mapping.

Turns per-frame features plus embedded positions into renderable points:
HSV color (pitch or brightness hue, tonal saturation, loudness value),
size and opacity. Hue follows log2(f0) across the observed voiced range and
falls back to the spectral centroid for unvoiced frames.
"""

import colorsys
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from audiomanifold.core.analyzer import BAND_NAMES
from audiomanifold.core.polisher import PolishedFeatures

VOICED_CONFIDENCE = 0.3
BAND_OFFSET_Z = {"low": -0.8, "mid": 0.0, "high": 0.8}


def normalize_value(value: float, lo: float, hi: float) -> float:
    """Map *value* into [0,1] over ``[lo, hi]``; 0.5 when the range is empty."""
    if hi <= lo:
        return 0.5
    return max(0.0, min(1.0, (value - lo) / (hi - lo)))


def hsv_to_rgb(h: float, s: float, v: float) -> tuple[float, float, float]:
    """HSV to RGB with hue wrapped into [0,1)."""
    return colorsys.hsv_to_rgb(h % 1.0, s, v)


def chroma_concentration(chroma) -> float:
    """Largest pitch-class share: high for tonal frames, low for noise."""
    if len(chroma) == 0:
        return 0.0
    value = float(np.max(chroma))
    return 0.0 if math.isnan(value) else value


def dominant_band(energy: np.ndarray) -> int:
    """Index of the strongest band; mid wins ties, then low."""
    low, mid, high = (float(e) for e in energy)
    if mid >= low and mid >= high:
        return 1
    if low >= mid and low >= high:
        return 0
    return 2


@dataclass(frozen=True)
class EmbeddedPoint:
    """One frame mapped into the visualization space."""

    time: float
    position: tuple[float, float, float]
    color: tuple[float, float, float]    # RGB 0..1
    size: float
    opacity: float
    loudness: float
    f0: Optional[float]
    f0_confidence: float
    centroid: float
    chroma_concentration: float
    # Segmented-graph extras
    band: str = "mid"
    band_onset: float = 0.0
    band_offset_z: float = 0.0
    beat_strength: float = 0.0
    complexity: float = 0.0


class VisualMapper:
    """
    Maps polished features and PCA positions to :class:`EmbeddedPoint`s.

    Normalization ranges are observed across the whole track, so the same
    feature value always maps to the same visual value within one run.
    """

    def __init__(self, base_size: float = 0.3):
        self.base_size = base_size

    @staticmethod
    def _range(values: np.ndarray, default: tuple[float, float]) -> tuple[float, float]:
        finite = values[np.isfinite(values)]
        if len(finite) == 0:
            return default
        return float(finite.min()), float(finite.max())

    def map_points(
        self,
        polished: PolishedFeatures,
        positions: np.ndarray,
    ) -> list[EmbeddedPoint]:
        """
        Build one EmbeddedPoint per frame, in frame order.

        Args:
            polished: Smoothed features of the track.
            positions: ``(n, 3)`` embedded coordinates.

        Returns:
            Points ordered by non-decreasing time.
        """
        raw = polished.raw
        n = polished.n_frames
        if n == 0:
            return []

        confidence = raw.f0_confidence
        voiced = np.isfinite(polished.f0) & (polished.f0 > 0)
        log_f0 = np.full(n, np.nan)
        log_f0[voiced] = np.log2(polished.f0[voiced])

        loud_lo, loud_hi = self._range(polished.loudness, (0.0, 0.0))
        cent_lo, cent_hi = self._range(polished.centroid, (0.0, 0.0))
        f0_lo, f0_hi = self._range(log_f0, (0.0, 1.0))
        bw_lo, bw_hi = self._range(polished.bandwidth, (0.0, 0.0))

        points = []
        for i in range(n):
            # Color
            conf = float(confidence[i])
            if voiced[i] and conf > VOICED_CONFIDENCE:
                hue = normalize_value(log_f0[i], f0_lo, f0_hi)
            else:
                hue = normalize_value(polished.centroid[i], cent_lo, cent_hi)

            concentration = chroma_concentration(raw.chroma[i])
            saturation = 0.3 + 0.7 * concentration

            loud_norm = normalize_value(polished.loudness[i], loud_lo, loud_hi)
            value = 0.2 + 0.8 * loud_norm

            color = hsv_to_rgb(hue, saturation, value)

            # Size and opacity emphasize loud, clearly pitched frames
            conf_factor = 0.3 + 0.7 * conf
            loud_factor = 0.3 + 0.7 * loud_norm
            size = self.base_size * loud_factor * conf_factor
            opacity = 0.2 + 0.8 * loud_norm * conf_factor

            band_idx = dominant_band(polished.band_energy[i])
            band = BAND_NAMES[band_idx]
            bandwidth_norm = normalize_value(polished.bandwidth[i], bw_lo, bw_hi)

            points.append(
                EmbeddedPoint(
                    time=float(raw.times[i]),
                    position=tuple(float(c) for c in positions[i]),
                    color=tuple(float(c) for c in color),
                    size=size,
                    opacity=opacity,
                    loudness=float(polished.loudness[i]),
                    f0=float(polished.f0[i]) if voiced[i] else None,
                    f0_confidence=conf,
                    centroid=float(polished.centroid[i]),
                    chroma_concentration=concentration,
                    band=band,
                    band_onset=float(polished.band_onset[i, band_idx]),
                    band_offset_z=BAND_OFFSET_Z[band],
                    beat_strength=float(polished.beat_strength[i]),
                    complexity=(1.0 - float(raw.flatness[i])) * bandwidth_norm,
                )
            )
        return points
