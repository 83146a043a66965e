"""Tests for visual attribute mapping."""

import numpy as np
import pytest

from audiomanifold.core.analyzer import ExtractedFeatures
from audiomanifold.core.mapper import (
    BAND_OFFSET_Z,
    EmbeddedPoint,
    VisualMapper,
    chroma_concentration,
    dominant_band,
    hsv_to_rgb,
    normalize_value,
)
from audiomanifold.core.polisher import SignalPolisher


def synthetic_features(n=6):
    """Small hand-built track: rising pitch, alternating voicing."""
    rng = np.random.default_rng(5)
    f0 = np.array([110.0, np.nan, 220.0, 440.0, np.nan, 880.0])[:n]
    chroma = np.zeros((n, 12))
    chroma[:, 0] = 1.0
    return ExtractedFeatures(
        times=np.arange(n) * 0.1,
        mfcc=rng.standard_normal((n, 8)),
        chroma=chroma,
        f0=f0,
        f0_confidence=np.where(np.isnan(f0), 0.0, 0.9),
        loudness=np.linspace(0.1, 0.6, n),
        centroid=np.linspace(500.0, 3000.0, n),
        bandwidth=np.linspace(100.0, 600.0, n),
        flatness=np.full(n, 0.2),
        flux=np.zeros(n),
        band_energy=np.tile([1.0, 3.0, 2.0], (n, 1)),
        frame_size=2048,
        hop_size=512,
        sample_rate=22050,
        duration=n * 0.1,
    )


@pytest.fixture
def points():
    polished = SignalPolisher(alpha=1.0).polish(synthetic_features())
    positions = np.linspace(-5.0, 5.0, 18).reshape(6, 3)
    return VisualMapper().map_points(polished, positions)


class TestHelpers:
    def test_normalize_empty_range(self):
        assert normalize_value(3.0, 2.0, 2.0) == 0.5

    def test_normalize_clamps(self):
        assert normalize_value(10.0, 0.0, 5.0) == 1.0
        assert normalize_value(-1.0, 0.0, 5.0) == 0.0
        assert normalize_value(2.5, 0.0, 5.0) == pytest.approx(0.5)

    def test_hue_wraps(self):
        assert hsv_to_rgb(1.0, 0.8, 0.9) == pytest.approx(hsv_to_rgb(0.0, 0.8, 0.9))

    def test_dominant_band_ties(self):
        assert dominant_band(np.array([1.0, 1.0, 1.0])) == 1
        assert dominant_band(np.array([2.0, 1.0, 2.0])) == 0
        assert dominant_band(np.array([0.0, 1.0, 2.0])) == 2

    def test_chroma_concentration(self):
        assert chroma_concentration(np.full(12, 1 / 12)) == pytest.approx(1 / 12)
        assert chroma_concentration(np.zeros(12)) == 0.0
        assert chroma_concentration([]) == 0.0


class TestMapPoints:
    def test_one_point_per_frame(self, points):
        assert len(points) == 6
        assert all(isinstance(p, EmbeddedPoint) for p in points)
        times = [p.time for p in points]
        assert times == sorted(times)

    def test_visual_ranges(self, points):
        for p in points:
            assert all(0.0 <= c <= 1.0 for c in p.color)
            assert 0.2 <= p.opacity <= 1.0
            assert 0.0 < p.size <= 0.3
            assert 0.0 <= p.complexity <= 1.0

    def test_unvoiced_frames_have_no_pitch(self, points):
        assert points[1].f0 is None
        assert points[4].f0 is None
        assert points[0].f0 == pytest.approx(110.0)

    def test_positions_passed_through(self, points):
        assert points[0].position == (-5.0, pytest.approx(-5.0 + 10 / 17), pytest.approx(-5.0 + 20 / 17))

    def test_loudest_frame_is_brightest(self, points):
        assert max(points[-1].color) == pytest.approx(1.0)
        assert points[-1].opacity > points[0].opacity

    def test_band_fields(self, points):
        for p in points:
            assert p.band == "mid"
            assert p.band_offset_z == BAND_OFFSET_Z["mid"]
            # Constant band energy never rises
            assert p.band_onset == 0.0

    def test_empty_track(self):
        polished = SignalPolisher().polish(synthetic_features(n=0))
        assert VisualMapper().map_points(polished, np.zeros((0, 3))) == []
