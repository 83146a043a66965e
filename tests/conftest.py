"""Shared synthetic signals for the test suite."""

import numpy as np
import pytest

TEST_SR = 22050


def tone(freq: float, duration: float, sr: int = TEST_SR, amplitude: float = 0.5) -> np.ndarray:
    t = np.arange(int(sr * duration)) / sr
    return amplitude * np.sin(2 * np.pi * freq * t)


@pytest.fixture(scope="session")
def pure_sine():
    """Two seconds of A4 (440 Hz)."""
    return tone(440.0, 2.0), TEST_SR


@pytest.fixture(scope="session")
def mixed_signal():
    """Bass, a melody line, light noise and periodic clicks over three seconds."""
    sr = TEST_SR
    duration = 3.0
    n = int(sr * duration)
    t = np.arange(n) / sr
    rng = np.random.default_rng(7)

    y = 0.3 * np.sin(2 * np.pi * 110.0 * t)
    # Melody steps between A4, C5 and E5 every half second
    notes = np.array([440.0, 523.25, 659.25])
    melody_freq = notes[(t // 0.5).astype(int) % 3]
    y += 0.2 * np.sin(2 * np.pi * np.cumsum(melody_freq) / sr)
    y += 0.02 * rng.standard_normal(n)

    # Clicks every 0.25s
    for start in range(0, n, sr // 4):
        y[start : start + 200] += 0.5 * np.exp(-np.arange(len(y[start : start + 200])) / 40.0)

    return y, sr


@pytest.fixture(scope="session")
def gap_signal():
    """Five seconds of tone with full silence over [2, 3)."""
    sr = TEST_SR
    y = tone(330.0, 5.0, sr)
    y[2 * sr : 3 * sr] = 0.0
    return y, sr


@pytest.fixture(scope="session")
def loud_signal():
    """Five seconds of uniformly loud tone."""
    return tone(330.0, 5.0), TEST_SR
