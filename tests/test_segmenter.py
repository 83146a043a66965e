"""Tests for silence-based phrase segmentation."""

import numpy as np
import pytest

from audiomanifold.core.analyzer import FeatureAnalyzer
from audiomanifold.core.buffer import SampleBuffer
from audiomanifold.core.polisher import SignalPolisher
from audiomanifold.core.segmenter import Phrase, PhraseSegmenter


def segment_signal(y, sr):
    buf = SampleBuffer.from_array(y, sr)
    polished = SignalPolisher().polish(FeatureAnalyzer().analyze(buf))
    return PhraseSegmenter().segment(polished.times, polished.loudness, buf.duration)


def burst_track(n_frames=975, period=60, burst=10, step=0.01):
    """Short bursts of sound separated by long silences."""
    i = np.arange(n_frames)
    times = i * step
    loudness = np.where(i % period < burst, 1.0, 0.0)
    return times, loudness, n_frames * step


class TestOnAudio:
    def test_silence_gap_splits_in_two(self, gap_signal):
        phrases = segment_signal(*gap_signal)

        assert len(phrases) == 2
        first, second = phrases
        assert first.start == pytest.approx(0.0)
        assert first.end == pytest.approx(2.0, abs=0.15)
        assert second.start == pytest.approx(3.0, abs=0.15)
        assert second.end == pytest.approx(5.0)
        assert first.duration >= 0.3 and second.duration >= 0.3

    def test_uniform_track_is_one_phrase(self, loud_signal):
        phrases = segment_signal(*loud_signal)

        assert len(phrases) == 1
        assert phrases[0].start == 0.0
        assert phrases[0].end == pytest.approx(5.0)
        assert phrases[0].label == "Phrase 1"


class TestRules:
    def test_phrases_do_not_overlap(self, gap_signal):
        phrases = segment_signal(*gap_signal)
        for a, b in zip(phrases, phrases[1:]):
            assert a.end <= b.start

    def test_frames_fall_inside_phrase(self):
        times, loudness, duration = burst_track(n_frames=300, period=100, burst=60)
        phrases = PhraseSegmenter().segment(times, loudness, duration)
        for phrase in phrases:
            t = times[phrase.frame_indices]
            assert np.all((t >= phrase.start) & (t < phrase.end))
            assert np.all(np.diff(phrase.frame_indices) == 1)

    def test_short_gap_does_not_split(self):
        times = np.arange(200) * 0.01
        loudness = np.ones(200)
        loudness[100:110] = 0.0  # 0.1s dip
        phrases = PhraseSegmenter().segment(times, loudness, 2.0)
        assert len(phrases) == 1

    def test_short_phrase_dropped_as_noise(self):
        times = np.arange(300) * 0.01
        loudness = np.zeros(300)
        loudness[0:10] = 1.0     # 0.1s blip
        loudness[100:300] = 1.0  # 2s phrase
        phrases = PhraseSegmenter().segment(times, loudness, 3.0)
        assert len(phrases) == 1
        assert phrases[0].start == pytest.approx(1.0)
        assert phrases[0].end == pytest.approx(3.0)

    def test_leading_silence_moves_start(self):
        times = np.arange(300) * 0.01
        loudness = np.zeros(300)
        loudness[100:] = 1.0
        phrases = PhraseSegmenter().segment(times, loudness, 3.0)
        assert len(phrases) == 1
        assert phrases[0].start == pytest.approx(1.0)

    def test_empty_input(self):
        assert PhraseSegmenter().segment(np.array([]), np.array([]), 0.0) == []


class TestFallback:
    def test_no_surviving_phrase_uses_equal_segments(self):
        times, loudness, duration = burst_track()
        phrases = PhraseSegmenter().segment(times, loudness, duration)

        # ceil(9.75 / 5) = 2 segments
        assert len(phrases) == 2
        assert phrases[0].start == 0.0
        assert phrases[0].end == pytest.approx(duration / 2)
        assert phrases[1].end == pytest.approx(duration)
        covered = np.concatenate([p.frame_indices for p in phrases])
        np.testing.assert_array_equal(covered, np.arange(len(times)))

    def test_fallback_capped(self):
        spans = PhraseSegmenter()._fallback_spans(60.0)
        assert len(spans) == 4
        assert spans[0] == (0.0, 15.0)
        assert spans[-1][1] == 60.0

    def test_short_track_single_fallback_segment(self):
        times = np.arange(100) * 0.01
        loudness = np.zeros(100)
        loudness[50:55] = 1.0
        phrases = PhraseSegmenter().segment(times, loudness, 0.7)
        assert len(phrases) == 1
        assert isinstance(phrases[0], Phrase)
        assert (phrases[0].start, phrases[0].end) == (0.0, 0.7)
