"""End-to-end tests for AudioPipeline."""

import threading

import numpy as np
import pytest
import soundfile as sf

from audiomanifold.config import AnalysisConfig
from audiomanifold.errors import AnalysisAborted, InputError, UpstreamDecodeError
from audiomanifold.pipeline import AudioPipeline, PipelineResult, feature_matrix


@pytest.fixture(scope="module")
def mixed_result(mixed_signal):
    y, sr = mixed_signal
    return AudioPipeline().run(y, sr)


@pytest.fixture(scope="module")
def gap_result(gap_signal):
    y, sr = gap_signal
    return AudioPipeline().run(y, sr)


class TestRun:
    def test_result_shape(self, mixed_result, mixed_signal):
        y, sr = mixed_signal
        n = (len(y) - 2048) // 512
        assert isinstance(mixed_result, PipelineResult)
        assert len(mixed_result.points) == n
        assert mixed_result.pca.positions.shape == (n, 3)
        assert mixed_result.sample_rate == sr
        assert mixed_result.duration == pytest.approx(3.0)

    def test_points_in_time_order(self, mixed_result):
        times = [p.time for p in mixed_result.points]
        assert all(b >= a for a, b in zip(times, times[1:]))

    def test_positions_in_range(self, mixed_result):
        positions = np.array([p.position for p in mixed_result.points])
        assert np.all(np.abs(positions) <= 5.0 + 1e-9)
        assert not mixed_result.pca.fallback

    def test_feature_matrix_width(self, mixed_result):
        matrix = feature_matrix(mixed_result.polished)
        assert matrix.shape == (len(mixed_result.points), 40 + 12 + 5)
        assert np.all(np.isfinite(matrix))

    def test_deterministic(self, mixed_signal, mixed_result):
        y, sr = mixed_signal
        again = AudioPipeline().run(y, sr)
        np.testing.assert_array_equal(again.pca.positions, mixed_result.pca.positions)
        assert [p.color for p in again.points] == [p.color for p in mixed_result.points]
        assert [s.edges for s in again.segments] == [s.edges for s in mixed_result.segments]

    def test_stereo_matches_mono(self, pure_sine):
        y, sr = pure_sine
        mono = AudioPipeline().run(y, sr)
        stereo = AudioPipeline().run(np.vstack([y, y]), sr)
        np.testing.assert_allclose(stereo.pca.positions, mono.pca.positions)

    def test_input_array_left_writable(self, pure_sine):
        y = pure_sine[0].copy()
        AudioPipeline().run(y, 22050)
        y[0] = 0.25
        assert y[0] == 0.25

    def test_silent_track_still_produces_points(self):
        result = AudioPipeline().run(np.zeros(22050), 22050)
        assert len(result.points) == (22050 - 2048) // 512
        for p in result.points:
            assert p.f0 is None
            assert np.all(np.isfinite(p.position))
            assert all(0.0 <= c <= 1.0 for c in p.color)


class TestSegments:
    def test_gap_track_has_two_segments(self, gap_result):
        assert len(gap_result.segments) == 2
        labels = [s.phrase.label for s in gap_result.segments]
        assert labels == ["Phrase 1", "Phrase 2"]

    def test_segment_points_inside_phrase(self, gap_result):
        for seg in gap_result.segments:
            for idx in seg.point_indices:
                t = gap_result.points[idx].time
                assert seg.phrase.start <= t < seg.phrase.end

    def test_edges_are_local_and_canonical(self, gap_result):
        for seg in gap_result.segments:
            m = len(seg.point_indices)
            assert len(set(seg.edges)) == len(seg.edges)
            for i, j in seg.edges:
                assert 0 <= i < j < m

    def test_graph_downsampled(self, gap_signal):
        y, sr = gap_signal
        result = AudioPipeline(AnalysisConfig(max_graph_points=20)).run(y, sr)
        for seg in result.segments:
            assert len(seg.point_indices) <= 20


class TestErrors:
    def test_short_buffer(self):
        with pytest.raises(InputError):
            AudioPipeline().run(np.zeros(1000), 22050)

    def test_empty_buffer(self):
        with pytest.raises(InputError):
            AudioPipeline().run(np.array([]), 22050)

    def test_cancelled(self, pure_sine):
        y, sr = pure_sine
        event = threading.Event()
        event.set()
        with pytest.raises(AnalysisAborted):
            AudioPipeline(cancel_event=event).run(y, sr)

    def test_cancel_mid_run(self, pure_sine):
        y, sr = pure_sine
        event = threading.Event()

        def on_progress(fraction):
            if fraction > 0:
                event.set()

        pipeline = AudioPipeline(
            AnalysisConfig(yield_every=10),
            progress_callback=on_progress,
            cancel_event=event,
        )
        with pytest.raises(AnalysisAborted):
            pipeline.run(y, sr)

    def test_missing_file(self, tmp_path):
        with pytest.raises(UpstreamDecodeError):
            AudioPipeline().run_file(tmp_path / "missing.wav")

    def test_garbage_file(self, tmp_path):
        path = tmp_path / "garbage.wav"
        path.write_bytes(b"this is not audio at all")
        with pytest.raises(UpstreamDecodeError) as excinfo:
            AudioPipeline().run_file(path)
        assert excinfo.value.__cause__ is not None


class TestRunFile:
    def test_wav_roundtrip(self, tmp_path, pure_sine):
        y, sr = pure_sine
        path = tmp_path / "sine.wav"
        sf.write(path, y, sr)

        result = AudioPipeline().run_file(path)
        assert result.sample_rate == sr
        assert len(result.points) == (len(y) - 2048) // 512

    def test_stereo_file_is_downmixed(self, tmp_path, pure_sine):
        y, sr = pure_sine
        path = tmp_path / "stereo.wav"
        sf.write(path, np.column_stack([y, 0.5 * y]), sr)

        result = AudioPipeline().run_file(path)
        assert result.buffer.samples.ndim == 1
        assert len(result.points) == (len(y) - 2048) // 512
