"""
End-to-end analysis pipeline.

    waveform
        │
        ├─► FeatureAnalyzer     (FFT, MFCC, chroma, YIN, descriptors)
        │
        ├─► SignalPolisher      (EMA smoothing, band onsets, beats)
        │        │
        │        ├─► PhraseSegmenter   (smoothed loudness)
        │        └─► PCAReducer        (full feature vectors)
        │
        ├─► VisualMapper        (color, size, opacity)
        │
        └─► GraphBuilder        (per-phrase union k-NN)

Each call to :meth:`AudioPipeline.run` builds its own analyzer, so lookup
tables are never shared between runs.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Union

import numpy as np

from audiomanifold.config import AnalysisConfig
from audiomanifold.core.analyzer import ExtractedFeatures, FeatureAnalyzer
from audiomanifold.core.buffer import AudioLoader, SampleBuffer
from audiomanifold.core.graph import GraphBuilder
from audiomanifold.core.mapper import EmbeddedPoint, VisualMapper
from audiomanifold.core.polisher import PolishedFeatures, SignalPolisher
from audiomanifold.core.reducer import PCAReducer, PCAResult, build_feature_vector
from audiomanifold.core.segmenter import Phrase, PhraseSegmenter

logger = logging.getLogger(__name__)


@dataclass
class SegmentGraph:
    """A phrase, the (downsampled) points drawn for it and their edges."""

    phrase: Phrase
    point_indices: np.ndarray            # global frame indices, ascending
    edges: list = field(default_factory=list)  # [(i, j)] local to point_indices


@dataclass
class PipelineResult:
    """Everything one run produces."""

    buffer: SampleBuffer
    features: ExtractedFeatures
    polished: PolishedFeatures
    pca: PCAResult
    points: list[EmbeddedPoint]
    segments: list[SegmentGraph]
    elapsed: float = 0.0

    @property
    def duration(self) -> float:
        return self.buffer.duration

    @property
    def sample_rate(self) -> int:
        return self.buffer.sample_rate


def feature_matrix(polished: PolishedFeatures) -> np.ndarray:
    """Stack the PCA input vector of every frame into an ``(n, D)`` matrix."""
    raw = polished.raw
    rows = []
    for i in range(polished.n_frames):
        f0 = polished.f0[i]
        rows.append(
            build_feature_vector(
                mfcc=raw.mfcc[i],
                chroma=raw.chroma[i],
                f0=None if np.isnan(f0) else float(f0),
                f0_confidence=float(raw.f0_confidence[i]),
                centroid=float(polished.centroid[i]),
                loudness=float(polished.loudness[i]),
                bandwidth=float(polished.bandwidth[i]),
            )
        )
    if not rows:
        return np.zeros((0, raw.mfcc.shape[1] + 12 + 5))
    return np.vstack(rows)


class AudioPipeline:
    """
    Runs the complete waveform → embedded points → phrase graph pipeline.

    Example::

        pipeline = AudioPipeline()
        result = pipeline.run_file("loop.wav")
        manifest = ManifoldExporter().build_segments(result)
    """

    def __init__(
        self,
        config: Optional[AnalysisConfig] = None,
        progress_callback: Optional[Callable[[float], None]] = None,
        cancel_event=None,
    ):
        """
        Initialize the pipeline.

        Args:
            config: Analysis parameters (defaults apply when None).
            progress_callback: Receives the analyzed fraction in [0,1] every
                ``config.yield_every`` frames.
            cancel_event: Object with ``is_set()`` (e.g. ``threading.Event``);
                when set, the run raises AnalysisAborted between frames.
        """
        self.config = config or AnalysisConfig()
        self.progress_callback = progress_callback
        self.cancel_event = cancel_event

    def _stages(self):
        cfg = self.config
        return (
            FeatureAnalyzer(cfg),
            SignalPolisher(alpha=cfg.smoothing_alpha),
            PhraseSegmenter(
                silence_ratio=cfg.silence_ratio,
                min_silence=cfg.min_silence_s,
                min_phrase=cfg.min_phrase_s,
                max_fallback_segments=cfg.max_fallback_segments,
            ),
            PCAReducer(
                n_iterations=cfg.pca_iterations,
                sample_limit=cfg.pca_sample_limit,
                scale=cfg.position_scale,
            ),
            VisualMapper(),
            GraphBuilder(k=cfg.knn_k, max_points=cfg.max_graph_points),
        )

    def run_buffer(self, buffer: SampleBuffer) -> PipelineResult:
        """Run every stage on a validated buffer."""
        started = time.perf_counter()
        analyzer, polisher, segmenter, reducer, mapper, graph = self._stages()

        features = analyzer.analyze(
            buffer,
            progress_callback=self.progress_callback,
            cancel_event=self.cancel_event,
        )
        logger.info(
            "Extracted %d frames from %.2fs of audio", features.n_frames, buffer.duration
        )

        polished = polisher.polish(features)
        phrases = segmenter.segment(polished.times, polished.loudness, buffer.duration)

        pca = reducer.reduce(feature_matrix(polished))
        logger.debug("PCA eigenvalues: %s", np.round(pca.eigenvalues, 4).tolist())

        points = mapper.map_points(polished, pca.positions)

        segments = []
        for phrase in phrases:
            indices = graph.downsample(phrase.frame_indices)
            edges = graph.build(pca.positions[indices])
            segments.append(SegmentGraph(phrase=phrase, point_indices=indices, edges=edges))

        elapsed = time.perf_counter() - started
        logger.info(
            "Analysis complete: %d points, %d phrases in %.2fs",
            len(points), len(segments), elapsed,
        )
        return PipelineResult(
            buffer=buffer,
            features=features,
            polished=polished,
            pca=pca,
            points=points,
            segments=segments,
            elapsed=elapsed,
        )

    def run(self, samples: np.ndarray, sample_rate: int) -> PipelineResult:
        """
        Analyze an in-memory waveform.

        Args:
            samples: Mono samples, or ``(channels, n)`` to be down-mixed.
            sample_rate: Sample rate in Hz.

        Raises:
            InputError: On an empty/short buffer or an invalid sample rate.
            AnalysisAborted: If the cancel event fires.
        """
        return self.run_buffer(SampleBuffer.from_array(samples, sample_rate))

    def run_file(
        self,
        audio_path: Union[str, Path],
        sr: Optional[int] = None,
    ) -> PipelineResult:
        """
        Decode and analyze an audio file.

        Raises:
            UpstreamDecodeError: If the decoder fails.
        """
        buffer = AudioLoader(sr=sr).load(audio_path)
        logger.info(
            "Loaded %s (%d Hz, %.2fs)",
            Path(audio_path).name, buffer.sample_rate, buffer.duration,
        )
        return self.run_buffer(buffer)
