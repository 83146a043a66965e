"""
Analysis parameters.

A single frozen dataclass carries every tunable of the pipeline so a run
can be reproduced from one object (or one JSON file).
"""

import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Union


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Parameters for one pipeline run.

    Attributes:
        frame_size: FFT window length in samples (power of two).
        hop_size: Sample advance between consecutive frames.
        n_mfcc: Number of cepstral coefficients kept per frame.
        n_mels: Number of triangular mel filters.
        mel_low_hz: Lower edge of the mel filterbank.
        yin_threshold: Absolute threshold on the normalized YIN difference.
        smoothing_alpha: EMA weight of the current frame.
        silence_ratio: Silence threshold as a fraction of peak loudness.
        min_silence_s: Silence longer than this separates phrases.
        min_phrase_s: Shorter phrases are dropped as noise.
        max_fallback_segments: Segment cap when no phrase survives.
        pca_sample_limit: Frames used to fit the PCA basis before striding.
        pca_iterations: Power iterations per principal component.
        position_scale: Embedded axes are rescaled into [-scale, scale].
        knn_k: Neighbours per point in the phrase graph.
        max_graph_points: Phrases are downsampled to at most this many points.
        yield_every: Frames between progress callbacks / cancellation checks.
    """

    frame_size: int = 2048
    hop_size: int = 512
    n_mfcc: int = 40
    n_mels: int = 80
    mel_low_hz: float = 20.0
    yin_threshold: float = 0.15
    smoothing_alpha: float = 0.5
    silence_ratio: float = 0.1
    min_silence_s: float = 0.2
    min_phrase_s: float = 0.3
    max_fallback_segments: int = 4
    pca_sample_limit: int = 4000
    pca_iterations: int = 200
    position_scale: float = 5.0
    knn_k: int = 3
    max_graph_points: int = 400
    yield_every: int = 100

    def __post_init__(self):
        if self.frame_size < 2 or self.frame_size & (self.frame_size - 1):
            raise ValueError(
                f"frame_size must be a power of two >= 2, got {self.frame_size}"
            )
        if self.hop_size <= 0:
            raise ValueError(f"hop_size must be positive, got {self.hop_size}")
        if self.n_mels <= 0 or self.n_mfcc <= 0:
            raise ValueError("n_mels and n_mfcc must be positive")
        if self.n_mfcc > self.n_mels:
            raise ValueError(
                f"n_mfcc ({self.n_mfcc}) cannot exceed n_mels ({self.n_mels})"
            )
        if not 0.0 < self.smoothing_alpha <= 1.0:
            raise ValueError("smoothing_alpha must lie in (0, 1]")
        if not 0.0 < self.yin_threshold < 1.0:
            raise ValueError("yin_threshold must lie in (0, 1)")
        if self.knn_k <= 0 or self.max_graph_points <= 0:
            raise ValueError("knn_k and max_graph_points must be positive")
        if self.pca_sample_limit <= 0 or self.pca_iterations <= 0:
            raise ValueError("pca_sample_limit and pca_iterations must be positive")
        if self.max_fallback_segments <= 0 or self.yield_every <= 0:
            raise ValueError("max_fallback_segments and yield_every must be positive")

    @classmethod
    def from_dict(cls, values: dict[str, Any]) -> "AnalysisConfig":
        """Build a config from a mapping, ignoring keys it does not know."""
        if not isinstance(values, dict):
            raise ValueError(
                f"Config must be a JSON object, got {type(values).__name__}"
            )
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in values.items() if k in known})

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "AnalysisConfig":
        """Load a config from a JSON object stored at *path*."""
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
