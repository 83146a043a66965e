"""Offline audio analysis engine producing 3D point manifolds."""

from audiomanifold.config import AnalysisConfig
from audiomanifold.core.analyzer import FeatureAnalyzer
from audiomanifold.core.polisher import SignalPolisher
from audiomanifold.core.reducer import PCAReducer
from audiomanifold.core.segmenter import PhraseSegmenter
from audiomanifold.errors import (
    AnalysisAborted,
    InputError,
    ManifoldError,
    ReducerFailure,
    UpstreamDecodeError,
)
from audiomanifold.io.exporter import ManifoldExporter
from audiomanifold.pipeline import AudioPipeline, PipelineResult

__version__ = "0.1.0"
__all__ = [
    "AnalysisConfig",
    "FeatureAnalyzer",
    "SignalPolisher",
    "PCAReducer",
    "PhraseSegmenter",
    "ManifoldExporter",
    "AudioPipeline",
    "PipelineResult",
    "ManifoldError",
    "InputError",
    "UpstreamDecodeError",
    "ReducerFailure",
    "AnalysisAborted",
]
