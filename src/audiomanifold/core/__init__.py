"""Core audio processing modules."""

from audiomanifold.core.analyzer import FeatureAnalyzer
from audiomanifold.core.buffer import AudioLoader, SampleBuffer
from audiomanifold.core.graph import GraphBuilder
from audiomanifold.core.mapper import VisualMapper
from audiomanifold.core.polisher import SignalPolisher
from audiomanifold.core.reducer import PCAReducer
from audiomanifold.core.segmenter import PhraseSegmenter
from audiomanifold.core.spectral import SpectralEngine

__all__ = [
    "AudioLoader",
    "SampleBuffer",
    "SpectralEngine",
    "FeatureAnalyzer",
    "SignalPolisher",
    "PhraseSegmenter",
    "PCAReducer",
    "VisualMapper",
    "GraphBuilder",
]
