"""
Output serialization module.

Exports pipeline results to JSON in either of two forms:

* embedded points: every frame as one point, in time order;
* segmented graph: phrases with their downsampled points and k-NN edges.

Per-frame feature matrices can also be written to a NumPy ``.npz`` archive.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

import numpy as np

from audiomanifold.core.mapper import EmbeddedPoint
from audiomanifold.pipeline import PipelineResult

FORMS = ("points", "segments")


@dataclass
class ManifoldMetadata:
    """Metadata header shared by both output forms."""

    duration: float
    sample_rate: int
    n_frames: int
    schema_version: str = "1.0"


class ManifoldExporter:
    """
    Exports pipeline results to plain dictionaries / JSON.

    Keys follow the renderer's camelCase schema.
    """

    def __init__(self, precision: int = 4, include_pca: bool = False):
        """
        Initialize the exporter.

        Args:
            precision: Decimal places for floating point values.
            include_pca: Add a ``pca`` block with eigenvalues and flags.
        """
        self.precision = precision
        self.include_pca = include_pca

    def _round(self, value: float) -> float:
        """Round to configured precision."""
        return round(float(value), self.precision)

    def _safe_float(self, value) -> Optional[float]:
        """Rounded float, or None for missing / NaN / infinite values."""
        if value is None:
            return None
        try:
            f = float(value)
        except (TypeError, ValueError):
            return None
        if np.isnan(f) or np.isinf(f):
            return None
        return self._round(f)

    def _build_point(self, point: EmbeddedPoint, extended: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "time": self._round(point.time),
            "position": [self._round(c) for c in point.position],
            "color": [self._round(c) for c in point.color],
            "size": self._round(point.size),
            "opacity": self._round(point.opacity),
            "loudness": self._round(point.loudness),
            "f0": self._safe_float(point.f0),
            "f0Confidence": self._round(point.f0_confidence),
            "centroidHz": self._round(point.centroid),
            "chromaConcentration": self._round(point.chroma_concentration),
        }
        if extended:
            data.update({
                "band": point.band,
                "bandOnset": self._round(point.band_onset),
                "bandOffsetZ": self._round(point.band_offset_z),
                "beatStrength": self._round(point.beat_strength),
                "complexity": self._round(point.complexity),
            })
        return data

    def _header(self, result: PipelineResult) -> dict[str, Any]:
        metadata = ManifoldMetadata(
            duration=self._round(result.duration),
            sample_rate=result.sample_rate,
            n_frames=result.features.n_frames,
        )
        return {
            "durationSeconds": metadata.duration,
            "sampleRateHz": metadata.sample_rate,
            "nFrames": metadata.n_frames,
            "schemaVersion": metadata.schema_version,
        }

    def _pca_block(self, result: PipelineResult) -> dict[str, Any]:
        pca = result.pca
        return {
            "eigenvalues": [self._round(v) for v in pca.eigenvalues],
            "explainedVarianceRatio": [
                self._round(v) for v in pca.explained_variance_ratio
            ],
            "approximate": bool(pca.approximate),
            "fallback": bool(pca.fallback),
        }

    def build_points(self, result: PipelineResult) -> dict[str, Any]:
        """
        Embedded-point form.

        Returns:
            ``{durationSeconds, sampleRateHz, points: [...]}`` with points in
            non-decreasing time order.
        """
        manifest = self._header(result)
        manifest["points"] = [self._build_point(p) for p in result.points]
        if self.include_pca:
            manifest["pca"] = self._pca_block(result)
        return manifest

    def build_segments(self, result: PipelineResult) -> dict[str, Any]:
        """
        Segmented-graph form.

        Returns:
            ``{durationSeconds, sampleRateHz, segments: [...]}``; each segment
            carries its id, label, time range, points and ``[i, j]`` edges.
        """
        manifest = self._header(result)
        segments = []
        for seg in result.segments:
            phrase = seg.phrase
            segments.append({
                "id": phrase.index,
                "label": phrase.label,
                "start": self._round(phrase.start),
                "end": self._round(phrase.end),
                "points": [
                    self._build_point(result.points[int(i)], extended=True)
                    for i in seg.point_indices
                ],
                "edges": [[int(i), int(j)] for i, j in seg.edges],
            })
        manifest["segments"] = segments
        if self.include_pca:
            manifest["pca"] = self._pca_block(result)
        return manifest

    def build(self, result: PipelineResult, form: str = "points") -> dict[str, Any]:
        """Dispatch to :meth:`build_points` or :meth:`build_segments`."""
        if form == "points":
            return self.build_points(result)
        if form == "segments":
            return self.build_segments(result)
        raise ValueError(f"Unknown output form {form!r}; expected one of {FORMS}")

    def export_json(
        self,
        result: PipelineResult,
        output_path: Union[str, Path],
        form: str = "points",
        indent: Optional[int] = 2,
    ) -> Path:
        """
        Export a result to a JSON file.

        Args:
            result: Pipeline result.
            output_path: Path for output JSON file.
            form: ``"points"`` or ``"segments"``.
            indent: JSON indentation level.

        Returns:
            Path to written file.
        """
        manifest = self.build(result, form)
        output_path = Path(output_path)

        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(manifest, f, indent=indent)

        return output_path

    def export_numpy(
        self,
        result: PipelineResult,
        output_path: Union[str, Path],
    ) -> Path:
        """
        Export per-frame features and positions as a NumPy ``.npz`` archive.

        Args:
            result: Pipeline result.
            output_path: Path for output .npz file.

        Returns:
            Path to written file.
        """
        output_path = Path(output_path)
        features = result.features
        polished = result.polished

        np.savez_compressed(
            output_path,
            times=features.times,
            mfcc=features.mfcc,
            chroma=features.chroma,
            f0=features.f0,
            f0_confidence=features.f0_confidence,
            loudness=features.loudness,
            centroid=features.centroid,
            bandwidth=features.bandwidth,
            flatness=features.flatness,
            flux=features.flux,
            band_energy=features.band_energy,
            band_onset=polished.band_onset,
            beat_strength=polished.beat_strength,
            positions=result.pca.positions,
            eigenvalues=result.pca.eigenvalues,
            components=result.pca.components,
            sample_rate=np.array([features.sample_rate]),
            hop_size=np.array([features.hop_size]),
            frame_size=np.array([features.frame_size]),
        )

        return output_path
