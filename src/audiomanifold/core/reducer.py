"""
Dimensionality reduction to three axes.

PCA via power iteration with deflation: only the top three components are
needed, so a full eigendecomposition is skipped. The covariance copy is
overwritten in place on every deflation step.

When the frame count exceeds ``sample_limit`` the basis (mean, std,
components) is fitted on a uniform stride subsample and then applied to
every frame. This is an approximation; ``PCAResult.approximate`` reports it.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from audiomanifold.errors import ReducerFailure

logger = logging.getLogger(__name__)

N_COMPONENTS = 3
STD_FLOOR = 1e-10
NORM_FLOOR = 1e-10

# Fixed scales keeping the scalar features near unit range
PITCH_LOG2_SCALE = 11.0
CENTROID_SCALE_HZ = 8000.0
BANDWIDTH_SCALE_HZ = 4000.0


def build_feature_vector(
    mfcc: Sequence[float],
    chroma: Sequence[float],
    f0,
    f0_confidence: float,
    centroid: float,
    loudness: float,
    bandwidth: float,
) -> np.ndarray:
    """
    Flatten one frame into the PCA input vector.

    Layout: MFCC ++ chroma ++ confidence-weighted log2 pitch ++ centroid ++
    loudness ++ bandwidth ++ chroma concentration.
    """
    chroma = np.asarray(chroma, dtype=np.float64)
    if f0 is None or not np.isfinite(f0) or f0 <= 0:
        pitch = 0.0
    else:
        pitch = math.log2(max(1.0, f0)) / PITCH_LOG2_SCALE * f0_confidence
    concentration = float(chroma.max()) if len(chroma) else 0.0
    return np.concatenate([
        np.asarray(mfcc, dtype=np.float64),
        chroma,
        [
            pitch,
            centroid / CENTROID_SCALE_HZ,
            loudness,
            bandwidth / BANDWIDTH_SCALE_HZ,
            concentration,
        ],
    ])


@dataclass
class PCAResult:
    """Projection of every frame plus the fitted basis."""

    positions: np.ndarray                  # (n, 3) scaled into [-scale, scale]
    eigenvalues: np.ndarray                # (3,) non-increasing
    mean: np.ndarray                       # (D,)
    std: np.ndarray                        # (D,)
    components: np.ndarray                 # (3, D)
    explained_variance_ratio: np.ndarray   # (3,)
    approximate: bool = False
    fallback: bool = False
    sample_indices: np.ndarray = field(default_factory=lambda: np.array([], dtype=int))


class PCAReducer:
    """
    Projects feature vectors onto their top three principal axes.

    Never aborts a run: malformed input is answered with a deterministic
    projection onto the first three raw dimensions.
    """

    def __init__(
        self,
        n_iterations: int = 200,
        sample_limit: int = 4000,
        scale: float = 5.0,
    ):
        """
        Args:
            n_iterations: Power iterations per component.
            sample_limit: Maximum frames used to fit the basis.
            scale: Output axes are rescaled into ``[-scale, scale]``.
        """
        self.n_iterations = n_iterations
        self.sample_limit = sample_limit
        self.scale = scale

    # ------------------------------------------------------------------
    # Building blocks
    # ------------------------------------------------------------------

    @staticmethod
    def standardize_params(data: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Per-dimension mean and population std (std < 1e-10 becomes 1)."""
        mean = data.mean(axis=0)
        std = np.sqrt(((data - mean) ** 2).mean(axis=0))
        std[std < STD_FLOOR] = 1.0
        return mean, std

    @staticmethod
    def covariance(data: np.ndarray) -> np.ndarray:
        """``(1/N) X^T X`` from the upper triangle, mirrored."""
        n, d = data.shape
        cov = np.zeros((d, d))
        for i in range(d):
            cov[i, i:] = data[:, i] @ data[:, i:] / n
        upper = np.triu_indices(d, k=1)
        cov[(upper[1], upper[0])] = cov[upper]
        return cov

    @staticmethod
    def seed_vector(d: int) -> np.ndarray:
        """Deterministic alternating start vector, unit length."""
        i = np.arange(d)
        v = np.where(i % 2 == 0, 1.0, -1.0) * (1.0 + (i % 7) * 0.1)
        norm = np.linalg.norm(v)
        return v / norm if norm > 0 else v

    def power_iteration(self, matrix: np.ndarray) -> tuple[float, np.ndarray]:
        """Dominant eigenpair: (converged norm, converged unit vector)."""
        v = self.seed_vector(matrix.shape[0])
        eigenvalue = 0.0
        for _ in range(self.n_iterations):
            w = matrix @ v
            norm = float(np.linalg.norm(w))
            if norm < NORM_FLOOR:
                break
            eigenvalue = norm
            v = w / norm
        return eigenvalue, v

    def top_components(self, cov: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """
        Top three eigenpairs by power iteration and in-place deflation.

        Raises:
            ReducerFailure: On a non-square or non-finite matrix, or an
                eigenvector whose length does not match the matrix.
        """
        if cov.ndim != 2 or cov.shape[0] != cov.shape[1] or cov.shape[0] == 0:
            raise ReducerFailure(f"Covariance matrix has bad shape {cov.shape}")
        if not np.all(np.isfinite(cov)):
            raise ReducerFailure("Covariance matrix contains non-finite values")

        d = cov.shape[0]
        work = cov.copy()
        eigenvalues = np.zeros(N_COMPONENTS)
        components = np.zeros((N_COMPONENTS, d))
        for k in range(N_COMPONENTS):
            eigenvalue, vector = self.power_iteration(work)
            if vector.shape != (d,):
                raise ReducerFailure(
                    f"Eigenvector of length {vector.shape} for a {d}x{d} matrix"
                )
            eigenvalues[k] = eigenvalue
            components[k] = vector
            work -= eigenvalue * np.outer(vector, vector)
        return eigenvalues, components

    def rescale(self, positions: np.ndarray) -> np.ndarray:
        """Min-max each axis into ``[-scale, scale]``; zero-range axes untouched."""
        out = positions.astype(np.float64, copy=True)
        if len(out) == 0:
            return out
        lo = out.min(axis=0)
        hi = out.max(axis=0)
        for k in range(out.shape[1]):
            width = hi[k] - lo[k]
            if width > 0:
                out[:, k] = ((out[:, k] - lo[k]) / width - 0.5) * 2.0 * self.scale
        return out

    def sample_indices(self, n: int) -> np.ndarray:
        """Uniform stride subsample with ``stride = ceil(n / sample_limit)``."""
        stride = max(1, math.ceil(n / self.sample_limit))
        return np.arange(0, n, stride)

    # ------------------------------------------------------------------
    # Fallback
    # ------------------------------------------------------------------

    def fallback(self, vectors: Sequence[Sequence[float]]) -> PCAResult:
        """Project onto the first three raw dimensions, zero-padded."""
        n = len(vectors)
        raw = np.zeros((n, N_COMPONENTS))
        for i, vec in enumerate(vectors):
            head = np.asarray(vec, dtype=np.float64).ravel()[:N_COMPONENTS]
            raw[i, : len(head)] = np.nan_to_num(head, nan=0.0, posinf=0.0, neginf=0.0)

        return PCAResult(
            positions=self.rescale(raw),
            eigenvalues=np.zeros(N_COMPONENTS),
            mean=np.zeros(N_COMPONENTS),
            std=np.ones(N_COMPONENTS),
            components=np.eye(N_COMPONENTS),
            explained_variance_ratio=np.zeros(N_COMPONENTS),
            fallback=True,
            sample_indices=np.arange(n),
        )

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def fit_transform(self, data: np.ndarray) -> PCAResult:
        """
        Fit the basis and project *data*.

        Raises:
            ReducerFailure: When the eigen-extraction cannot proceed.
        """
        if data.ndim != 2:
            raise ReducerFailure(f"Feature matrix must be 2-D, got shape {data.shape}")
        if not np.all(np.isfinite(data)):
            raise ReducerFailure("Feature matrix contains non-finite values")

        n = data.shape[0]
        indices = self.sample_indices(n)
        approximate = len(indices) < n
        basis = data[indices]

        mean, std = self.standardize_params(basis)
        cov = self.covariance((basis - mean) / std)
        eigenvalues, components = self.top_components(cov)

        standardized = (data - mean) / std
        positions = standardized @ components.T

        trace = float(np.trace(cov))
        ratio = eigenvalues / trace if trace > 0 else np.zeros(N_COMPONENTS)

        return PCAResult(
            positions=self.rescale(positions),
            eigenvalues=eigenvalues,
            mean=mean,
            std=std,
            components=components,
            explained_variance_ratio=ratio,
            approximate=approximate,
            sample_indices=indices,
        )

    def reduce(self, vectors) -> PCAResult:
        """
        Project feature vectors to three axes, never raising.

        Args:
            vectors: ``(n, D)`` array or a sequence of equal-length vectors.

        Returns:
            PCAResult; ``fallback`` is True when the fixed projection was used.
        """
        n = len(vectors)
        if n == 0:
            return PCAResult(
                positions=np.zeros((0, N_COMPONENTS)),
                eigenvalues=np.zeros(N_COMPONENTS),
                mean=np.zeros(0),
                std=np.zeros(0),
                components=np.zeros((N_COMPONENTS, 0)),
                explained_variance_ratio=np.zeros(N_COMPONENTS),
            )

        try:
            try:
                data = np.asarray(vectors, dtype=np.float64)
            except ValueError as exc:
                raise ReducerFailure(f"Ragged feature vectors: {exc}") from exc
            result = self.fit_transform(data)
        except ReducerFailure as exc:
            logger.warning("PCA failed (%s); using fixed raw-feature projection", exc)
            return self.fallback(vectors)

        if result.approximate:
            logger.info(
                "PCA basis fitted on %d of %d frames (stride subsample)",
                len(result.sample_indices), n,
            )
        return result
