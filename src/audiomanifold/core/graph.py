"""
Sparse neighbour graph over the embedded points of a phrase.

Union k-nearest-neighbour semantics: edge (i, j) exists when i is among
j's k nearest points or j is among i's. Edges are stored as ``(min, max)``
and deduplicated.
"""

import math

import numpy as np
from scipy.spatial import cKDTree


class GraphBuilder:
    """Builds per-phrase k-NN edge lists in the 3D embedded space."""

    def __init__(self, k: int = 3, max_points: int = 400):
        """
        Args:
            k: Neighbours linked from every point.
            max_points: Phrases are downsampled to at most this many points.
        """
        self.k = k
        self.max_points = max_points

    def downsample(self, indices: np.ndarray) -> np.ndarray:
        """Uniform stride over *indices* keeping at most ``max_points``."""
        step = max(1, math.ceil(len(indices) / self.max_points))
        return np.asarray(indices)[::step]

    def _nearest(self, tree, point, i: int, m: int, n_query: int, distances, neighbours):
        """
        The ``k`` nearest other points to *point*, ordered by (distance, index).

        The tree orders equidistant points arbitrarily, so the query widens
        until every point tied with the k-th neighbour is among the candidates.
        """
        while True:
            candidates = sorted(
                (float(d), int(j))
                for d, j in zip(np.atleast_1d(distances), np.atleast_1d(neighbours))
                if j != i
            )
            if n_query >= m or (
                len(candidates) > self.k
                and candidates[-1][0] > candidates[self.k - 1][0]
            ):
                return candidates[: self.k]
            n_query = min(m, n_query * 2)
            distances, neighbours = tree.query(point, k=n_query)

    def build(self, positions: np.ndarray) -> list[tuple[int, int]]:
        """
        Edges of the union k-NN graph.

        Args:
            positions: ``(m, 3)`` coordinates of one phrase's points.

        Returns:
            ``(i, j)`` pairs with ``i < j``, no self-loops, no duplicates,
            in discovery order. Equidistant neighbours are taken in index
            order, so coincident points give the same graph on every run.
        """
        positions = np.asarray(positions, dtype=np.float64)
        m = len(positions)
        if m < 2:
            return []

        # One spare candidate beyond self so a tie at the k-th distance shows
        n_query = min(self.k + 2, m)
        tree = cKDTree(positions)
        distances, neighbours = tree.query(positions, k=n_query)

        edges = []
        seen = set()
        for i in range(m):
            nearest = self._nearest(
                tree, positions[i], i, m, n_query, distances[i], neighbours[i]
            )
            for _, j in nearest:
                pair = (i, j) if i < j else (j, i)
                if pair not in seen:
                    seen.add(pair)
                    edges.append(pair)
        return edges
