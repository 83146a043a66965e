"""Tests for the power-iteration PCA reducer."""

import numpy as np
import pytest

from audiomanifold.core.reducer import PCAReducer, build_feature_vector
from audiomanifold.errors import ReducerFailure


@pytest.fixture
def reducer():
    return PCAReducer()


def factor_data(n=300, seed=0):
    """Three latent factors of decreasing strength mixed into 10 dims."""
    rng = np.random.default_rng(seed)
    latent = rng.standard_normal((n, 3)) * np.array([5.0, 2.0, 1.0])
    mixing = rng.standard_normal((3, 10))
    return latent @ mixing + 0.05 * rng.standard_normal((n, 10))


class TestFeatureVector:
    def test_layout(self):
        vec = build_feature_vector(
            mfcc=np.arange(40.0),
            chroma=np.eye(12)[3],
            f0=440.0,
            f0_confidence=0.5,
            centroid=4000.0,
            loudness=0.2,
            bandwidth=2000.0,
        )
        assert vec.shape == (40 + 12 + 5,)
        np.testing.assert_array_equal(vec[:40], np.arange(40.0))
        assert vec[52] == pytest.approx(np.log2(440.0) / 11.0 * 0.5)
        assert vec[53] == pytest.approx(0.5)
        assert vec[54] == pytest.approx(0.2)
        assert vec[55] == pytest.approx(0.5)
        assert vec[56] == pytest.approx(1.0)

    def test_unvoiced_pitch_is_zero(self):
        for f0 in (None, float("nan"), 0.0):
            vec = build_feature_vector(np.zeros(4), np.zeros(12), f0, 0.0, 0.0, 0.0, 0.0)
            assert vec[16] == 0.0


class TestComponents:
    def test_eigenvalues_non_increasing(self, reducer):
        result = reducer.reduce(factor_data())
        ev = result.eigenvalues
        assert ev[0] >= ev[1] >= ev[2] >= 0
        assert not result.fallback

    def test_components_are_unit_and_orthogonal(self, reducer):
        result = reducer.reduce(factor_data())
        gram = result.components @ result.components.T
        np.testing.assert_allclose(gram, np.eye(3), atol=1e-4)

    def test_matches_numpy_eigh(self, reducer):
        data = factor_data()
        mean, std = PCAReducer.standardize_params(data)
        cov = PCAReducer.covariance((data - mean) / std)
        eigenvalues, _ = reducer.top_components(cov)
        expected = np.sort(np.linalg.eigvalsh(cov))[::-1][:3]
        np.testing.assert_allclose(eigenvalues, expected, rtol=1e-3)

    def test_covariance_is_symmetric(self):
        data = factor_data(n=50)
        cov = PCAReducer.covariance(data - data.mean(axis=0))
        np.testing.assert_allclose(cov, cov.T)
        np.testing.assert_allclose(cov, np.cov(data.T, bias=True), atol=1e-10)

    def test_bad_matrix_raises(self, reducer):
        with pytest.raises(ReducerFailure):
            reducer.top_components(np.zeros((3, 4)))
        with pytest.raises(ReducerFailure):
            reducer.top_components(np.full((3, 3), np.nan))


class TestProjection:
    def test_two_clusters_separate(self, reducer):
        rng = np.random.default_rng(1)
        a = rng.normal(0.0, 0.1, (50, 10))
        b = rng.normal(5.0, 0.1, (50, 10))
        positions = reducer.reduce(np.vstack([a, b])).positions

        gap = abs(positions[:50, 0].mean() - positions[50:, 0].mean())
        assert gap > 5.0

    def test_positions_within_scale(self, reducer):
        positions = reducer.reduce(factor_data()).positions
        assert positions.shape == (300, 3)
        assert np.all(np.abs(positions) <= 5.0 + 1e-9)
        np.testing.assert_allclose(positions.min(axis=0), -5.0)
        np.testing.assert_allclose(positions.max(axis=0), 5.0)

    def test_zero_variance_does_not_fail(self, reducer):
        result = reducer.reduce(np.ones((20, 8)))
        assert not result.fallback
        assert np.all(np.isfinite(result.positions))
        np.testing.assert_array_equal(result.std, np.ones(8))

    def test_deterministic(self, reducer):
        data = factor_data()
        np.testing.assert_array_equal(
            reducer.reduce(data).positions, reducer.reduce(data).positions
        )

    def test_subsampled_basis(self):
        reducer = PCAReducer(sample_limit=50)
        result = reducer.reduce(factor_data(n=200))
        assert result.approximate
        assert len(result.sample_indices) == 50
        assert result.positions.shape == (200, 3)

    def test_small_input_is_exact(self, reducer):
        assert not reducer.reduce(factor_data(n=20)).approximate

    def test_empty(self, reducer):
        result = reducer.reduce([])
        assert result.positions.shape == (0, 3)


class TestFallback:
    def test_ragged_vectors(self, reducer):
        result = reducer.reduce([[1.0, 2.0, 3.0, 4.0], [1.0, 2.0]])
        assert result.fallback
        assert result.positions.shape == (2, 3)
        assert np.all(np.isfinite(result.positions))

    def test_non_finite_values(self, reducer):
        data = factor_data(n=30)
        data[4, 2] = np.inf
        result = reducer.reduce(data)
        assert result.fallback
        assert np.all(np.isfinite(result.positions))
