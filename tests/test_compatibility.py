"""Tests for the individual compatibility matrix, covariance models and candidate finders."""
import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from landmark_da.compatibility import (
    FullCovariance,
    IndependentCovariance,
    build_compatibility,
    check_blocks_positive_definite,
)
from landmark_da.errors import NumericalError
from landmark_da.metrics import MahalanobisMetric, MatchingLikelihoodMetric, chi2inv
from landmark_da.scenarios import SyntheticScenarioGenerator
from landmark_da.spatial import (
    KDTreeFinder,
    LinearScanFinder,
    gate_radius,
    make_candidate_finder,
)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def random_scenario():
    """40 landmarks, clutter, 2D."""
    return SyntheticScenarioGenerator(seed=7, noise_std=0.3, clutter_rate=5.0).random_map(
        n_landmarks=40, extent=5.0)


@pytest.fixture
def three_landmarks():
    Y = np.array([[0.0, 0.0], [1.0, 0.0], [2.0, 0.0]])
    Z = Y.copy()
    covs = np.stack([np.eye(2)] * 3)
    return Z, Y, IndependentCovariance(covs)


def _build(Z, Y, cov, quantile=0.99, metric=None, kd=False):
    metric = metric or MahalanobisMetric(quantile)
    finder = KDTreeFinder(Y) if kd else LinearScanFinder(Y)
    return build_compatibility(Z, Y, cov, metric, quantile, finder)


# =============================================================================
# COVARIANCE MODELS
# =============================================================================

class TestCovarianceModels:

    def test_full_blocks_and_joint(self):
        P = np.arange(36, dtype=float).reshape(6, 6)
        cov = FullCovariance(P, dim=2)
        assert cov.n == 3
        assert_array_equal(cov.block(1), P[2:4, 2:4])
        J = cov.joint_covariance([2, 0])
        assert J.shape == (4, 4)
        assert_array_equal(J[:2, :2], P[4:6, 4:6])
        assert_array_equal(J[:2, 2:], P[4:6, 0:2])

    def test_independent_joint_is_block_diagonal(self):
        blocks = np.stack([np.eye(2) * 2.0, np.eye(2) * 3.0])
        cov = IndependentCovariance(blocks)
        J = cov.joint_covariance([1, 0])
        assert_array_equal(J[:2, :2], blocks[1])
        assert_array_equal(J[2:, 2:], blocks[0])
        assert_array_equal(J[:2, 2:], np.zeros((2, 2)))

    def test_max_eigenvalue(self):
        blocks = np.stack([np.diag([1.0, 4.0]), np.diag([2.0, 0.5])])
        assert_allclose(IndependentCovariance(blocks).max_eigenvalue(), 4.0)

    def test_pd_check_reports_index(self):
        blocks = np.stack([np.eye(2), np.array([[1.0, 2.0], [2.0, 1.0]])])
        with pytest.raises(NumericalError) as exc_info:
            check_blocks_positive_definite(IndependentCovariance(blocks))
        assert exc_info.value.index == 1


# =============================================================================
# CANDIDATE FINDERS
# =============================================================================

class TestCandidateFinders:

    def test_gate_radius(self):
        assert_allclose(gate_radius(9.0, 4.0), 6.0)
        assert gate_radius(9.0, 0.0) == np.inf
        assert gate_radius(9.0, np.inf) == np.inf

    def test_linear_returns_all(self):
        f = LinearScanFinder(np.zeros((4, 2)))
        assert f.candidates(np.array([100.0, 100.0]), 0.1) == [0, 1, 2, 3]

    def test_kdtree_ball_query(self):
        Y = np.array([[0.0, 0.0], [1.0, 0.0], [5.0, 5.0]])
        f = KDTreeFinder(Y)
        assert f.candidates(np.array([0.0, 0.0]), 1.0) == [0, 1]
        assert f.candidates(np.array([0.0, 0.0]), np.inf) == [0, 1, 2]

    def test_factory(self):
        Y = np.zeros((3, 2))
        assert make_candidate_finder(Y, use_kd_tree=True).name == "kdtree"
        assert make_candidate_finder(Y, use_kd_tree=False).name == "linear"
        assert make_candidate_finder(np.zeros((0, 2)), use_kd_tree=True).name == "linear"


# =============================================================================
# COMPATIBILITY MATRIX
# =============================================================================

class TestCompatibilityMatrix:

    def test_values_and_gate(self, three_landmarks):
        Z, Y, cov = three_landmarks
        m = _build(Z, Y, cov, quantile=0.5)
        # d² = (i - j)² with unit covariance
        expected = (np.arange(3)[:, None] - np.arange(3)[None, :]) ** 2
        assert_allclose(m.mahalanobis, expected, atol=1e-12)
        assert_array_equal(m.compatible, expected <= chi2inv(0.5, 2))
        assert_array_equal(m.counts, [2, 3, 2])
        assert m.candidates(1) == [0, 1, 2]
        assert_allclose(m.logdets, np.zeros(3), atol=1e-12)
        assert m.n_tests == 9

    def test_likelihood_distances(self, three_landmarks):
        Z, Y, cov = three_landmarks
        m = _build(Z, Y, cov, metric=MatchingLikelihoodMetric())
        assert_allclose(m.distances[0, 0], -np.log(2 * np.pi), rtol=1e-12)
        assert m.distances[0, 0] > m.distances[0, 1] > m.distances[0, 2]

    def test_kdtree_matches_linear_scan(self, random_scenario):
        sc = random_scenario
        cov = IndependentCovariance(sc.prediction_covs)
        lin = _build(sc.observations, sc.prediction_means, cov)
        kd = _build(sc.observations, sc.prediction_means, cov, kd=True)
        assert_array_equal(kd.compatible, lin.compatible)
        assert_array_equal(kd.counts, lin.counts)
        mask = lin.compatible
        assert_allclose(kd.mahalanobis[mask], lin.mahalanobis[mask])
        assert_allclose(kd.distances[mask], lin.distances[mask])
        assert kd.n_tests <= lin.n_tests

    def test_kdtree_matches_linear_scan_full(self, random_scenario):
        sc = random_scenario
        cov = FullCovariance(sc.full_cov, 2)
        lin = _build(sc.observations, sc.prediction_means, cov, quantile=0.999)
        kd = _build(sc.observations, sc.prediction_means, cov, quantile=0.999, kd=True)
        assert_array_equal(kd.compatible, lin.compatible)

    def test_untested_pairs_get_worst_value(self):
        Y = np.array([[0.0, 0.0], [100.0, 0.0]])
        Z = np.array([[0.0, 0.0]])
        cov = IndependentCovariance(np.stack([0.01 * np.eye(2)] * 2))
        m = _build(Z, Y, cov, kd=True)
        assert m.compatible[0, 0] and not m.compatible[0, 1]
        assert m.distances[0, 1] == np.inf
        assert m.n_tests == 1

    @pytest.mark.parametrize("q_low,q_high", [(0.5, 0.9), (0.9, 0.99), (0.99, 0.9999)])
    def test_larger_quantile_never_shrinks_compatibility(self, random_scenario, q_low, q_high):
        sc = random_scenario
        cov = IndependentCovariance(sc.prediction_covs)
        low = _build(sc.observations, sc.prediction_means, cov, quantile=q_low, kd=True)
        high = _build(sc.observations, sc.prediction_means, cov, quantile=q_high, kd=True)
        assert np.all(high.compatible[low.compatible])
        assert np.all(high.counts >= low.counts)

    def test_non_pd_block_is_incompatible(self):
        Y = np.zeros((2, 2))
        Z = np.zeros((1, 2))
        blocks = np.stack([np.array([[1.0, 2.0], [2.0, 1.0]]), np.eye(2)])
        m = _build(Z, Y, IndependentCovariance(blocks))
        assert_array_equal(m.compatible, [[False, True]])
        assert np.isnan(m.logdets[0])

    def test_empty(self):
        cov = IndependentCovariance(np.zeros((0, 2, 2)))
        m = _build(np.zeros((3, 2)), np.zeros((0, 2)), cov)
        assert m.shape == (3, 0)
        assert_array_equal(m.counts, [0, 0, 0])
