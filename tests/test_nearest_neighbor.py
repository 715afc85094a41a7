"""Tests for the greedy nearest-neighbor matcher."""
import numpy as np
import pytest
from numpy.testing import assert_allclose
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from landmark_da.compatibility import CompatibilityMatrix, FullCovariance, IndependentCovariance
from landmark_da.metrics import MahalanobisMetric, MatchingLikelihoodMetric
from landmark_da.nearest_neighbor import nearest_neighbor_match, score_hypothesis
from landmark_da import associate_independent, associate_full_covariance


def _matrix(distances, compatible=None):
    distances = np.asarray(distances, dtype=float)
    if compatible is None:
        compatible = np.isfinite(distances)
    compatible = np.asarray(compatible, dtype=bool)
    return CompatibilityMatrix(
        compatible=compatible, distances=distances,
        counts=compatible.sum(axis=1), mahalanobis=distances,
        logdets=np.zeros(distances.shape[1]))


class TestGreedyMatch:

    def test_input_order_claims_first(self):
        """Observation 0 claims its nearest even if observation 1 is closer to it."""
        m = _matrix([[1.0, 2.0], [0.5, 3.0]])
        hyp = nearest_neighbor_match(m, MahalanobisMetric())
        assert hyp.pairs == {0: 0, 1: 1}

    def test_no_backtracking(self):
        m = _matrix([[1.0, 2.0], [0.5, np.inf]])
        hyp = nearest_neighbor_match(m, MahalanobisMetric())
        assert hyp.pairs == {0: 0}

    def test_tie_takes_lowest_index(self):
        m = _matrix([[1.0, 1.0, 1.0]])
        assert nearest_neighbor_match(m, MahalanobisMetric()).pairs == {0: 0}

    def test_incompatible_pairs_ignored(self):
        m = _matrix([[0.1, 5.0]], compatible=[[False, True]])
        assert nearest_neighbor_match(m, MahalanobisMetric()).pairs == {0: 1}

    def test_likelihood_prefers_higher(self):
        m = _matrix([[-3.0, -0.5, -1.0]])
        assert nearest_neighbor_match(m, MatchingLikelihoodMetric(-10.0)).pairs == {0: 1}

    def test_injective(self):
        rng = np.random.RandomState(3)
        m = _matrix(rng.rand(8, 5))
        hyp = nearest_neighbor_match(m, MahalanobisMetric())
        assert hyp.is_injective()
        assert hyp.cardinality == 5

    def test_empty(self):
        m = _matrix(np.zeros((0, 3)))
        assert nearest_neighbor_match(m, MahalanobisMetric()).pairs == {}


class TestScoring:

    def test_independent_statistic_is_sum(self):
        Y = np.array([[0.0, 0.0], [10.0, 0.0]])
        Z = np.array([[0.1, 0.0], [10.0, 0.2]])
        covs = np.stack([0.01 * np.eye(2)] * 2)
        res = associate_independent(Z, Y, covs, method="nn")
        assert res.associations == {0: 0, 1: 1}
        assert_allclose(res.distance, 1.0 + 4.0, rtol=1e-9)
        assert res.n_nodes_explored == 0

    def test_full_covariance_statistic(self):
        Y = np.array([[0.0, 0.0], [10.0, 0.0]])
        Z = np.array([[0.1, 0.0], [10.1, 0.0]])
        P = np.kron(np.array([[1.0, 0.5], [0.5, 1.0]]), 0.01 * np.eye(2))
        res = associate_full_covariance(Z, Y, P, method="nn")
        v = (Z - Y).ravel()
        assert_allclose(res.distance, v @ np.linalg.solve(P, v), rtol=1e-9)

    def test_non_pd_joint_covariance_gives_worst(self):
        """Cross-covariance larger than the blocks: the 2-pair joint covariance is indefinite."""
        Y = np.array([[0.0, 0.0], [0.0, 0.0]])
        Z = np.array([[0.05, 0.0], [-0.05, 0.0]])
        P = np.kron(np.array([[1.0, 1.5], [1.5, 1.0]]), 0.01 * np.eye(2))
        cov = FullCovariance(P, 2)
        m = _matrix([[0.25, 0.25], [0.25, 0.25]])
        hyp = nearest_neighbor_match(m, MahalanobisMetric())
        hyp = score_hypothesis(hyp, Z, Y, cov, m, MahalanobisMetric())
        assert hyp.cardinality == 2
        assert hyp.statistic == np.inf

    def test_empty_hypothesis_scores_zero(self):
        cov = IndependentCovariance(np.zeros((0, 2, 2)))
        m = _matrix(np.zeros((1, 0)))
        hyp = score_hypothesis(nearest_neighbor_match(m, MahalanobisMetric()),
                               np.zeros((1, 2)), np.zeros((0, 2)), cov, m,
                               MahalanobisMetric())
        assert hyp.statistic == 0.0
