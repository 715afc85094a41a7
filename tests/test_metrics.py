"""Tests for the Mahalanobis / matching-likelihood metrics and the chi-square gate."""
import numpy as np
import pytest
from numpy.testing import assert_allclose
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from landmark_da.config import AssociationMetric
from landmark_da.errors import NumericalError
from landmark_da.metrics import (
    LOG_2PI,
    MahalanobisMetric,
    MatchingLikelihoodMetric,
    chi2inv,
    gaussian_statistics,
    make_metric,
    matching_log_likelihood,
)


class TestChi2Inverse:
    """Inverse chi-square gate."""

    def test_two_dof_closed_form(self):
        """For 2 dof the inverse CDF is -2 ln(1 - q)."""
        assert_allclose(chi2inv(0.99, 2), -2.0 * np.log(0.01), rtol=1e-10)
        assert_allclose(chi2inv(0.95, 2), -2.0 * np.log(0.05), rtol=1e-10)

    def test_increases_with_quantile_and_dof(self):
        assert chi2inv(0.999, 2) > chi2inv(0.99, 2) > chi2inv(0.9, 2)
        assert chi2inv(0.99, 6) > chi2inv(0.99, 4) > chi2inv(0.99, 2)

    def test_cached(self):
        chi2inv.cache_clear()
        chi2inv(0.99, 3)
        chi2inv(0.99, 3)
        info = chi2inv.cache_info()
        assert info.hits >= 1


class TestGaussianStatistics:
    """d² and log-determinant through one Cholesky factorisation."""

    def test_diagonal_covariance(self):
        d2, logdet = gaussian_statistics(np.array([1.0, 0.0]), np.diag([4.0, 1.0]))
        assert_allclose(d2, 0.25, rtol=1e-12)
        assert_allclose(logdet, np.log(4.0), rtol=1e-12)

    def test_matches_explicit_inverse(self):
        S = np.array([[2.0, 0.3, 0.1], [0.3, 1.5, -0.2], [0.1, -0.2, 1.0]])
        v = np.array([0.4, -1.2, 0.7])
        d2, logdet = gaussian_statistics(v, S)
        assert_allclose(d2, v @ np.linalg.inv(S) @ v, rtol=1e-10)
        assert_allclose(logdet, np.log(np.linalg.det(S)), rtol=1e-10)

    def test_zero_innovation(self):
        d2, _ = gaussian_statistics(np.zeros(2), 0.01 * np.eye(2))
        assert d2 == 0.0

    @pytest.mark.parametrize("S", [
        np.array([[1.0, 2.0], [2.0, 1.0]]),     # indefinite
        np.zeros((2, 2)),                       # singular
        -np.eye(2),                             # negative-definite
    ])
    def test_not_positive_definite_raises(self, S):
        with pytest.raises(NumericalError):
            gaussian_statistics(np.array([1.0, 1.0]), S)

    def test_non_finite_raises(self):
        with pytest.raises(NumericalError):
            gaussian_statistics(np.ones(2), np.array([[np.nan, 0.0], [0.0, 1.0]]))


class TestMetricStrategies:
    """Ordering, gating and factory of the two metrics."""

    def test_log_likelihood_formula(self):
        assert_allclose(matching_log_likelihood(0.0, 0.0, 2), -LOG_2PI, rtol=1e-12)
        d2, logdet = 1.3, np.log(0.0001)
        assert_allclose(matching_log_likelihood(d2, logdet, 2),
                        -0.5 * (2 * np.log(2 * np.pi) + logdet + d2), rtol=1e-12)

    def test_mahalanobis_lower_is_better(self):
        m = MahalanobisMetric(0.99)
        assert m.is_better(1.0, 2.0)
        assert not m.is_better(2.0, 2.0)
        assert m.worst == np.inf
        assert m.value(3.5, 10.0, 2) == 3.5

    def test_mahalanobis_gate(self):
        m = MahalanobisMetric(0.99)
        assert m.passes(9.0, 2)
        assert not m.passes(9.3, 2)
        assert m.passes(9.3, 4)

    def test_likelihood_higher_is_better(self):
        m = MatchingLikelihoodMetric(log_threshold=-5.0)
        assert m.is_better(-1.0, -2.0)
        assert m.worst == -np.inf
        assert m.passes(-4.0, 2)
        assert not m.passes(-6.0, 2)
        assert m.threshold(10) == -5.0

    def test_likelihood_prefers_smaller_distance(self):
        m = MatchingLikelihoodMetric()
        assert m.is_better(m.value(0.5, 0.0, 2), m.value(1.5, 0.0, 2))

    def test_factory(self):
        assert isinstance(make_metric(AssociationMetric.MAHALANOBIS, 0.9), MahalanobisMetric)
        ml = make_metric(AssociationMetric.MATCHING_LIKELIHOOD, log_threshold=-2.0)
        assert isinstance(ml, MatchingLikelihoodMetric)
        assert ml.log_threshold == -2.0
