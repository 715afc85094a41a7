"""Pairwise and joint compatibility metrics.

Both metrics are computed from the innovation ``v = z - y`` and its
covariance ``S`` through a single Cholesky factorisation:

    d²   = vᵀ S⁻¹ v                                  (Mahalanobis)
    logL = -0.5 · (dof · ln 2π + ln|S| + d²)         (matching likelihood)

A covariance that cannot be factorised raises :class:`NumericalError`; the
callers turn that into "not compatible" for the pair or branch concerned.

References:
  - Neira, Tardós (2001) — "Data association in stochastic mapping using
    the joint compatibility test"
  - Blanco, González-Jiménez, Fernández-Madrigal (2012) — "An alternative to
    the Mahalanobis distance for determining optimal correspondences in
    data association"
"""

from functools import lru_cache
from typing import Tuple, Union

import numpy as np
from scipy.linalg import cho_factor, cho_solve, LinAlgError
from scipy.stats import chi2

from .config import AssociationMetric
from .errors import NumericalError

LOG_2PI = float(np.log(2.0 * np.pi))


@lru_cache(maxsize=256)
def chi2inv(quantile: float, dof: int) -> float:
    """Inverse chi-square CDF: the gate for ``dof`` degrees of freedom."""
    return float(chi2.ppf(quantile, dof))


def gaussian_statistics(innovation: np.ndarray, S: np.ndarray) -> Tuple[float, float]:
    """Return ``(d², ln|S|)`` for an innovation and its covariance.

    Raises:
        NumericalError: if ``S`` is not positive-definite
    """
    v = np.asarray(innovation, dtype=float).ravel()
    try:
        c, lower = cho_factor(S, lower=True, check_finite=True)
    except (LinAlgError, ValueError) as exc:
        raise NumericalError(f"Covariance is not positive-definite: {exc}") from exc

    diag = np.diag(c)
    if np.any(diag <= 0.0):
        raise NumericalError("Covariance is not positive-definite")

    d2 = float(v @ cho_solve((c, lower), v))
    logdet = float(2.0 * np.sum(np.log(diag)))
    return d2, logdet


def matching_log_likelihood(d2: float, logdet: float, dof: int) -> float:
    """Gaussian log-density of an innovation with squared distance ``d2``."""
    return -0.5 * (dof * LOG_2PI + logdet + d2)


# ===== METRIC STRATEGIES =====

class MahalanobisMetric:
    """Lower is better; gated by the chi-square quantile at ``dof``."""

    kind = AssociationMetric.MAHALANOBIS
    worst = float('inf')

    def __init__(self, quantile: float = 0.99):
        self.quantile = quantile

    def value(self, d2: float, logdet: float, dof: int) -> float:
        return d2

    def threshold(self, dof: int) -> float:
        return chi2inv(self.quantile, dof)

    def passes(self, value: float, dof: int) -> bool:
        return value <= self.threshold(dof)

    def is_better(self, a: float, b: float) -> bool:
        """True if ``a`` is strictly better than ``b``."""
        return a < b

    def __repr__(self):
        return f"MahalanobisMetric(quantile={self.quantile})"


class MatchingLikelihoodMetric:
    """Higher is better; gated by a fixed log-likelihood threshold."""

    kind = AssociationMetric.MATCHING_LIKELIHOOD
    worst = float('-inf')

    def __init__(self, log_threshold: float = 0.0):
        self.log_threshold = log_threshold

    def value(self, d2: float, logdet: float, dof: int) -> float:
        return matching_log_likelihood(d2, logdet, dof)

    def threshold(self, dof: int) -> float:
        return self.log_threshold

    def passes(self, value: float, dof: int) -> bool:
        return value >= self.log_threshold

    def is_better(self, a: float, b: float) -> bool:
        return a > b

    def __repr__(self):
        return f"MatchingLikelihoodMetric(log_threshold={self.log_threshold})"


Metric = Union[MahalanobisMetric, MatchingLikelihoodMetric]


def make_metric(kind: AssociationMetric, quantile: float = 0.99,
                log_threshold: float = 0.0) -> Metric:
    """Pick the metric strategy once per query."""
    if kind is AssociationMetric.MAHALANOBIS:
        return MahalanobisMetric(quantile)
    return MatchingLikelihoodMetric(log_threshold)
