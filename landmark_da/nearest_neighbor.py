"""Greedy nearest-neighbor matcher.

Observations are processed in input order; each takes the best still
unclaimed, individually compatible prediction (lowest index on ties) and
claims it. No backtracking and no joint test, so the result is injective
but may be jointly inconsistent. O(M·N) on the prebuilt matrix.
"""

import logging

import numpy as np

from .compatibility import CompatibilityMatrix
from .errors import NumericalError
from .hypothesis import Hypothesis, hypothesis_statistic, sorted_pairs
from .metrics import Metric

logger = logging.getLogger(__name__)


def nearest_neighbor_match(matrix: CompatibilityMatrix, metric: Metric) -> Hypothesis:
    """Greedy assignment; the statistic is left at 0 (see :func:`score_hypothesis`)."""
    M, N = matrix.shape
    claimed = np.zeros(N, dtype=bool)
    pairs = {}

    for i in range(M):
        best_j = -1
        best_val = metric.worst
        for j in range(N):
            if claimed[j] or not matrix.compatible[i, j]:
                continue
            val = matrix.distances[i, j]
            # strict comparison keeps the lowest index on ties
            if best_j < 0 or metric.is_better(val, best_val):
                best_j, best_val = j, val
        if best_j >= 0:
            pairs[i] = best_j
            claimed[best_j] = True

    return Hypothesis(pairs=pairs)


def score_hypothesis(hyp: Hypothesis, observations, means, cov,
                     matrix: CompatibilityMatrix, metric: Metric) -> Hypothesis:
    """Fill in the joint statistic; worst value if the joint covariance fails."""
    try:
        hyp.statistic = hypothesis_statistic(sorted_pairs(hyp.pairs), observations,
                                             means, cov, matrix, metric)
    except NumericalError as exc:
        logger.debug("NN hypothesis %s: joint covariance not positive-definite (%s)",
                     hyp.pairs, exc)
        hyp.statistic = metric.worst
    return hyp
