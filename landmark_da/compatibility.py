"""Individual compatibility matrix and prediction covariance models.

Two covariance layouts are supported for the N predictions of dimension O:

- :class:`FullCovariance`        — one (N·O)×(N·O) matrix with cross terms
- :class:`IndependentCovariance` — N separate O×O blocks, no cross terms

Both expose the same small interface used by the matchers:
``block(j)``, ``joint_covariance(js)``, ``max_eigenvalue()`` and the
``independent`` flag.
"""

import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np
from scipy.linalg import LinAlgError, block_diag, cholesky, solve_triangular

from .errors import NumericalError
from .metrics import Metric, chi2inv, gaussian_statistics
from .spatial import CandidateFinder, gate_radius

logger = logging.getLogger(__name__)


# ===== COVARIANCE MODELS =====

class FullCovariance:
    """Joint covariance of all predictions, cross-covariances included."""

    independent = False

    def __init__(self, matrix: np.ndarray, dim: int):
        self.matrix = matrix
        self.dim = dim
        self.n = matrix.shape[0] // dim if dim > 0 else 0

    def _index(self, js: Sequence[int]) -> np.ndarray:
        O = self.dim
        return np.concatenate([np.arange(j * O, (j + 1) * O) for j in js]) \
            if len(js) else np.zeros(0, dtype=int)

    def block(self, j: int) -> np.ndarray:
        O = self.dim
        return self.matrix[j * O:(j + 1) * O, j * O:(j + 1) * O]

    def joint_covariance(self, js: Sequence[int]) -> np.ndarray:
        ix = self._index(js)
        return self.matrix[np.ix_(ix, ix)]

    def max_eigenvalue(self) -> float:
        return _max_block_eigenvalue(self.block(j) for j in range(self.n))


class IndependentCovariance:
    """Per-prediction covariance blocks, predictions mutually independent."""

    independent = True

    def __init__(self, blocks: np.ndarray):
        self.blocks = blocks
        self.n = blocks.shape[0]
        self.dim = blocks.shape[1] if blocks.ndim == 3 else 0

    def block(self, j: int) -> np.ndarray:
        return self.blocks[j]

    def joint_covariance(self, js: Sequence[int]) -> np.ndarray:
        return block_diag(*[self.blocks[j] for j in js])

    def max_eigenvalue(self) -> float:
        return _max_block_eigenvalue(self.blocks)


def _max_block_eigenvalue(blocks) -> float:
    lam = 0.0
    for B in blocks:
        sym = 0.5 * (B + B.T)
        try:
            lam = max(lam, float(np.max(np.linalg.eigvalsh(sym))))
        except np.linalg.LinAlgError:
            return float('inf')
    return lam


def check_blocks_positive_definite(cov) -> None:
    """Cholesky-check every prediction's own block.

    Raises:
        NumericalError: with ``index`` of the first failing prediction
    """
    zero = np.zeros(cov.dim)
    for j in range(cov.n):
        try:
            gaussian_statistics(zero, cov.block(j))
        except NumericalError as exc:
            raise NumericalError(
                f"Covariance block of prediction {j} is not positive-definite",
                index=j) from exc


# ===== INDIVIDUAL COMPATIBILITY =====

@dataclass
class CompatibilityMatrix:
    """Result of the pairwise (individual) compatibility tests.

    Attributes:
        compatible: M×N bool, chi-square gate on d² at O dof
        distances: M×N value of the selected metric (worst value if untested)
        counts: M compatible-prediction counts, one per observation
        mahalanobis: M×N squared Mahalanobis distances (inf if untested)
        logdets: N log-determinants of the prediction blocks (nan if not PD)
        n_tests: number of exact pair tests actually performed
    """
    compatible: np.ndarray
    distances: np.ndarray
    counts: np.ndarray
    mahalanobis: np.ndarray
    logdets: np.ndarray
    n_tests: int = 0

    @property
    def shape(self) -> Tuple[int, int]:
        return self.compatible.shape

    def candidates(self, i: int) -> List[int]:
        """Compatible predictions of observation ``i``, ascending index."""
        return np.flatnonzero(self.compatible[i]).tolist()


def build_compatibility(observations: np.ndarray, means: np.ndarray, cov,
                        metric: Metric, quantile: float,
                        finder: CandidateFinder) -> CompatibilityMatrix:
    """Evaluate the individual compatibility of every observation/prediction pair.

    Args:
        observations: M×O observation means
        means: N×O prediction means
        cov: FullCovariance or IndependentCovariance
        metric: Strategy whose value fills the distance matrix
        quantile: Chi-square confidence of the individual gate
        finder: Candidate lookup (linear scan or k-d tree)

    Returns:
        CompatibilityMatrix
    """
    M, N = len(observations), len(means)
    O = observations.shape[1] if observations.ndim == 2 else 0

    compatible = np.zeros((M, N), dtype=bool)
    distances = np.full((M, N), metric.worst, dtype=float)
    maha = np.full((M, N), np.inf, dtype=float)
    logdets = np.full(N, np.nan, dtype=float)

    if M == 0 or N == 0:
        return CompatibilityMatrix(compatible, distances, np.zeros(M, dtype=int),
                                   maha, logdets, 0)

    gate = chi2inv(quantile, O)
    radius = gate_radius(gate, cov.max_eigenvalue()) if finder.name != "linear" \
        else float('inf')
    logger.debug("Individual gate %.4f (dof=%d), search radius %.4g", gate, O, radius)

    # Cholesky once per prediction block
    factors = {}
    n_tests = 0
    for i in range(M):
        z = observations[i]
        for j in finder.candidates(z, radius):
            if j not in factors:
                factors[j] = _factor_or_none(cov.block(j), j)
            if factors[j] is None:
                continue
            n_tests += 1
            d2 = _solve_d2(factors[j], z - means[j])
            logdet = factors[j][1]
            logdets[j] = logdet
            maha[i, j] = d2
            distances[i, j] = metric.value(d2, logdet, O)
            compatible[i, j] = d2 <= gate

    counts = compatible.sum(axis=1).astype(int)
    logger.debug("Individual compatibility: %d/%d pairs tested, %d compatible",
                 n_tests, M * N, int(counts.sum()))
    return CompatibilityMatrix(compatible, distances, counts, maha, logdets, n_tests)


def _factor_or_none(S: np.ndarray, j: int):
    try:
        L = cholesky(S, lower=True)
    except (LinAlgError, ValueError):
        logger.debug("Prediction %d: covariance block not positive-definite, "
                     "treated as incompatible with every observation", j)
        return None
    return L, float(2.0 * np.sum(np.log(np.diag(L))))


def _solve_d2(factor, v: np.ndarray) -> float:
    L = factor[0]
    w = solve_triangular(L, v, lower=True)
    return float(w @ w)
