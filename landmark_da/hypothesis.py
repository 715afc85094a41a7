"""Association hypotheses and their joint statistics."""

from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

import numpy as np

from .compatibility import CompatibilityMatrix
from .errors import NumericalError
from .metrics import Metric, gaussian_statistics


@dataclass
class Hypothesis:
    """Partial injective mapping observation index -> prediction index.

    Attributes:
        pairs: {observation: prediction}
        statistic: Joint value of the ranking metric (d² or logL)
        order_key: Position of the hypothesis in the depth-first traversal
    """
    pairs: Dict[int, int] = field(default_factory=dict)
    statistic: float = 0.0
    order_key: Tuple[int, ...] = ()

    @property
    def cardinality(self) -> int:
        return len(self.pairs)

    def is_injective(self) -> bool:
        return len(set(self.pairs.values())) == len(self.pairs)

    def __repr__(self):
        body = ", ".join(f"{i}->{j}" for i, j in sorted(self.pairs.items()))
        return f"Hypothesis({{{body}}}, stat={self.statistic:.3f})"


def joint_gaussian_statistics(pairs: Sequence[Tuple[int, int]],
                              observations: np.ndarray, means: np.ndarray,
                              cov, matrix: CompatibilityMatrix) -> Tuple[float, float]:
    """``(d², ln|S|)`` of the stacked innovation of a set of pairs.

    Independent predictions decouple, so the joint values are sums of the
    individual ones already stored in ``matrix``. With cross-covariances the
    (k·O)×(k·O) submatrix is factorised.

    Raises:
        NumericalError: if the joint covariance is not positive-definite
    """
    if not pairs:
        return 0.0, 0.0

    if cov.independent:
        d2 = 0.0
        logdet = 0.0
        for i, j in pairs:
            d2 += matrix.mahalanobis[i, j]
            logdet += matrix.logdets[j]
        if np.isfinite(d2) and np.isfinite(logdet):
            return float(d2), float(logdet)

    obs_idx = [i for i, _ in pairs]
    pred_idx = [j for _, j in pairs]
    v = (observations[obs_idx] - means[pred_idx]).ravel()
    S = cov.joint_covariance(pred_idx)
    try:
        return gaussian_statistics(v, S)
    except NumericalError as exc:
        raise NumericalError(str(exc), pairs=tuple(pairs)) from exc


def hypothesis_statistic(pairs: Sequence[Tuple[int, int]],
                         observations: np.ndarray, means: np.ndarray,
                         cov, matrix: CompatibilityMatrix, metric: Metric) -> float:
    """Ranking value of a hypothesis; raises NumericalError like above."""
    d2, logdet = joint_gaussian_statistics(pairs, observations, means, cov, matrix)
    return metric.value(d2, logdet, len(pairs) * observations.shape[1])


def sorted_pairs(pairs: Dict[int, int]) -> List[Tuple[int, int]]:
    return sorted(pairs.items())
