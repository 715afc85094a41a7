"""Public entry points and result packaging for data association queries.

Three entry points share one pipeline (validate → individual compatibility →
NN or JCBB → result):

- :func:`associate_full_covariance`   — predictions with cross-covariances
- :func:`associate_independent`       — mutually independent predictions
- :func:`associate_gaussian_points`   — a list of :class:`GaussianPoint`

Usage::

    from landmark_da import associate_independent
    res = associate_independent(Z, Y, Y_covs, method="jcbb", chi2quantile=0.99)
    for obs, pred in res.pairs():
        ...

All structural and configuration errors are raised before any computation.
License: AGPL-3.0-or-later
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .compatibility import (
    CompatibilityMatrix,
    FullCovariance,
    IndependentCovariance,
    build_compatibility,
    check_blocks_positive_definite,
)
from .config import AssociationConfig, AssociationMethod, AssociationMetric, resolve_config
from .errors import InvalidInputError
from .hypothesis import Hypothesis
from .jcbb import JCBBSearcher
from .metrics import make_metric
from .nearest_neighbor import nearest_neighbor_match, score_hypothesis
from .spatial import make_candidate_finder

logger = logging.getLogger(__name__)


# ===== RESULT =====

@dataclass
class AssociationResult:
    """Outcome of one association query.

    Attributes:
        associations: {observation index: prediction index or external ID}
        distance: Joint d² (Mahalanobis) or joint logL of the chosen hypothesis
        indiv_distances: M×N individual metric values
        indiv_compatibility: M×N individual chi-square test outcomes
        indiv_compatibility_counts: Compatible predictions per observation
        n_nodes_explored: JCBB nodes (0 for nearest neighbor)
        method: Search that produced the result
        metric: Metric of ``distance`` and ``indiv_distances``
        search_truncated: JCBB stopped on the node budget
        elapsed_ms: Wall time of the query
    """
    associations: Dict[int, Any] = field(default_factory=dict)
    distance: float = 0.0
    indiv_distances: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    indiv_compatibility: np.ndarray = field(
        default_factory=lambda: np.zeros((0, 0), dtype=bool))
    indiv_compatibility_counts: np.ndarray = field(
        default_factory=lambda: np.zeros(0, dtype=int))
    n_nodes_explored: int = 0
    method: AssociationMethod = AssociationMethod.JCBB
    metric: AssociationMetric = AssociationMetric.MAHALANOBIS
    search_truncated: bool = False
    elapsed_ms: float = 0.0

    @property
    def n_associations(self) -> int:
        return len(self.associations)

    @property
    def n_observations(self) -> int:
        return self.indiv_compatibility.shape[0]

    def pairs(self) -> List[Tuple[int, Any]]:
        """(observation, prediction) pairs sorted by observation index."""
        return sorted(self.associations.items(), key=lambda kv: kv[0])

    def unassociated_observations(self) -> List[int]:
        return [i for i in range(self.n_observations) if i not in self.associations]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "associations": {int(k): v for k, v in self.associations.items()},
            "distance": float(self.distance),
            "indiv_distances": self.indiv_distances.tolist(),
            "indiv_compatibility": self.indiv_compatibility.tolist(),
            "indiv_compatibility_counts": self.indiv_compatibility_counts.tolist(),
            "n_nodes_explored": int(self.n_nodes_explored),
            "method": self.method.value,
            "metric": self.metric.value,
            "search_truncated": self.search_truncated,
            "elapsed_ms": self.elapsed_ms,
        }

    def __repr__(self):
        return (f"AssociationResult({self.method.name}, {self.n_associations} pairs, "
                f"distance={self.distance:.3f}, nodes={self.n_nodes_explored})")


def aggregate_result(hypothesis: Hypothesis, matrix: CompatibilityMatrix,
                     config: AssociationConfig, n_nodes: int = 0,
                     truncated: bool = False, elapsed_ms: float = 0.0) -> AssociationResult:
    """Remap prediction indices through the ID table and package diagnostics."""
    ids = config.prediction_ids
    if ids is None:
        associations = {int(i): int(j) for i, j in sorted(hypothesis.pairs.items())}
    else:
        associations = {int(i): ids[j] for i, j in sorted(hypothesis.pairs.items())}

    return AssociationResult(
        associations=associations,
        distance=float(hypothesis.statistic),
        indiv_distances=matrix.distances,
        indiv_compatibility=matrix.compatible,
        indiv_compatibility_counts=matrix.counts,
        n_nodes_explored=int(n_nodes),
        method=config.method,
        metric=config.metric,
        search_truncated=truncated,
        elapsed_ms=elapsed_ms,
    )


# ===== INPUT VALIDATION =====

def _as_matrix(name: str, value, dim: Optional[int] = None) -> np.ndarray:
    try:
        arr = np.asarray(value, dtype=float)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"{name} must be a numeric array: {exc}",
                                argument=name) from exc
    if arr.ndim == 1 and arr.size == 0:
        arr = arr.reshape(0, dim if dim is not None else 0)
    if arr.ndim != 2:
        raise InvalidInputError(f"{name} must be a 2-D array, got shape {arr.shape}",
                                argument=name)
    bad = np.flatnonzero(~np.all(np.isfinite(arr), axis=1)) if arr.size else []
    if len(bad):
        raise InvalidInputError(f"{name} row {bad[0]} contains non-finite values",
                                argument=name, index=int(bad[0]))
    return arr


def _validate_means(observations, means) -> Tuple[np.ndarray, np.ndarray, int]:
    Y = _as_matrix("prediction_means", means)
    Z = _as_matrix("observations", observations, dim=Y.shape[1])
    if Y.shape[0] == 0 and Y.shape[1] == 0:
        Y = Y.reshape(0, Z.shape[1])

    M, O = Z.shape
    N, Oy = Y.shape
    if O != Oy:
        raise InvalidInputError(
            f"observations have dimension {O} but predictions have {Oy}",
            argument="prediction_means")
    if O == 0 and (M > 0 or N > 0):
        raise InvalidInputError("observation dimension must be at least 1",
                                argument="observations")
    return Z, Y, O


def _validate_ids(ids: Optional[Sequence[Any]], n: int) -> None:
    if ids is None:
        return
    if len(ids) != n:
        raise InvalidInputError(
            f"prediction_ids has {len(ids)} entries for {n} predictions",
            argument="prediction_ids")
    seen = {}
    for j, pid in enumerate(ids):
        try:
            if pid in seen:
                raise InvalidInputError(
                    f"prediction_ids[{j}] duplicates prediction_ids[{seen[pid]}]",
                    argument="prediction_ids", index=j)
            seen[pid] = j
        except TypeError as exc:
            raise InvalidInputError(f"prediction_ids[{j}] is not hashable",
                                    argument="prediction_ids", index=j) from exc


def _full_covariance(cov, n: int, dim: int) -> FullCovariance:
    try:
        P = np.asarray(cov, dtype=float)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"prediction_cov must be numeric: {exc}",
                                argument="prediction_cov") from exc
    if n == 0 and P.size == 0:
        P = P.reshape(0, 0)
    expected = (n * dim, n * dim)
    if P.shape != expected:
        raise InvalidInputError(
            f"prediction_cov must have shape {expected}, got {P.shape}",
            argument="prediction_cov")
    if P.size and not np.all(np.isfinite(P)):
        raise InvalidInputError("prediction_cov contains non-finite values",
                                argument="prediction_cov")
    return FullCovariance(P, dim)


def _independent_covariance(covs, n: int, dim: int) -> IndependentCovariance:
    try:
        P = np.asarray(covs, dtype=float)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"prediction_covs must be numeric: {exc}",
                                argument="prediction_covs") from exc
    if n == 0 and P.size == 0:
        return IndependentCovariance(np.zeros((0, dim, dim)))

    if P.ndim == 2 and P.shape == (n * dim, dim):
        P = P.reshape(n, dim, dim)
    if P.shape != (n, dim, dim):
        raise InvalidInputError(
            f"prediction_covs must have shape {(n * dim, dim)} or {(n, dim, dim)}, "
            f"got {P.shape}", argument="prediction_covs")
    bad = np.flatnonzero(~np.all(np.isfinite(P.reshape(n, -1)), axis=1))
    if len(bad):
        raise InvalidInputError(
            f"covariance block {bad[0]} contains non-finite values",
            argument="prediction_covs", index=int(bad[0]))
    return IndependentCovariance(P)


# ===== PIPELINE =====

def run_association(observations: np.ndarray, means: np.ndarray, cov,
                    config: AssociationConfig) -> AssociationResult:
    """Core pipeline on already validated inputs."""
    t0 = time.perf_counter()
    _validate_ids(config.prediction_ids, len(means))
    if config.validate_covariances:
        check_blocks_positive_definite(cov)

    metric = make_metric(config.metric, config.chi2quantile,
                         config.log_ml_compat_test_threshold)
    test_metric = make_metric(config.compatibility_test_metric, config.chi2quantile,
                              config.log_ml_compat_test_threshold)
    finder = make_candidate_finder(means, config.use_kd_tree)
    matrix = build_compatibility(observations, means, cov, metric,
                                 config.chi2quantile, finder)

    n_nodes = 0
    truncated = False
    if config.method is AssociationMethod.NN:
        hyp = nearest_neighbor_match(matrix, metric)
        hyp = score_hypothesis(hyp, observations, means, cov, matrix, metric)
    else:
        outcome = JCBBSearcher(observations, means, cov, matrix, metric, test_metric,
                               max_nodes=config.max_nodes,
                               n_workers=config.n_workers).search()
        hyp = outcome.hypothesis
        n_nodes = outcome.n_nodes
        truncated = outcome.truncated
        if truncated:
            logger.warning("JCBB stopped after %d nodes; returning best hypothesis so far",
                           n_nodes)

    elapsed_ms = (time.perf_counter() - t0) * 1000.0
    result = aggregate_result(hyp, matrix, config, n_nodes=n_nodes,
                              truncated=truncated, elapsed_ms=elapsed_ms)
    logger.info("%s: %d observations, %d predictions -> %d associations "
                "(distance=%.3f, nodes=%d, %.1f ms)",
                config.method.name, len(observations), len(means),
                result.n_associations, result.distance, n_nodes, elapsed_ms)
    return result


def associate_full_covariance(observations, prediction_means, prediction_cov,
                              config: Optional[AssociationConfig] = None,
                              **overrides) -> AssociationResult:
    """Associate observations to predictions with full cross-covariances.

    Args:
        observations: M×O observation means
        prediction_means: N×O prediction means
        prediction_cov: (N·O)×(N·O) joint covariance of all predictions
        config: AssociationConfig (defaults: JCBB, Mahalanobis, 0.99)
        **overrides: Any AssociationConfig field, e.g. ``method="nn"``

    Returns:
        AssociationResult

    Raises:
        ConfigurationError, InvalidInputError, NumericalError
    """
    cfg = resolve_config(config, **overrides)
    Z, Y, O = _validate_means(observations, prediction_means)
    cov = _full_covariance(prediction_cov, len(Y), O)
    return run_association(Z, Y, cov, cfg)


def associate_independent(observations, prediction_means, prediction_covs,
                          config: Optional[AssociationConfig] = None,
                          **overrides) -> AssociationResult:
    """Associate observations to mutually independent predictions.

    Args:
        observations: M×O observation means
        prediction_means: N×O prediction means
        prediction_covs: (N·O)×O vertical stack of blocks, or an N×O×O array
        config: AssociationConfig
        **overrides: Any AssociationConfig field

    Returns:
        AssociationResult
    """
    cfg = resolve_config(config, **overrides)
    Z, Y, O = _validate_means(observations, prediction_means)
    cov = _independent_covariance(prediction_covs, len(Y), O)
    return run_association(Z, Y, cov, cfg)


@dataclass
class GaussianPoint:
    """A predicted 2D/3D point: mean, covariance and an optional landmark ID."""
    mean: np.ndarray
    cov: np.ndarray
    id: Any = None

    def __post_init__(self):
        self.mean = np.asarray(self.mean, dtype=float).ravel()
        self.cov = np.asarray(self.cov, dtype=float)


def associate_gaussian_points(observations, points: Sequence[GaussianPoint],
                              config: Optional[AssociationConfig] = None,
                              **overrides) -> AssociationResult:
    """Independent-predictions association for a list of Gaussian points.

    When every point carries an ``id`` and no ``prediction_ids`` is configured,
    the result maps observations to those IDs.
    """
    points = list(points)
    dims = {p.mean.shape[0] for p in points}
    if len(dims) > 1:
        raise InvalidInputError(f"points mix dimensions {sorted(dims)}",
                                argument="points")
    for j, p in enumerate(points):
        d = p.mean.shape[0]
        if p.cov.shape != (d, d):
            raise InvalidInputError(
                f"point {j} covariance has shape {p.cov.shape}, expected {(d, d)}",
                argument="points", index=j)

    if points and all(p.id is not None for p in points) \
            and "prediction_ids" not in overrides \
            and (config is None or config.prediction_ids is None):
        overrides["prediction_ids"] = [p.id for p in points]

    if dims:
        dim = dims.pop()
    else:
        Z = np.asarray(observations, dtype=float)
        dim = Z.shape[1] if Z.ndim == 2 else 0
    means = np.array([p.mean for p in points]).reshape(len(points), dim)
    covs = np.array([p.cov for p in points]).reshape(len(points), dim, dim)
    return associate_independent(observations, means, covs, config, **overrides)
