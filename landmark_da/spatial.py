"""Candidate lookup for individual compatibility tests.

A finder answers "which predictions lie within ``radius`` of this
observation?". Two interchangeable implementations are provided:

- :class:`LinearScanFinder` — returns every prediction (exact tests on all)
- :class:`KDTreeFinder`     — ``scipy.spatial.cKDTree`` ball query,
  O(log N + k) per observation

The radius handed to ``candidates`` must be conservative (see
:func:`gate_radius`) so that the index never hides a compatible pair.
"""

import logging
from typing import List, Union

import numpy as np
from scipy.spatial import cKDTree

logger = logging.getLogger(__name__)


def gate_radius(gate: float, max_eigenvalue: float) -> float:
    """Euclidean radius enclosing every ellipsoid ``vᵀS⁻¹v <= gate``.

    Since ``vᵀS⁻¹v >= |v|² / λ_max(S)``, any innovation inside the gate has
    ``|v| <= sqrt(gate · λ_max)``.
    """
    if not np.isfinite(max_eigenvalue) or max_eigenvalue <= 0.0:
        return float('inf')
    return float(np.sqrt(gate * max_eigenvalue))


class LinearScanFinder:
    """Trivial finder: every prediction is a candidate."""

    name = "linear"

    def __init__(self, points: np.ndarray):
        self.n = len(points)
        self._all = list(range(self.n))

    def candidates(self, query: np.ndarray, radius: float) -> List[int]:
        return self._all


class KDTreeFinder:
    """Ball query over a k-d tree of prediction means."""

    name = "kdtree"

    def __init__(self, points: np.ndarray):
        self.n = len(points)
        self._tree = cKDTree(points)

    def candidates(self, query: np.ndarray, radius: float) -> List[int]:
        if not np.isfinite(radius):
            return list(range(self.n))
        # Small relative slack so pairs exactly on the gate are not lost
        r = radius * (1.0 + 1e-9) + 1e-12
        return sorted(self._tree.query_ball_point(query, r))


CandidateFinder = Union[LinearScanFinder, KDTreeFinder]


def make_candidate_finder(points: np.ndarray, use_kd_tree: bool = True) -> CandidateFinder:
    """Build the finder selected by configuration."""
    if use_kd_tree and len(points) > 0:
        logger.debug("Indexing %d prediction means in a k-d tree", len(points))
        return KDTreeFinder(points)
    return LinearScanFinder(points)
