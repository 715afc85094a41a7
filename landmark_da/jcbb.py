"""Joint Compatibility Branch and Bound (JCBB).

Search tree: depth k decides observation ``order[k]``; each node either
pairs it with one of its unclaimed, individually compatible predictions or
leaves it unassigned. A pairing is kept only if the *whole* enlarged
hypothesis passes the joint gate (chi-square at k·O dof, or a log-likelihood
threshold). The incumbent is ranked by cardinality first, then by the joint
statistic; a frame whose cardinality plus remaining observations cannot
reach the incumbent's cardinality is pruned.

The traversal is iterative: frames are appended to an arena (a list
addressed by index, each frame pointing at its parent) and expanded from an
explicit stack, children pushed in reverse so the visiting order equals the
recursive depth-first order.

References:
  - Neira, Tardós (2001) — "Data association in stochastic mapping using
    the joint compatibility test", IEEE Trans. Robotics and Automation
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Tuple

import numpy as np

from .compatibility import CompatibilityMatrix
from .errors import NumericalError
from .hypothesis import Hypothesis
from .metrics import Metric, gaussian_statistics

logger = logging.getLogger(__name__)


class _Frame(NamedTuple):
    depth: int            # observations decided so far
    parent: int           # arena index of the parent frame (-1 for root)
    obs: int              # observation paired at this frame (-1: skipped/root)
    pred: int             # prediction paired at this frame (-1: skipped/root)
    cardinality: int
    d2: float             # joint squared Mahalanobis distance
    logdet: float         # joint log-determinant


@dataclass
class SearchOutcome:
    """Best hypothesis plus search diagnostics."""
    hypothesis: Hypothesis
    n_nodes: int = 0
    n_joint_tests: int = 0
    n_numerical_failures: int = 0
    truncated: bool = False


class _SharedSearchState:
    """Incumbent and node budget, shared between worker threads."""

    def __init__(self, metric: Metric, max_nodes: Optional[int]):
        self.metric = metric
        self.max_nodes = max_nodes
        self.lock = threading.Lock()
        self.best = Hypothesis()
        self.nodes = 0
        self.truncated = False

    @property
    def best_cardinality(self) -> int:
        return self.best.cardinality

    def count_node(self) -> bool:
        """Register one explored node; False once the budget is spent."""
        with self.lock:
            if self.max_nodes is not None and self.nodes >= self.max_nodes:
                self.truncated = True
                return False
            self.nodes += 1
            return True

    def offer(self, candidate: Hypothesis) -> bool:
        """Replace the incumbent if ``candidate`` ranks strictly higher.

        Order: more pairs, then better statistic, then earlier in the
        depth-first order. The last criterion makes the outcome independent
        of thread scheduling.
        """
        with self.lock:
            best = self.best
            if candidate.cardinality != best.cardinality:
                better = candidate.cardinality > best.cardinality
            elif candidate.statistic != best.statistic:
                better = self.metric.is_better(candidate.statistic, best.statistic)
            else:
                better = candidate.order_key < best.order_key
            if better:
                self.best = candidate
            return better


class JCBBSearcher:
    """Branch-and-bound search for the largest jointly compatible hypothesis.

    Args:
        observations: M×O observation means
        means: N×O prediction means
        cov: FullCovariance or IndependentCovariance
        matrix: Individual compatibility of every pair
        metric: Ranks complete hypotheses of equal cardinality
        test_metric: Joint acceptance test applied to every enlarged hypothesis
        max_nodes: Optional node budget (the incumbent is returned when spent)
        n_workers: Threads exploring the first-level branches

    Example::

        searcher = JCBBSearcher(Z, Y, cov, matrix, metric, test_metric)
        outcome = searcher.search()
        outcome.hypothesis.pairs   # {obs: pred}
    """

    def __init__(self, observations: np.ndarray, means: np.ndarray, cov,
                 matrix: CompatibilityMatrix, metric: Metric, test_metric: Metric,
                 max_nodes: Optional[int] = None, n_workers: int = 1):
        self.observations = observations
        self.means = means
        self.cov = cov
        self.matrix = matrix
        self.metric = metric
        self.test_metric = test_metric
        self.max_nodes = max_nodes
        self.n_workers = n_workers

        M, N = matrix.shape
        self.n_obs = M
        self.n_pred = N
        self.dim = observations.shape[1] if M else 0
        # Fewest candidates first: constrained observations fail fast
        self.order = sorted(range(M), key=lambda i: (int(matrix.counts[i]), i))
        self._candidates = [matrix.candidates(i) for i in range(M)]

    # ------------------------------------------------------------------
    def search(self) -> SearchOutcome:
        """Run the branch and bound; root and skip frames are not counted as nodes."""
        shared = _SharedSearchState(self.metric, self.max_nodes)
        if self.n_obs == 0 or self.n_pred == 0:
            return SearchOutcome(hypothesis=Hypothesis())

        root = _Frame(0, -1, -1, -1, 0, 0.0, 0.0)
        if self.n_workers > 1:
            tests, failures = self._search_parallel(root, shared)
        else:
            tests, failures = self._explore([root], [()], [0], shared)

        best = shared.best
        logger.debug("JCBB: %d nodes, %d joint tests, %d numerical failures, best=%s%s",
                     shared.nodes, tests, failures, best,
                     " (truncated)" if shared.truncated else "")
        return SearchOutcome(hypothesis=best, n_nodes=shared.nodes,
                             n_joint_tests=tests, n_numerical_failures=failures,
                             truncated=shared.truncated)

    def _search_parallel(self, root: _Frame, shared: _SharedSearchState) -> Tuple[int, int]:
        """Expand the root, then explore each first-level subtree on a worker."""
        children, tests, failures = self._expand(0, [root])

        def run(child: _Frame) -> Tuple[int, int]:
            # Private arena per worker: [root, child]
            return self._explore([root, child], [(), (self._choice(child),)], [1], shared)

        with ThreadPoolExecutor(max_workers=self.n_workers) as executor:
            for t, f in executor.map(run, children):
                tests += t
                failures += f
        return tests, failures

    def _explore(self, arena: List[_Frame], keys: List[Tuple[int, ...]],
                 start: List[int], shared: _SharedSearchState) -> Tuple[int, int]:
        """Depth-first exploration from the ``start`` frames of ``arena``.

        Returns:
            (joint tests performed, numerical failures)
        """
        stack = list(reversed(start))
        tests, failures = 0, 0

        while stack:
            idx = stack.pop()
            frame = arena[idx]

            # Bound: cannot even tie the incumbent's cardinality
            if frame.cardinality + (self.n_obs - frame.depth) < shared.best_cardinality:
                continue
            # Only pairing frames count as explored nodes
            if frame.pred >= 0 and not shared.count_node():
                break

            if frame.depth == self.n_obs:
                stat = self.metric.value(frame.d2, frame.logdet,
                                         frame.cardinality * self.dim)
                shared.offer(Hypothesis(pairs=dict(self._pairs(idx, arena)),
                                        statistic=stat, order_key=keys[idx]))
                continue

            children, t, f = self._expand(idx, arena)
            tests += t
            failures += f
            base = len(arena)
            for child in children:
                arena.append(child)
                keys.append(keys[idx] + (self._choice(child),))
            stack.extend(range(base + len(children) - 1, base - 1, -1))

        return tests, failures

    def _expand(self, idx: int, arena: List[_Frame]) -> Tuple[List[_Frame], int, int]:
        """Children of ``arena[idx]``: every jointly compatible pairing, then skip."""
        frame = arena[idx]
        i = self.order[frame.depth]
        pairs = self._pairs(idx, arena)
        claimed = {j for _, j in pairs}
        k = frame.cardinality + 1
        dof = k * self.dim

        children = []
        tests, failures = 0, 0
        for j in self._candidates[i]:
            if j in claimed:
                continue
            tests += 1
            try:
                d2, logdet = self._joint(frame, pairs, i, j)
            except NumericalError:
                failures += 1
                logger.debug("JCBB: joint covariance of %s + (%d, %d) not "
                             "positive-definite, branch rejected", pairs, i, j)
                continue
            if not self.test_metric.passes(self.test_metric.value(d2, logdet, dof), dof):
                continue
            children.append(_Frame(frame.depth + 1, idx, i, j, k, d2, logdet))

        children.append(_Frame(frame.depth + 1, idx, -1, -1, frame.cardinality,
                               frame.d2, frame.logdet))
        return children, tests, failures

    def _joint(self, frame: _Frame, pairs: List[Tuple[int, int]],
               i: int, j: int) -> Tuple[float, float]:
        if self.cov.independent:
            # Block-diagonal covariance: statistics add up
            return (frame.d2 + float(self.matrix.mahalanobis[i, j]),
                    frame.logdet + float(self.matrix.logdets[j]))
        obs_idx = [p[0] for p in pairs] + [i]
        pred_idx = [p[1] for p in pairs] + [j]
        v = (self.observations[obs_idx] - self.means[pred_idx]).ravel()
        return gaussian_statistics(v, self.cov.joint_covariance(pred_idx))

    @staticmethod
    def _pairs(idx: int, arena: List[_Frame]) -> List[Tuple[int, int]]:
        """Walk parent links back to the root collecting (obs, pred) pairs."""
        pairs = []
        while idx >= 0:
            f = arena[idx]
            if f.pred >= 0:
                pairs.append((f.obs, f.pred))
            idx = f.parent
        pairs.reverse()
        return pairs

    def _choice(self, child: _Frame) -> int:
        # Skip branches come after every pairing in traversal order
        return child.pred if child.pred >= 0 else self.n_pred
