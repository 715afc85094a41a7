"""Batch association API: many independent queries at once.

Each query is self-contained (no state crosses calls), so a batch is simply
fanned out over a thread pool. A failing query records its exception and
never affects the others.

Example::

    from landmark_da.batch import AssociationQuery, BatchAssociator, BatchConfig

    queries = [AssociationQuery(Z_k, Y_k, P_k) for Z_k, Y_k, P_k in frames]
    result = BatchAssociator(BatchConfig(max_workers=4)).run(queries)
    for item in result.items:
        if item.ok:
            print(item.result.associations)

License: AGPL-3.0-or-later
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from .association import AssociationResult, associate_full_covariance, associate_independent
from .config import AssociationConfig
from .errors import AssociationError, ConfigurationError, InvalidInputError

logger = logging.getLogger(__name__)


@dataclass
class AssociationQuery:
    """One association problem.

    Attributes:
        observations: M×O observation means
        prediction_means: N×O prediction means
        prediction_cov: Full (N·O)×(N·O) matrix or independent blocks
        variant: ``"independent"`` or ``"full"``
        prediction_ids: Optional external IDs for this query only
        tag: Free-form label carried into the result (frame number, ...)
    """
    observations: np.ndarray
    prediction_means: np.ndarray
    prediction_cov: np.ndarray
    variant: str = "independent"
    prediction_ids: Optional[Sequence[Any]] = None
    tag: Any = None


@dataclass
class BatchConfig:
    """Configuration for batch association.

    Attributes:
        association: Config shared by every query
        max_workers: Thread pool size (1 = run in the calling thread)
        progress_callback: Optional callback(done, total)
    """
    association: AssociationConfig = field(default_factory=AssociationConfig)
    max_workers: int = 1
    progress_callback: Optional[Callable[[int, int], None]] = None


@dataclass
class BatchItem:
    """Outcome of one query: a result or the error it raised."""
    index: int
    tag: Any = None
    result: Optional[AssociationResult] = None
    error: Optional[AssociationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchResult:
    """Complete batch result.

    Attributes:
        items: One BatchItem per query, in input order
        total_time_s: Wall-clock processing time
    """
    items: List[BatchItem] = field(default_factory=list)
    total_time_s: float = 0.0

    @property
    def n_failed(self) -> int:
        return sum(1 for it in self.items if not it.ok)

    def results(self) -> List[Optional[AssociationResult]]:
        return [it.result for it in self.items]

    def summary(self) -> Dict[str, Any]:
        ok = [it.result for it in self.items if it.ok]
        return {
            "queries": len(self.items),
            "failed": self.n_failed,
            "associations": int(sum(r.n_associations for r in ok)),
            "nodes_explored": int(sum(r.n_nodes_explored for r in ok)),
            "mean_query_ms": float(np.mean([r.elapsed_ms for r in ok])) if ok else 0.0,
            "total_time_s": self.total_time_s,
        }


class BatchAssociator:
    """Run a list of association queries, optionally on a thread pool.

    Args:
        config: BatchConfig with the shared association config and pool size
    """

    def __init__(self, config: Optional[BatchConfig] = None):
        self.config = config or BatchConfig()
        if self.config.max_workers < 1:
            raise ConfigurationError(
                f"max_workers must be >= 1, got {self.config.max_workers}",
                option="max_workers")

    def run_one(self, index: int, query: AssociationQuery) -> BatchItem:
        item = BatchItem(index=index, tag=query.tag)
        try:
            cfg = self.config.association
            if query.prediction_ids is not None:
                cfg = cfg.replace(prediction_ids=query.prediction_ids)

            if query.variant == "full":
                item.result = associate_full_covariance(
                    query.observations, query.prediction_means, query.prediction_cov, cfg)
            elif query.variant == "independent":
                item.result = associate_independent(
                    query.observations, query.prediction_means, query.prediction_cov, cfg)
            else:
                raise InvalidInputError(f"Unknown covariance variant {query.variant!r}",
                                        argument="variant")
        except AssociationError as exc:
            logger.warning("Query %d (%s) failed: %s", index, query.tag, exc)
            item.error = exc
        return item

    def run(self, queries: Sequence[AssociationQuery]) -> BatchResult:
        """Process all queries; results keep the input order."""
        t_start = time.perf_counter()
        total = len(queries)
        items: List[BatchItem] = []

        if self.config.max_workers == 1:
            for k, q in enumerate(queries):
                items.append(self.run_one(k, q))
                self._progress(k + 1, total)
        else:
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
                futures = [executor.submit(self.run_one, k, q) for k, q in enumerate(queries)]
                for k, fut in enumerate(futures):
                    items.append(fut.result())
                    self._progress(k + 1, total)

        result = BatchResult(items=items, total_time_s=time.perf_counter() - t_start)
        logger.info("Batch: %d queries, %d failed, %.3f s",
                    total, result.n_failed, result.total_time_s)
        return result

    def _progress(self, done: int, total: int) -> None:
        if self.config.progress_callback is not None:
            self.config.progress_callback(done, total)
