"""landmark-da: Data association between observations and predicted landmarks.

Greedy nearest neighbor and Joint Compatibility Branch & Bound (JCBB) over
Gaussian predictions, with Mahalanobis or matching-likelihood scoring,
chi-square gating and an optional k-d tree pre-gate.

Quick Start::

    from landmark_da import associate_independent
    res = associate_independent(Z, Y, Y_covs, method="jcbb", chi2quantile=0.99)
    print(res.associations)          # {observation index: prediction index}

    from landmark_da import associate_full_covariance, AssociationConfig
    cfg = AssociationConfig.from_yaml("association.yaml")
    res = associate_full_covariance(Z, Y, P_full, cfg)
"""

__version__ = "1.0.0"
__license__ = "AGPL-3.0-or-later"

# ---------------------------------------------------------------------------
# Entry points and results
# ---------------------------------------------------------------------------
from .association import (
    AssociationResult,
    GaussianPoint,
    aggregate_result,
    associate_full_covariance,
    associate_gaussian_points,
    associate_independent,
)

# ---------------------------------------------------------------------------
# Configuration and errors
# ---------------------------------------------------------------------------
from .config import (
    AssociationConfig,
    AssociationMethod,
    AssociationMetric,
)
from .errors import (
    AssociationError,
    ConfigurationError,
    InvalidInputError,
    NumericalError,
)

# ---------------------------------------------------------------------------
# Building blocks: metrics, compatibility, matchers
# ---------------------------------------------------------------------------
from .metrics import (
    MahalanobisMetric,
    MatchingLikelihoodMetric,
    chi2inv,
    make_metric,
)
from .compatibility import (
    CompatibilityMatrix,
    FullCovariance,
    IndependentCovariance,
    build_compatibility,
)
from .spatial import KDTreeFinder, LinearScanFinder, make_candidate_finder
from .hypothesis import Hypothesis
from .nearest_neighbor import nearest_neighbor_match
from .jcbb import JCBBSearcher, SearchOutcome

# ---------------------------------------------------------------------------
# Batch queries and synthetic scenarios
# ---------------------------------------------------------------------------
from .batch import AssociationQuery, BatchAssociator, BatchConfig, BatchResult
from .scenarios import AssociationScenario, SyntheticScenarioGenerator, association_accuracy

# ---------------------------------------------------------------------------
# __all__
# ---------------------------------------------------------------------------
__all__ = [
    "__version__",
    # Entry points
    "associate_full_covariance", "associate_independent", "associate_gaussian_points",
    "AssociationResult", "GaussianPoint", "aggregate_result",
    # Config / errors
    "AssociationConfig", "AssociationMethod", "AssociationMetric",
    "AssociationError", "ConfigurationError", "InvalidInputError", "NumericalError",
    # Metrics
    "MahalanobisMetric", "MatchingLikelihoodMetric", "chi2inv", "make_metric",
    # Compatibility
    "CompatibilityMatrix", "FullCovariance", "IndependentCovariance", "build_compatibility",
    "KDTreeFinder", "LinearScanFinder", "make_candidate_finder",
    # Matchers
    "Hypothesis", "nearest_neighbor_match", "JCBBSearcher", "SearchOutcome",
    # Batch
    "AssociationQuery", "BatchAssociator", "BatchConfig", "BatchResult",
    # Scenarios
    "AssociationScenario", "SyntheticScenarioGenerator", "association_accuracy",
]
