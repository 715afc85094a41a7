"""Association query configuration.

One :class:`AssociationConfig` describes a query: which search to run, which
metric ranks hypotheses, the chi-square confidence used for gating and the
optional acceleration/diagnostic switches. Configs can be built in code, from
a plain dict, or from a YAML file::

    method: jcbb
    metric: maha
    chi2quantile: 0.99
    use_kd_tree: true
"""

from dataclasses import dataclass, fields, asdict, replace as dc_replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

import yaml

from .errors import ConfigurationError, InvalidInputError


class AssociationMethod(Enum):
    """Data association algorithm selection."""
    NN = "nn"        # Greedy nearest neighbor, no backtracking
    JCBB = "jcbb"    # Joint Compatibility Branch & Bound


class AssociationMetric(Enum):
    """Statistic used to rank pairings and hypotheses."""
    MAHALANOBIS = "maha"                 # Squared Mahalanobis distance (lower wins)
    MATCHING_LIKELIHOOD = "ml"           # Gaussian log-likelihood (higher wins)


_METHOD_ALIASES = {
    "nn": AssociationMethod.NN,
    "nearest_neighbor": AssociationMethod.NN,
    "nearestneighbor": AssociationMethod.NN,
    "jcbb": AssociationMethod.JCBB,
}

_METRIC_ALIASES = {
    "maha": AssociationMetric.MAHALANOBIS,
    "mahalanobis": AssociationMetric.MAHALANOBIS,
    "ml": AssociationMetric.MATCHING_LIKELIHOOD,
    "matching_likelihood": AssociationMetric.MATCHING_LIKELIHOOD,
    "matchinglikelihood": AssociationMetric.MATCHING_LIKELIHOOD,
}


def parse_method(value: Union[str, AssociationMethod]) -> AssociationMethod:
    """Resolve an enum member or its string alias, else ConfigurationError."""
    if isinstance(value, AssociationMethod):
        return value
    if isinstance(value, str) and value.strip().lower() in _METHOD_ALIASES:
        return _METHOD_ALIASES[value.strip().lower()]
    raise ConfigurationError(f"Unknown association method: {value!r}",
                             option="method")


def parse_metric(value: Union[str, AssociationMetric],
                 option: str = "metric") -> AssociationMetric:
    """Resolve an enum member or its string alias, else ConfigurationError."""
    if isinstance(value, AssociationMetric):
        return value
    if isinstance(value, str) and value.strip().lower() in _METRIC_ALIASES:
        return _METRIC_ALIASES[value.strip().lower()]
    raise ConfigurationError(f"Unknown association metric: {value!r}",
                             option=option)


@dataclass
class AssociationConfig:
    """Parameters of one association query.

    Attributes:
        method: NN or JCBB
        metric: Statistic stored in the distance matrix and used for ranking
        chi2quantile: Gate confidence in (0, 1), fed to the inverse chi-square
        use_kd_tree: Pre-select candidates with a k-d tree over prediction means
        prediction_ids: Optional external IDs, one per prediction
        compatibility_test_metric: Statistic of the JCBB joint acceptance test
        log_ml_compat_test_threshold: Joint log-likelihood acceptance threshold
        validate_covariances: Cholesky-check every prediction block up front
        n_workers: Threads for the top-level JCBB branches (1 = sequential)
        max_nodes: Optional cap on explored JCBB nodes
    """
    method: AssociationMethod = AssociationMethod.JCBB
    metric: AssociationMetric = AssociationMetric.MAHALANOBIS
    chi2quantile: float = 0.99
    use_kd_tree: bool = True
    prediction_ids: Optional[Sequence[Any]] = None
    compatibility_test_metric: AssociationMetric = AssociationMetric.MAHALANOBIS
    log_ml_compat_test_threshold: float = 0.0
    validate_covariances: bool = True
    n_workers: int = 1
    max_nodes: Optional[int] = None

    def __post_init__(self):
        self.method = parse_method(self.method)
        self.metric = parse_metric(self.metric)
        self.compatibility_test_metric = parse_metric(
            self.compatibility_test_metric, option="compatibility_test_metric")

        try:
            q = float(self.chi2quantile)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"chi2quantile must be a number, got {self.chi2quantile!r}",
                option="chi2quantile") from None
        if not 0.0 < q < 1.0:
            raise ConfigurationError(
                f"chi2quantile must lie in (0, 1), got {q}", option="chi2quantile")
        self.chi2quantile = q

        self.log_ml_compat_test_threshold = float(self.log_ml_compat_test_threshold)
        self.use_kd_tree = bool(self.use_kd_tree)
        self.validate_covariances = bool(self.validate_covariances)

        if isinstance(self.n_workers, bool) or not isinstance(self.n_workers, int) \
                or self.n_workers < 1:
            raise ConfigurationError(
                f"n_workers must be an integer >= 1, got {self.n_workers!r}",
                option="n_workers")
        if self.max_nodes is not None and (
                isinstance(self.max_nodes, bool) or not isinstance(self.max_nodes, int)
                or self.max_nodes < 1):
            raise ConfigurationError(
                f"max_nodes must be None or an integer >= 1, got {self.max_nodes!r}",
                option="max_nodes")

        if self.prediction_ids is not None:
            try:
                self.prediction_ids = list(self.prediction_ids)
            except TypeError as exc:
                raise InvalidInputError(
                    f"prediction_ids must be a sequence, got "
                    f"{type(self.prediction_ids).__name__}",
                    argument="prediction_ids") from exc

    def replace(self, **overrides) -> 'AssociationConfig':
        """Copy with some fields changed (validated again)."""
        unknown = set(overrides) - _field_names()
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration option(s): {sorted(unknown)}")
        return dc_replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["method"] = self.method.value
        d["metric"] = self.metric.value
        d["compatibility_test_metric"] = self.compatibility_test_metric.value
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AssociationConfig':
        unknown = set(data) - _field_names()
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration option(s): {sorted(unknown)}")
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> 'AssociationConfig':
        """Load a config from a YAML mapping (optionally under ``association:``)."""
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Cannot read config {path}: {exc}") from exc

        if data is None:
            data = {}
        if isinstance(data, dict) and isinstance(data.get("association"), dict):
            data = data["association"]
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config {path} must contain a mapping")
        return cls.from_dict(data)


def _field_names():
    return {f.name for f in fields(AssociationConfig)}


def resolve_config(config: Optional[AssociationConfig] = None,
                   **overrides) -> AssociationConfig:
    """Merge keyword overrides into ``config`` (or the defaults)."""
    if config is None:
        return AssociationConfig.from_dict(overrides)
    if not isinstance(config, AssociationConfig):
        raise ConfigurationError(
            f"config must be an AssociationConfig, got {type(config).__name__}")
    return config.replace(**overrides) if overrides else config
