"""Synthetic association scenarios with ground truth.

Used by the demo and the test-suite to produce reproducible landmark maps,
noisy observations, spurious detections and the true correspondence.

Usage::

    gen = SyntheticScenarioGenerator(seed=42)
    sc = gen.random_map(n_landmarks=20)
    res = associate_independent(sc.observations, sc.prediction_means,
                                sc.prediction_covs)
    print(association_accuracy(res, sc))
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .association import AssociationResult


@dataclass
class AssociationScenario:
    """One synthetic association problem.

    Attributes:
        observations: M×O observation means
        prediction_means: N×O predicted landmark means
        prediction_covs: N×O×O per-landmark covariance blocks
        full_cov: (N·O)×(N·O) joint covariance (blocks + cross terms)
        truth: {observation index: true prediction index}; clutter is absent
        prediction_ids: External landmark IDs, one per prediction
        metadata: Free-form scenario description
    """
    observations: np.ndarray
    prediction_means: np.ndarray
    prediction_covs: np.ndarray
    full_cov: np.ndarray
    truth: Dict[int, int]
    prediction_ids: List[Any] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def n_observations(self) -> int:
        return len(self.observations)

    @property
    def n_predictions(self) -> int:
        return len(self.prediction_means)


class SyntheticScenarioGenerator:
    """Generate reproducible landmark association scenarios.

    Args:
        seed: Random seed
        noise_std: Standard deviation of the landmark position uncertainty
        p_detection: Probability that a landmark is observed
        clutter_rate: Mean number of spurious observations (Poisson)
        dim: Observation dimension (2 or 3)
    """

    def __init__(self, seed: int = 42, noise_std: float = 0.1,
                 p_detection: float = 0.9, clutter_rate: float = 1.0, dim: int = 2):
        self.rng = np.random.RandomState(seed)
        self.noise_std = noise_std
        self.p_detection = p_detection
        self.clutter_rate = clutter_rate
        self.dim = dim

    def _covariances(self, n: int, correlation: float) -> Tuple[np.ndarray, np.ndarray]:
        """Per-landmark blocks plus a shared component of weight ``correlation``.

        The shared component models the common robot-pose uncertainty that
        makes predicted landmarks correlated in SLAM.
        """
        O = self.dim
        var = self.noise_std ** 2
        blocks = np.zeros((n, O, O))
        for j in range(n):
            A = self.rng.randn(O, O) * 0.2
            blocks[j] = var * (np.eye(O) + A @ A.T)
        full = np.zeros((n * O, n * O))
        for j in range(n):
            full[j * O:(j + 1) * O, j * O:(j + 1) * O] = blocks[j]
        if correlation > 0.0 and n > 1:
            shared = correlation * var * np.kron(np.ones((n, n)) - np.eye(n), np.eye(O))
            full += shared
            # keep the joint matrix positive-definite
            lam_min = np.min(np.linalg.eigvalsh(full))
            if lam_min <= 0.0:
                full += (1e-9 - lam_min) * np.eye(n * O)
        return blocks, full

    def _observe(self, landmarks: np.ndarray, blocks: np.ndarray, extent: float):
        obs = []
        truth = {}
        for j, y in enumerate(landmarks):
            if self.rng.rand() < self.p_detection:
                z = self.rng.multivariate_normal(y, blocks[j])
                truth[len(obs)] = j
                obs.append(z)
        n_clutter = self.rng.poisson(self.clutter_rate)
        for _ in range(n_clutter):
            obs.append(self.rng.uniform(-extent, extent, self.dim))

        # shuffle observation order, keep the truth consistent
        perm = self.rng.permutation(len(obs))
        inverse = {int(old): new for new, old in enumerate(perm)}
        obs = np.array(obs).reshape(len(obs), self.dim)[perm] if obs else \
            np.zeros((0, self.dim))
        truth = {inverse[i]: j for i, j in truth.items()}
        return obs, truth

    def random_map(self, n_landmarks: int = 20, extent: float = 10.0,
                   correlation: float = 0.0) -> AssociationScenario:
        """Landmarks scattered uniformly over a square/cube of half-size ``extent``."""
        Y = self.rng.uniform(-extent, extent, (n_landmarks, self.dim))
        blocks, full = self._covariances(n_landmarks, correlation)
        Z, truth = self._observe(Y, blocks, extent)
        return AssociationScenario(
            observations=Z, prediction_means=Y, prediction_covs=blocks,
            full_cov=full, truth=truth,
            prediction_ids=[f"L{j:03d}" for j in range(n_landmarks)],
            metadata={'scenario': 'random_map', 'extent': extent,
                      'correlation': correlation},
        )

    def dense_cluster(self, n_landmarks: int = 6, spacing: Optional[float] = None,
                      correlation: float = 0.5) -> AssociationScenario:
        """Landmarks on a tight grid: individually ambiguous, jointly resolvable."""
        spacing = spacing if spacing is not None else 2.5 * self.noise_std
        side = int(np.ceil(n_landmarks ** (1.0 / self.dim)))
        grid = np.array(np.meshgrid(*[np.arange(side)] * self.dim)).reshape(self.dim, -1).T
        Y = grid[:n_landmarks] * spacing
        blocks, full = self._covariances(n_landmarks, correlation)
        Z, truth = self._observe(Y, blocks, extent=float(side * spacing))
        return AssociationScenario(
            observations=Z, prediction_means=Y.astype(float), prediction_covs=blocks,
            full_cov=full, truth=truth,
            prediction_ids=[f"L{j:03d}" for j in range(n_landmarks)],
            metadata={'scenario': 'dense_cluster', 'spacing': spacing,
                      'correlation': correlation},
        )

    def shifted_map(self, n_landmarks: int = 8, shift: float = 0.15,
                    extent: float = 5.0) -> AssociationScenario:
        """All landmarks observed, displaced by a common offset (pose error).

        The strong cross-correlation makes the common shift jointly
        consistent even though every innovation points the same way.
        """
        Y = self.rng.uniform(-extent, extent, (n_landmarks, self.dim))
        blocks, full = self._covariances(n_landmarks, correlation=0.9)
        offset = np.full(self.dim, shift)
        Z = Y + offset + self.rng.randn(n_landmarks, self.dim) * self.noise_std * 0.1
        truth = {i: i for i in range(n_landmarks)}
        return AssociationScenario(
            observations=Z, prediction_means=Y, prediction_covs=blocks,
            full_cov=full, truth=truth,
            prediction_ids=[f"L{j:03d}" for j in range(n_landmarks)],
            metadata={'scenario': 'shifted_map', 'shift': shift},
        )

    def ambiguous_pair(self, offset: float = 0.05,
                       correlation: float = 0.9999) -> AssociationScenario:
        """Two observations on either side of two near-coincident predictions.

        Each observation is individually compatible with both predictions, but
        the almost perfectly correlated predictions cannot absorb innovations
        pointing in opposite directions, so at most one pairing is jointly
        consistent. Deterministic (no random draws).
        """
        O = self.dim
        var = self.noise_std ** 2
        Y = np.zeros((2, O))
        Y[1, 0] = -1e-3 * self.noise_std
        Z = np.zeros((2, O))
        Z[0, 0] = offset
        Z[1, 0] = -1.5 * offset
        blocks = np.stack([var * np.eye(O), var * np.eye(O)])
        full = np.kron(np.array([[1.0, correlation], [correlation, 1.0]]), var * np.eye(O))
        return AssociationScenario(
            observations=Z, prediction_means=Y, prediction_covs=blocks,
            full_cov=full, truth={0: 0},
            prediction_ids=["A", "B"],
            metadata={'scenario': 'ambiguous_pair', 'offset': offset,
                      'correlation': correlation},
        )


def association_accuracy(result: AssociationResult,
                         scenario: AssociationScenario) -> Dict[str, float]:
    """Compare a result with the scenario's ground truth.

    The result must use raw prediction indices (no ID remapping) or the
    scenario's ``prediction_ids``.
    """
    id_to_index = {pid: j for j, pid in enumerate(scenario.prediction_ids)}
    correct = wrong = spurious = 0
    for i, p in result.associations.items():
        j = id_to_index.get(p, p)
        if i not in scenario.truth:
            spurious += 1
        elif scenario.truth[i] == j:
            correct += 1
        else:
            wrong += 1
    n_true = len(scenario.truth)
    return {
        "correct": correct,
        "wrong": wrong,
        "spurious": spurious,
        "missed": n_true - correct - wrong,
        "precision": correct / max(correct + wrong + spurious, 1),
        "recall": correct / max(n_true, 1),
    }
