"""K-means partitioning with silhouette-based model selection.

Each candidate ``k`` runs several seeded k-means++ restarts of Lloyd's
assign/update loop. A restart either converges (centroid shift below the
tolerance) or exhausts the iteration cap; the loop reports that as a tagged
``Converged`` / ``NonConverged`` value. Candidates whose restarts all fail to
converge drop out of selection. The smallest ``k`` wins unless a larger one
improves the silhouette by more than the configured tolerance.

Classes:
    SolverConfig: Candidate range and iteration parameters.
    Converged, NonConverged: Outcomes of a single Lloyd loop.
    CandidateScore: Per-k diagnostics kept for the run record.
    Partition: Selected labels and centroids.
    SolverResult: Partition plus the model-selection trail.

Functions:
    lloyd(matrix, initial_centroids, ...): Bounded assign/update loop.
    fit_kmeans(matrix, k, config): Best converged restart for one k.
    candidate_range(n, k_min, k_max): Candidate k bounds for a population size.
    solve_partition(matrix, config): Choose k and return the winning partition.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Union

import numpy as np
from scipy.spatial.distance import cdist
from sklearn.cluster import kmeans_plusplus

from youth_clustering.core.config import Settings
from youth_clustering.services.errors import SolverFailure
from youth_clustering.services.quality import partition_quality

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SolverConfig:
    k_min: int = 2
    k_max: int = 6
    max_iterations: int = 100
    tolerance: float = 1e-4
    n_init: int = 10
    seed: int = 42
    quality_tolerance: float = 1e-6
    variance_threshold: float = 1e-9

    def __post_init__(self) -> None:
        if self.k_min < 2:
            raise ValueError("k_min must be at least 2")
        if self.k_max < self.k_min:
            raise ValueError("k_max must be greater than or equal to k_min")
        if self.max_iterations < 1 or self.n_init < 1:
            raise ValueError("max_iterations and n_init must be positive")

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "SolverConfig":
        base = cls(
            k_min=settings.cluster_k_min,
            k_max=settings.cluster_k_max,
            max_iterations=settings.cluster_max_iterations,
            tolerance=settings.cluster_tolerance,
            n_init=settings.cluster_n_init,
            seed=settings.cluster_seed,
            quality_tolerance=settings.cluster_quality_tolerance,
            variance_threshold=settings.degenerate_variance_threshold,
        )
        values = {key: value for key, value in overrides.items() if value is not None}
        return replace(base, **values) if values else base


@dataclass(frozen=True, slots=True)
class Converged:
    labels: np.ndarray
    centroids: np.ndarray
    inertia: float
    iterations: int


@dataclass(frozen=True, slots=True)
class NonConverged:
    iterations: int
    last_shift: float
    reason: str = "iteration cap reached"


KMeansOutcome = Union[Converged, NonConverged]


@dataclass(slots=True)
class CandidateScore:
    k: int
    converged: bool
    quality: Optional[float] = None
    inertia: Optional[float] = None
    iterations: Optional[int] = None
    converged_restarts: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "k": self.k,
            "converged": self.converged,
            "silhouette": self.quality,
            "inertia": self.inertia,
            "iterations": self.iterations,
            "converged_restarts": self.converged_restarts,
        }


@dataclass(slots=True)
class Partition:
    labels: np.ndarray
    centroids: np.ndarray
    quality: float
    inertia: float
    iterations: int

    @property
    def k(self) -> int:
        return int(self.centroids.shape[0])

    @property
    def sizes(self) -> list[int]:
        return np.bincount(self.labels, minlength=self.k).astype(int).tolist()


@dataclass(slots=True)
class SolverResult:
    partition: Partition
    method: str
    k_range: tuple[int, int]
    candidates: list[CandidateScore] = field(default_factory=list)
    elbow_k: Optional[int] = None

    @property
    def is_degenerate(self) -> bool:
        return self.method == "degenerate"

    def as_dict(self) -> dict[str, Any]:
        return {
            "selected_k": self.partition.k,
            "method": self.method,
            "k_range": list(self.k_range),
            "elbow_k": self.elbow_k,
            "candidates": [candidate.as_dict() for candidate in self.candidates],
        }


def _assign(matrix: np.ndarray, centroids: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    distances = cdist(matrix, centroids, metric="sqeuclidean")
    labels = distances.argmin(axis=1)
    return labels, distances


def lloyd(
    matrix: np.ndarray,
    initial_centroids: np.ndarray,
    *,
    max_iterations: int,
    tolerance: float,
) -> KMeansOutcome:
    centroids = np.array(initial_centroids, dtype=float, copy=True)
    k = centroids.shape[0]
    rows = np.arange(matrix.shape[0])
    shift = math.inf

    for iteration in range(1, max_iterations + 1):
        labels, distances = _assign(matrix, centroids)
        updated = np.empty_like(centroids)
        # farthest points re-seed empty clusters, each used once
        spare = distances[rows, labels].copy()
        for cluster in range(k):
            members = matrix[labels == cluster]
            if members.shape[0]:
                updated[cluster] = members.mean(axis=0)
            else:
                farthest = int(np.argmax(spare))
                updated[cluster] = matrix[farthest]
                spare[farthest] = -np.inf
        shift = float(np.sqrt(((updated - centroids) ** 2).sum(axis=1)).max())
        centroids = updated
        if shift <= tolerance:
            labels, distances = _assign(matrix, centroids)
            if np.unique(labels).size < k:
                return NonConverged(iterations=iteration, last_shift=shift, reason="empty cluster")
            inertia = float(distances[rows, labels].sum())
            return Converged(labels=labels, centroids=centroids, inertia=inertia, iterations=iteration)

    return NonConverged(iterations=max_iterations, last_shift=shift)


def _canonicalise(outcome: Converged) -> Converged:
    """Relabel clusters in order of first appearance so equal partitions compare equal."""

    order: list[int] = []
    for label in outcome.labels.tolist():
        if label not in order:
            order.append(label)
    mapping = np.empty(len(order), dtype=int)
    for new_label, old_label in enumerate(order):
        mapping[old_label] = new_label
    return Converged(
        labels=mapping[outcome.labels],
        centroids=outcome.centroids[order],
        inertia=outcome.inertia,
        iterations=outcome.iterations,
    )


def fit_kmeans(matrix: np.ndarray, k: int, config: SolverConfig) -> tuple[KMeansOutcome, int]:
    best: Optional[Converged] = None
    outcome: Optional[KMeansOutcome] = None
    converged_restarts = 0
    for restart in range(config.n_init):
        initial, _ = kmeans_plusplus(matrix, n_clusters=k, random_state=config.seed + restart)
        outcome = lloyd(
            matrix,
            initial,
            max_iterations=config.max_iterations,
            tolerance=config.tolerance,
        )
        if isinstance(outcome, Converged):
            converged_restarts += 1
            if best is None or outcome.inertia < best.inertia:
                best = outcome
    if best is not None:
        return _canonicalise(best), converged_restarts
    if outcome is None:
        raise SolverFailure(f"k={k}: no k-means restart was attempted")
    # every restart failed, so the last outcome is a NonConverged
    return outcome, 0


def candidate_range(n: int, k_min: int, k_max: int) -> tuple[int, int]:
    size_cap = max(k_min, int(math.floor(math.sqrt(n / 2))))
    return k_min, min(k_max, n - 1, size_cap)


def find_elbow(candidates: list[CandidateScore]) -> Optional[int]:
    scored = sorted(
        (candidate for candidate in candidates if candidate.inertia is not None),
        key=lambda candidate: candidate.k,
    )
    if len(scored) < 3:
        return None
    drops = [
        (scored[i].k, scored[i - 1].inertia - scored[i].inertia)
        for i in range(1, len(scored))
    ]
    elbow_k = drops[0][0]
    largest_slowdown = 0.0
    for i in range(1, len(drops)):
        slowdown = drops[i - 1][1] - drops[i][1]
        if slowdown > largest_slowdown:
            largest_slowdown = slowdown
            elbow_k = drops[i - 1][0]
    return elbow_k


def is_degenerate(matrix: np.ndarray, threshold: float) -> bool:
    if matrix.shape[0] < 2:
        return True
    return float(matrix.var(axis=0).sum()) <= threshold


def _single_segment(matrix: np.ndarray) -> Partition:
    centroid = matrix.mean(axis=0, keepdims=True)
    inertia = float(((matrix - centroid) ** 2).sum())
    return Partition(
        labels=np.zeros(matrix.shape[0], dtype=int),
        centroids=centroid,
        quality=0.0,
        inertia=inertia,
        iterations=0,
    )


def solve_partition(matrix: np.ndarray, config: SolverConfig) -> SolverResult:
    data = np.asarray(matrix, dtype=float)
    n = data.shape[0]
    k_range = candidate_range(n, config.k_min, config.k_max)

    if is_degenerate(data, config.variance_threshold):
        _LOGGER.info("Feature variance below %.2e; using a single segment", config.variance_threshold)
        return SolverResult(partition=_single_segment(data), method="degenerate", k_range=k_range)

    lower, upper = k_range
    if upper < lower:
        raise SolverFailure(f"No candidate cluster count fits {n} responses (k_min={lower})")

    candidates: list[CandidateScore] = []
    best: Optional[Partition] = None
    for k in range(lower, upper + 1):
        outcome, converged_restarts = fit_kmeans(data, k, config)
        if isinstance(outcome, NonConverged):
            _LOGGER.warning(
                "k=%d excluded: %s after %d iterations (shift %.3g)",
                k,
                outcome.reason,
                outcome.iterations,
                outcome.last_shift,
            )
            candidates.append(CandidateScore(k=k, converged=False, iterations=outcome.iterations))
            continue

        quality = partition_quality(data, outcome.labels)
        candidates.append(
            CandidateScore(
                k=k,
                converged=True,
                quality=quality,
                inertia=outcome.inertia,
                iterations=outcome.iterations,
                converged_restarts=converged_restarts,
            )
        )
        _LOGGER.debug("k=%d silhouette=%.4f inertia=%.4f", k, quality, outcome.inertia)
        if best is None or quality > best.quality + config.quality_tolerance:
            best = Partition(
                labels=outcome.labels,
                centroids=outcome.centroids,
                quality=quality,
                inertia=outcome.inertia,
                iterations=outcome.iterations,
            )

    if best is None:
        raise SolverFailure(f"K-means did not converge for any k in [{lower}, {upper}]")

    result = SolverResult(
        partition=best,
        method="silhouette",
        k_range=k_range,
        candidates=candidates,
        elbow_k=find_elbow(candidates),
    )
    _LOGGER.info(
        "Selected k=%d (silhouette %.4f, elbow suggests %s)",
        best.k,
        best.quality,
        result.elbow_k,
    )
    return result


__all__ = [
    "CandidateScore",
    "Converged",
    "KMeansOutcome",
    "NonConverged",
    "Partition",
    "SolverConfig",
    "SolverResult",
    "candidate_range",
    "find_elbow",
    "fit_kmeans",
    "is_degenerate",
    "lloyd",
    "solve_partition",
]
