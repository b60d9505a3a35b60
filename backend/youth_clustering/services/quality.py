"""Partition and data quality computation helpers.

Both families of metrics are pure functions of their inputs.

Classes:
    PartitionQuality: Silhouette-based score plus secondary cluster validity indices.
    DataQualityReport: Completeness of the fields clustering depends on.

Functions:
    partition_quality(matrix, labels): Mean silhouette bounded to [-1, 1]; 0 for single-cluster partitions.
    evaluate_partition(matrix, labels): Full PartitionQuality for the selected partition.
    assess_data_quality(responses): Field completeness report for the run population.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import numpy as np
from numpy.typing import ArrayLike
from sklearn.metrics import (
    calinski_harabasz_score,
    davies_bouldin_score,
    silhouette_samples,
    silhouette_score,
)

QUALITY_RANGE = (-1.0, 1.0)

REQUIRED_FIELDS: tuple[str, ...] = (
    "youth_age_group",
    "educational_background",
    "work_status",
    "civil_status",
    "registered_sk_voter",
    "attended_kk_assembly",
    "birth_date",
    "gender",
)

_COMPLETENESS_WARNING = 0.7
_FIELD_MISSING_WARNING = 20.0
_RECOMMENDED_SAMPLE = 50


@dataclass(slots=True)
class PartitionQuality:
    silhouette: float
    davies_bouldin: Optional[float]
    calinski_harabasz: Optional[float]
    n_clusters: int
    cluster_silhouettes: dict[int, float]
    cluster_cohesion: dict[int, float]

    def as_dict(self) -> dict[str, Any]:
        return {
            "silhouette": self.silhouette,
            "davies_bouldin": self.davies_bouldin,
            "calinski_harabasz": self.calinski_harabasz,
            "n_clusters": self.n_clusters,
        }


@dataclass(slots=True)
class DataQualityReport:
    total_records: int
    valid_records: int
    quality_score: float
    field_completeness: dict[str, dict[str, float]] = field(default_factory=dict)
    issues: list[str] = field(default_factory=list)
    recommendation: str = ""

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_records": self.total_records,
            "valid_records": self.valid_records,
            "quality_score": self.quality_score,
            "field_completeness": self.field_completeness,
            "issues": list(self.issues),
            "recommendation": self.recommendation,
        }


def _mean_for_mask(values: ArrayLike | None, mask: np.ndarray) -> Optional[float]:
    if values is None or mask.sum() == 0:
        return None
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return None
    subset = arr[mask]
    finite = subset[np.isfinite(subset)]
    if finite.size == 0:
        return None
    return float(np.clip(finite.mean(), *QUALITY_RANGE))


def _can_score(matrix: np.ndarray, labels: np.ndarray) -> bool:
    unique = np.unique(labels)
    return 2 <= unique.size <= matrix.shape[0] - 1


def _safe_index_score(metric_fn, data: np.ndarray, labels: np.ndarray) -> Optional[float]:
    if data.size == 0 or not _can_score(data, labels):
        return None
    score = metric_fn(data, labels)
    if not np.isfinite(score):
        return None
    return float(score)


def partition_quality(matrix: ArrayLike, labels: ArrayLike) -> float:
    data = np.asarray(matrix, dtype=float)
    label_arr = np.asarray(labels, dtype=int)
    if not _can_score(data, label_arr):
        return 0.0
    score = silhouette_score(data, label_arr, metric="euclidean")
    if not np.isfinite(score):
        return 0.0
    return float(np.clip(score, *QUALITY_RANGE))


def _cluster_silhouettes(data: np.ndarray, labels: np.ndarray) -> dict[int, float]:
    clusters = [int(label) for label in np.unique(labels)]
    if not _can_score(data, labels):
        return {label: 0.0 for label in clusters}
    samples = silhouette_samples(data, labels, metric="euclidean")
    scores: dict[int, float] = {}
    for label in clusters:
        value = _mean_for_mask(samples, labels == label)
        scores[label] = value if value is not None else 0.0
    return scores


def _cluster_cohesion(data: np.ndarray, labels: np.ndarray) -> dict[int, float]:
    """1 minus mean distance to the cluster centroid, relative to sqrt(dim)."""

    max_distance = math.sqrt(data.shape[1]) if data.ndim > 1 and data.shape[1] else 1.0
    cohesion: dict[int, float] = {}
    for label in np.unique(labels):
        members = data[labels == label]
        if members.shape[0] < 2:
            cohesion[int(label)] = 1.0
            continue
        centroid = members.mean(axis=0)
        mean_distance = float(np.linalg.norm(members - centroid, axis=1).mean())
        cohesion[int(label)] = float(np.clip(1.0 - mean_distance / max_distance, 0.0, 1.0))
    return cohesion


def evaluate_partition(matrix: ArrayLike, labels: ArrayLike) -> PartitionQuality:
    data = np.asarray(matrix, dtype=float)
    label_arr = np.asarray(labels, dtype=int)
    return PartitionQuality(
        silhouette=partition_quality(data, label_arr),
        davies_bouldin=_safe_index_score(davies_bouldin_score, data, label_arr),
        calinski_harabasz=_safe_index_score(calinski_harabasz_score, data, label_arr),
        n_clusters=int(np.unique(label_arr).size),
        cluster_silhouettes=_cluster_silhouettes(data, label_arr),
        cluster_cohesion=_cluster_cohesion(data, label_arr),
    )


def _has_value(value: Any) -> bool:
    return value is not None and value != ""


def _recommendation(score: float, sample_size: int) -> str:
    if score >= 0.9 and sample_size >= 100:
        return "Excellent data quality. Proceed with confidence."
    if score >= 0.7 and sample_size >= _RECOMMENDED_SAMPLE:
        return "Good data quality. Safe to proceed with clustering."
    if score >= 0.5 and sample_size >= 30:
        return "Fair data quality. Proceed with caution. Results may be less reliable."
    return "Poor data quality or insufficient sample size. Improve data collection before clustering."


def assess_data_quality(responses: Sequence[Any]) -> DataQualityReport:
    total = len(responses)
    if total == 0:
        return DataQualityReport(
            total_records=0,
            valid_records=0,
            quality_score=0.0,
            issues=["No responses provided"],
            recommendation=_recommendation(0.0, 0),
        )

    present = {name: 0 for name in REQUIRED_FIELDS}
    complete = 0
    for response in responses:
        flags = [_has_value(getattr(response, name, None)) for name in REQUIRED_FIELDS]
        for name, flag in zip(REQUIRED_FIELDS, flags):
            present[name] += int(flag)
        complete += int(all(flags))

    score = complete / total
    completeness = {
        name: {
            "present": float(count),
            "missing": float(total - count),
            "percentage": round(count / total * 100.0, 2),
        }
        for name, count in present.items()
    }

    issues: list[str] = []
    if score < _COMPLETENESS_WARNING:
        issues.append(f"Low data completeness: only {score * 100:.1f}% of records are complete")
    if total < _RECOMMENDED_SAMPLE:
        issues.append(f"Small sample size: {total} responses (recommended: {_RECOMMENDED_SAMPLE}+)")
    for name, stats in completeness.items():
        missing_pct = 100.0 - stats["percentage"]
        if missing_pct > _FIELD_MISSING_WARNING:
            issues.append(f"Field '{name}' has {missing_pct:.1f}% missing values")

    return DataQualityReport(
        total_records=total,
        valid_records=complete,
        quality_score=float(score),
        field_completeness=completeness,
        issues=issues,
        recommendation=_recommendation(score, total),
    )


__all__ = [
    "DataQualityReport",
    "PartitionQuality",
    "QUALITY_RANGE",
    "REQUIRED_FIELDS",
    "assess_data_quality",
    "evaluate_partition",
    "partition_quality",
]
