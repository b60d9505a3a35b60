"""Turn numeric clusters into named, prioritised youth segments.

Classes:
    LabeledSegment: Aggregate statistics, identity, and priority of one cluster.

Functions:
    segment_identity(...): Name and description from education, employment, engagement, and age levels.
    allocate_percentages(counts): Two-decimal shares that always sum to exactly 100.
    assign_priorities(segments): Tercile priority by composite need, larger segments first on ties.
    label_segments(features, partition, quality, degenerate): Build every LabeledSegment of a run.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

import numpy as np
import pandas as pd

from youth_clustering.models import PriorityLevel
from youth_clustering.services.features import CIVIC_SCORE_MAX, EDUCATION_MAX, FeatureMatrix
from youth_clustering.services.quality import PartitionQuality
from youth_clustering.services.solver import Partition

_LOGGER = logging.getLogger(__name__)

UNDIFFERENTIATED_NAME = "Undifferentiated Youth Population"
_UNKNOWN = "Unknown"
_PRIORITY_TIERS = (PriorityLevel.HIGH, PriorityLevel.MEDIUM, PriorityLevel.LOW)


@dataclass(slots=True)
class LabeledSegment:
    cluster_index: int
    name: str
    description: str
    response_ids: list[str]
    youth_ids: list[str]
    avg_age: float
    avg_education_level: float
    employment_rate: float
    civic_engagement_rate: float
    dominant_work_status: str
    characteristics: dict[str, Any]
    quality_score: float
    cohesion: float
    low_variance: bool = False
    percentage: float = 0.0
    priority_level: str = PriorityLevel.MEDIUM
    need_score: float = field(init=False)

    def __post_init__(self) -> None:
        self.need_score = (1.0 - self.employment_rate) + (1.0 - self.civic_engagement_rate)

    @property
    def youth_count(self) -> int:
        return len(self.response_ids)


def _level(score: float, high: float, medium: float) -> str:
    if score >= high:
        return "high"
    if score >= medium:
        return "medium"
    return "low"


def _age_band(avg_age: float) -> str:
    if avg_age < 18:
        return "teen"
    if avg_age < 22:
        return "young"
    if avg_age < 27:
        return "mid"
    return "mature"


def segment_identity(
    cluster_index: int,
    *,
    avg_education_level: float,
    employment_pct: float,
    engagement_pct: float,
    avg_age: float,
    count: int,
) -> tuple[str, str]:
    education = _level(avg_education_level / EDUCATION_MAX * 100.0, 70.0, 40.0)
    employment = _level(employment_pct, 60.0, 30.0)
    engagement = _level(engagement_pct, 60.0, 40.0)
    age_band = _age_band(avg_age)
    summary = (
        f"{count} youth, avg {avg_age:.1f} yrs, {employment_pct:.0f}% employed, "
        f"{engagement_pct:.0f}% civic engagement, {education} education"
    )

    if education == "high" and employment == "high":
        outreach = (
            "Recruit them for youth leadership and policy consultation."
            if engagement_pct < 40
            else "Invite them to mentor other segments."
        )
        return (
            "Established Professionals",
            f"Graduates in stable employment ({summary}). Self-sufficient and a pool of role models. {outreach}",
        )
    if education == "high":
        return (
            "Educated Job Seekers",
            f"Highly qualified youth who have not found matching work ({summary}). "
            "Skills-mismatch unemployment with a brain-drain risk; graduate hiring and upskilling are the main levers.",
        )
    if employment == "high":
        if engagement_pct < 50:
            focus = "Busy with work and distant from community governance; workplace-based civic activities fit best."
        else:
            focus = "Balances work and community participation; strong candidates for council and mentorship roles."
        return ("Active Workforce Youth", f"Economically active youth ({summary}). {focus}")
    if employment == "medium" and engagement == "high":
        return ("Civic-Engaged Workers", f"Partly employed youth who stay civically active ({summary}).")
    if employment == "medium" and age_band == "young":
        return ("Emerging Workforce", f"Young youth building early careers ({summary}).")
    if employment == "medium" and age_band in ("mid", "mature"):
        return ("Experienced Job Seekers", f"Older youth with some work experience seeking stable careers ({summary}).")
    if employment == "low" and engagement == "high":
        return (
            "Civic-Minded Youth",
            f"Highly engaged in community governance despite little employment ({summary}). "
            "Leadership potential that employment pathways can build on.",
        )
    if employment == "low" and education != "low":
        return (
            "Opportunity Seekers",
            f"Youth who completed schooling but face employment barriers ({summary}). "
            "Targeted job fairs and local-industry skills training are time-critical.",
        )
    if age_band in ("teen", "young"):
        if employment_pct < 10:
            return ("Student Youth", f"Youth still focused on their education ({summary}). Keep them in school and prepare the school-to-work transition.")
        if employment_pct < 25:
            return ("Early-Stage Youth", f"Youth between school and work with minimal job exposure ({summary}). At risk of becoming NEET.")
        return ("Youth Job Starters", f"Young workers gaining their first experience ({summary}). Upskilling helps them advance.")
    if education == "low" and employment == "low" and engagement == "low":
        return (
            "High-Need Youth",
            f"Low education, unemployment, and disengagement combined ({summary}). "
            "Highest risk of marginalisation; needs outreach, ALS, livelihood training, and case management.",
        )
    if employment_pct >= 45:
        return ("Working Youth", f"Employed youth with practical skills ({summary}).")
    if employment_pct >= 35:
        return ("Part-Time Workers", f"Youth with partial employment seeking full-time work ({summary}).")
    if employment_pct >= 25:
        return ("Job-Ready Youth", f"Youth prepared for employment who need job connections ({summary}).")
    return (f"Youth Group {chr(65 + cluster_index % 26)}", f"Diverse group ({summary}).")


def allocate_percentages(counts: list[int]) -> list[float]:
    """Largest-remainder rounding to hundredths of a percent."""

    total = sum(counts)
    if total == 0:
        return [0.0 for _ in counts]
    exact = [count * 10000 / total for count in counts]
    floors = [math.floor(value) for value in exact]
    leftover = 10000 - sum(floors)
    order = sorted(range(len(counts)), key=lambda i: (-(exact[i] - floors[i]), i))
    for i in order[:leftover]:
        floors[i] += 1
    return [value / 100 for value in floors]


def assign_priorities(segments: list[LabeledSegment]) -> None:
    ranked = sorted(
        segments,
        key=lambda segment: (-segment.need_score, -segment.youth_count, segment.cluster_index),
    )
    for position, segment in enumerate(ranked):
        segment.priority_level = _PRIORITY_TIERS[position * 3 // len(ranked)]


def _distribution(series: pd.Series) -> tuple[dict[str, dict[str, float]], str]:
    counts = series.fillna(_UNKNOWN).astype(str).value_counts(sort=False)
    total = int(counts.sum())
    ordered = sorted(counts.items(), key=lambda item: (-int(item[1]), item[0]))
    distribution = {
        key: {"count": int(count), "percentage": round(int(count) / total * 100.0, 1)}
        for key, count in ordered
    }
    dominant = ordered[0][0] if ordered else _UNKNOWN
    return distribution, dominant


def _mean(series: pd.Series, default: float = 0.0) -> float:
    value = series.mean()
    return float(value) if pd.notna(value) else default


def _describe_cluster(
    cluster_index: int,
    members: pd.DataFrame,
    *,
    quality_score: float,
    cohesion: float,
    low_variance: bool,
) -> LabeledSegment:
    ages = members["age"].dropna()
    avg_age = _mean(ages)
    avg_education = _mean(members["education_level"])
    employment_rate = float(members["employed"].mean())
    civic_rate = float(members["civic_score"].mean() / CIVIC_SCORE_MAX)

    gender_dist, _ = _distribution(members["gender"])
    education_dist, dominant_education = _distribution(members["education"])
    work_dist, dominant_work = _distribution(members["work_status"])
    civil_dist, dominant_civil = _distribution(members["civil_status"])

    characteristics = {
        "demographics": {
            "avg_age": round(avg_age, 1),
            "age_range": f"{int(ages.min())} - {int(ages.max())} years" if not ages.empty else _UNKNOWN,
            "gender_distribution": gender_dist,
        },
        "education": {
            "avg_level": round(avg_education, 2),
            "distribution": education_dist,
            "dominant_level": dominant_education,
        },
        "employment": {
            "employment_rate": round(employment_rate * 100.0, 1),
            "distribution": work_dist,
            "dominant_status": dominant_work,
        },
        "civic_engagement": {
            "engagement_rate": round(civic_rate * 100.0, 1),
            "registered_sk": int(members["registered_sk_voter"].sum()),
            "attended_kk": int(members["attended_kk_assembly"].sum()),
        },
        "civil_status": {
            "distribution": civil_dist,
            "dominant_status": dominant_civil,
        },
        "cohesion": round(cohesion, 4),
        "low_variance": low_variance,
    }

    count = len(members)
    if low_variance:
        name = UNDIFFERENTIATED_NAME
        description = (
            f"All {count} youth share near-identical survey profiles, so no meaningful sub-groups exist "
            f"(avg {avg_age:.1f} yrs, {employment_rate * 100:.0f}% employed, {civic_rate * 100:.0f}% civic engagement)."
        )
    else:
        name, description = segment_identity(
            cluster_index,
            avg_education_level=avg_education,
            employment_pct=employment_rate * 100.0,
            engagement_pct=civic_rate * 100.0,
            avg_age=avg_age,
            count=count,
        )

    return LabeledSegment(
        cluster_index=cluster_index,
        name=name,
        description=description,
        response_ids=members["response_id"].tolist(),
        youth_ids=members["youth_id"].tolist(),
        avg_age=avg_age,
        avg_education_level=avg_education,
        employment_rate=employment_rate,
        civic_engagement_rate=civic_rate,
        dominant_work_status=dominant_work,
        characteristics=characteristics,
        quality_score=quality_score,
        cohesion=cohesion,
        low_variance=low_variance,
    )


def _deduplicate_names(segments: list[LabeledSegment]) -> None:
    seen: dict[str, int] = {}
    for segment in segments:
        occurrences = seen.get(segment.name, 0) + 1
        seen[segment.name] = occurrences
        if occurrences > 1:
            segment.name = f"{segment.name} ({occurrences})"


def label_segments(
    features: FeatureMatrix,
    partition: Partition,
    quality: Optional[PartitionQuality],
    *,
    degenerate: bool = False,
) -> list[LabeledSegment]:
    labels = np.asarray(partition.labels, dtype=int)
    if labels.shape[0] != len(features):
        raise ValueError("Partition labels do not cover every youth in the feature matrix")

    frame = pd.DataFrame([asdict(attrs) for attrs in features.attributes])
    frame["employed"] = [attrs.employed for attrs in features.attributes]
    frame["cluster"] = labels

    segments: list[LabeledSegment] = []
    for cluster_index, members in frame.groupby("cluster", sort=True):
        index = int(cluster_index)
        silhouettes = quality.cluster_silhouettes if quality is not None else {}
        cohesion = quality.cluster_cohesion if quality is not None else {}
        segments.append(
            _describe_cluster(
                index,
                members,
                quality_score=0.0 if degenerate else float(silhouettes.get(index, 0.0)),
                cohesion=float(cohesion.get(index, 1.0)),
                low_variance=degenerate,
            )
        )

    _deduplicate_names(segments)
    for segment, share in zip(segments, allocate_percentages([s.youth_count for s in segments])):
        segment.percentage = share
    assign_priorities(segments)

    _LOGGER.info(
        "Labelled %d segments: %s",
        len(segments),
        ", ".join(f"{s.name} ({s.youth_count}, {s.priority_level})" for s in segments),
    )
    return segments


__all__ = [
    "LabeledSegment",
    "UNDIFFERENTIATED_NAME",
    "allocate_percentages",
    "assign_priorities",
    "label_segments",
    "segment_identity",
]
