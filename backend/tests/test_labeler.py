from datetime import date

import numpy as np
import pytest

from youth_clustering.models import PriorityLevel
from youth_clustering.services.features import extract_features
from youth_clustering.services.labeler import (
    UNDIFFERENTIATED_NAME,
    allocate_percentages,
    assign_priorities,
    label_segments,
    segment_identity,
)
from youth_clustering.services.quality import evaluate_partition
from youth_clustering.services.solver import Partition

from .factories import identical_population, make_segment, two_group_population

AS_OF = date(2025, 6, 1)


@pytest.mark.parametrize(
    "counts",
    [[1, 1, 1], [10, 20, 30], [7], [3, 3, 1, 1, 5], [0, 4]],
)
def test_allocate_percentages_sums_to_exactly_100(counts):
    shares = allocate_percentages(counts)

    assert round(sum(shares), 2) == 100.0
    for share, count in zip(shares, counts):
        assert share == pytest.approx(count / sum(counts) * 100, abs=0.01)


def test_allocate_percentages_breaks_remainder_ties_by_position():
    assert allocate_percentages([1, 1, 1]) == [33.34, 33.33, 33.33]


def test_assign_priorities_uses_terciles_and_prefers_larger_segments():
    segments = [
        make_segment(cluster_index=0, employment_rate=0.9, civic_engagement_rate=0.9),
        make_segment(cluster_index=1, employment_rate=0.1, civic_engagement_rate=0.1),
        make_segment(cluster_index=2, employment_rate=0.5, civic_engagement_rate=0.5,
                     response_ids=["a"] * 3, youth_ids=["a"] * 3),
        make_segment(cluster_index=3, employment_rate=0.5, civic_engagement_rate=0.5),
    ]

    assign_priorities(segments)

    levels = {segment.cluster_index: segment.priority_level for segment in segments}
    assert levels[1] == PriorityLevel.HIGH
    # equal need: the bigger segment ranks first
    assert levels[3] == PriorityLevel.HIGH
    assert levels[2] == PriorityLevel.MEDIUM
    assert levels[0] == PriorityLevel.LOW


@pytest.mark.parametrize(
    ("kwargs", "expected"),
    [
        ({"avg_education_level": 7.5, "employment_pct": 80, "engagement_pct": 50, "avg_age": 26}, "Established Professionals"),
        ({"avg_education_level": 7.5, "employment_pct": 20, "engagement_pct": 50, "avg_age": 26}, "Educated Job Seekers"),
        ({"avg_education_level": 5.0, "employment_pct": 70, "engagement_pct": 20, "avg_age": 25}, "Active Workforce Youth"),
        ({"avg_education_level": 2.0, "employment_pct": 10, "engagement_pct": 70, "avg_age": 25}, "Civic-Minded Youth"),
        ({"avg_education_level": 2.0, "employment_pct": 5, "engagement_pct": 10, "avg_age": 17}, "Student Youth"),
        ({"avg_education_level": 2.0, "employment_pct": 5, "engagement_pct": 10, "avg_age": 28}, "High-Need Youth"),
    ],
)
def test_segment_identity_decision_tree(kwargs, expected):
    name, description = segment_identity(0, count=12, **kwargs)

    assert name == expected
    assert "12 youth" in description


def _two_group_labels(features):
    return np.array([0 if response_id.split("-")[1].startswith("E") else 1 for response_id in features.response_ids])


def test_label_segments_partitions_population_and_builds_characteristics():
    features = extract_features(two_group_population("L", 15), as_of=AS_OF, min_population=10)
    labels = _two_group_labels(features)
    partition = Partition(labels=labels, centroids=np.zeros((2, 9)), quality=0.9, inertia=0.0, iterations=1)

    segments = label_segments(features, partition, evaluate_partition(features.matrix, labels))

    assert len(segments) == 2
    assert sum(segment.youth_count for segment in segments) == 30
    all_ids = [rid for segment in segments for rid in segment.response_ids]
    assert sorted(all_ids) == sorted(features.response_ids)
    assert sum(segment.percentage for segment in segments) == pytest.approx(100.0)

    engaged, disengaged = segments
    assert engaged.employment_rate == pytest.approx(1.0)
    assert engaged.civic_engagement_rate == pytest.approx(1.0)
    assert disengaged.employment_rate == pytest.approx(0.0)
    assert disengaged.priority_level == PriorityLevel.HIGH
    assert engaged.priority_level == PriorityLevel.MEDIUM
    assert engaged.name != disengaged.name

    characteristics = engaged.characteristics
    assert characteristics["employment"]["dominant_status"] == "Employed"
    assert characteristics["education"]["dominant_level"] == "College Grad"
    assert characteristics["civic_engagement"]["registered_sk"] == 15
    assert characteristics["low_variance"] is False
    assert 0.0 <= characteristics["cohesion"] <= 1.0


def test_label_segments_suffixes_duplicate_names():
    features = extract_features(identical_population("L", 12), as_of=AS_OF, min_population=10)
    # two clusters with the same profile produce the same base name
    labels = np.array([0] * 6 + [1] * 6)
    partition = Partition(labels=labels, centroids=np.zeros((2, 9)), quality=0.0, inertia=0.0, iterations=1)

    segments = label_segments(features, partition, evaluate_partition(features.matrix, labels))

    assert [segment.name for segment in segments] == [
        "Established Professionals",
        "Established Professionals (2)",
    ]


def test_label_segments_marks_degenerate_population():
    features = extract_features(identical_population("U", 12), as_of=AS_OF, min_population=10)
    partition = Partition(labels=np.zeros(12, dtype=int), centroids=np.zeros((1, 9)), quality=0.0, inertia=0.0, iterations=0)

    (segment,) = label_segments(features, partition, evaluate_partition(features.matrix, partition.labels), degenerate=True)

    assert segment.name == UNDIFFERENTIATED_NAME
    assert segment.characteristics["low_variance"] is True
    assert segment.percentage == 100.0
    assert segment.quality_score == 0.0


def test_label_segments_rejects_mismatched_partition():
    features = extract_features(identical_population("U", 12), as_of=AS_OF, min_population=10)
    partition = Partition(labels=np.zeros(5, dtype=int), centroids=np.zeros((1, 9)), quality=0.0, inertia=0.0, iterations=0)

    with pytest.raises(ValueError):
        label_segments(features, partition, None)
