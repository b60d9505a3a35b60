"""Convenience exports for API schemas.

Re-exports the pydantic models used across the backend so consumers can import from one module.
"""

from .clustering import (
    ActiveRecommendation,
    AssignedYouth,
    ClusteringStats,
    RecommendationListing,
    RecommendationResource,
    RunAccepted,
    RunDetail,
    RunMetrics,
    RunRequest,
    RunResult,
    RunSummary,
    SegmentDetail,
    SegmentResource,
    SegmentSummary,
)

__all__ = [
    "ActiveRecommendation",
    "AssignedYouth",
    "ClusteringStats",
    "RecommendationListing",
    "RecommendationResource",
    "RunAccepted",
    "RunDetail",
    "RunMetrics",
    "RunRequest",
    "RunResult",
    "RunSummary",
    "SegmentDetail",
    "SegmentResource",
    "SegmentSummary",
]
