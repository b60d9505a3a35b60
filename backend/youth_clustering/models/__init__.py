"""Convenience exports for ORM models.

Surface frequently used SQLModel classes so calling code can import them from a single module.
"""

from .clustering_run import ClusteringRun, RunScope, RunStatus, RunType, as_utc, utcnow
from .survey_response import SurveyResponse, ValidationStatus
from .segment import PriorityLevel, YouthSegment
from .cluster_assignment import ClusterAssignment
from .recommendation import ProgramRecommendation
from .run_event import ClusteringRunEvent

__all__ = [
    "ClusteringRun",
    "RunScope",
    "RunStatus",
    "RunType",
    "as_utc",
    "utcnow",
    "SurveyResponse",
    "ValidationStatus",
    "PriorityLevel",
    "YouthSegment",
    "ClusterAssignment",
    "ProgramRecommendation",
    "ClusteringRunEvent",
]
