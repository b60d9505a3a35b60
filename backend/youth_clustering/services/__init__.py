"""Service layer exports.

Expose the clustering orchestrator and the pieces callers commonly need alongside it.
"""

from .clustering import ClusteringService
from .errors import (
    ClusteringError,
    InsufficientData,
    InvalidSelector,
    PersistenceFailure,
    RunNotFound,
    SolverFailure,
)
from .survey_source import ScopeSelector, SqlSurveyResponseSource, SurveyResponseSource

__all__ = [
    "ClusteringService",
    "ClusteringError",
    "InsufficientData",
    "InvalidSelector",
    "PersistenceFailure",
    "RunNotFound",
    "SolverFailure",
    "ScopeSelector",
    "SqlSurveyResponseSource",
    "SurveyResponseSource",
]
