"""Exception taxonomy for the segmentation pipeline.

Classes:
    ClusteringError: Base class for every pipeline failure.
    InvalidSelector: Malformed scope/barangay combination; rejected before a run row exists.
    InsufficientData: Population too small (or too incomplete) to partition.
    SolverFailure: No candidate cluster count converged.
    PersistenceFailure: The atomic write of run artefacts failed.
    RunNotFound: Lookup of an unknown run or segment.
"""

from __future__ import annotations


class ClusteringError(Exception):
    pass


class InvalidSelector(ClusteringError, ValueError):
    pass


class InsufficientData(ClusteringError):
    def __init__(self, message: str, *, available: int | None = None, required: int | None = None) -> None:
        super().__init__(message)
        self.available = available
        self.required = required


class SolverFailure(ClusteringError):
    pass


class PersistenceFailure(ClusteringError):
    pass


class RunNotFound(ClusteringError, LookupError):
    pass


__all__ = [
    "ClusteringError",
    "InvalidSelector",
    "InsufficientData",
    "SolverFailure",
    "PersistenceFailure",
    "RunNotFound",
]
