"""Cluster assignment ORM model.

Classes:
    ClusterAssignment: Links one validated survey response (and its youth) to the segment a run placed it in.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from .clustering_run import utcnow


class ClusterAssignment(SQLModel, table=True):
    __tablename__ = "youth_cluster_assignments"
    __table_args__ = (
        UniqueConstraint("run_id", "response_id", name="uq_cluster_assignment_run_response"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    run_id: UUID = Field(foreign_key="clustering_runs.id", index=True)
    segment_id: UUID = Field(foreign_key="youth_segments.id", index=True)
    response_id: str = Field(foreign_key="kk_survey_responses.id")
    youth_id: str = Field(index=True)
    assigned_at: datetime = Field(default_factory=utcnow)
