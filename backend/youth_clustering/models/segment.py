"""Youth segment ORM model.

Classes:
    PriorityLevel: Operational urgency tags assigned by the labeler.
    YouthSegment: One labelled cluster of a completed run, with aggregate statistics and an activity flag.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, Float, Integer, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from .clustering_run import utcnow


class PriorityLevel(str):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class YouthSegment(SQLModel, table=True):
    __tablename__ = "youth_segments"
    __table_args__ = (
        UniqueConstraint("run_id", "cluster_index", name="uq_youth_segment_run_cluster"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    run_id: UUID = Field(foreign_key="clustering_runs.id", index=True)
    scope: str = Field(index=True)
    barangay_id: Optional[str] = Field(default=None, index=True)
    batch_id: Optional[str] = Field(default=None, index=True)
    cluster_index: int = Field(sa_column=Column(Integer, nullable=False))
    name: str
    description: str = Field(sa_column=Column(Text, nullable=False))
    avg_age: float = Field(sa_column=Column(Float, nullable=False))
    avg_education_level: float = Field(sa_column=Column(Float, nullable=False))
    employment_rate: float = Field(sa_column=Column(Float, nullable=False))
    civic_engagement_rate: float = Field(sa_column=Column(Float, nullable=False))
    characteristics: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    youth_count: int
    percentage: float
    priority_level: str = Field(default=PriorityLevel.MEDIUM)
    cluster_quality_score: Optional[float] = Field(default=None, sa_column=Column(Float))
    is_active: bool = Field(default=True, index=True)
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
