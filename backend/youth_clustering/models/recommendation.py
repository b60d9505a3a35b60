"""Program recommendation persistence models."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, Float, Integer, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from .clustering_run import utcnow


class ProgramRecommendation(SQLModel, table=True):
    __tablename__ = "program_recommendations"
    __table_args__ = (
        UniqueConstraint("segment_id", "priority_rank", name="uq_program_recommendation_rank"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    segment_id: UUID = Field(foreign_key="youth_segments.id", index=True)
    program_name: str
    program_type: str
    description: Optional[str] = Field(default=None, sa_column=Column(Text))
    target_need: str
    priority_rank: int = Field(sa_column=Column(Integer, nullable=False))
    expected_impact: str
    impact_score: float = Field(sa_column=Column(Float, nullable=False))
    duration_months: int
    target_youth_count: int
    implementation_plan: Optional[str] = Field(default=None, sa_column=Column(Text))
    success_metrics: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    primary_sdg: str
    sdg_alignment_score: float = Field(sa_column=Column(Float, nullable=False))
    created_at: datetime = Field(default_factory=utcnow)
