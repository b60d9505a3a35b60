"""Pydantic schemas for clustering runs, segments, and statistics.

All payloads serialise with camelCase aliases and accept either spelling on input.

Classes:
    RunRequest, RunAccepted: Trigger a run synchronously or in the background.
    SegmentSummary, RunMetrics, RunResult: Outcome of one run.
    RunSummary, RunDetail: Run history views.
    SegmentResource, AssignedYouth, RecommendationResource, SegmentDetail: Segment drill-down.
    ActiveRecommendation, RecommendationListing: Active recommendations for a scope key or segment.
    ClusteringStats: Current partition overview for a scope key.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class RunRequest(CamelModel):
    scope: str
    barangay_id: Optional[str] = None
    batch_id: Optional[str] = None
    triggered_by: str = Field(default="system", min_length=1, max_length=120)
    run_type: Literal["manual", "scheduled"] = "manual"
    k_min: Optional[int] = Field(default=None, ge=2, le=20)
    k_max: Optional[int] = Field(default=None, ge=2, le=20)
    seed: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_k_range(self) -> "RunRequest":
        if self.k_min is not None and self.k_max is not None and self.k_max < self.k_min:
            raise ValueError("kMax must be greater than or equal to kMin")
        return self


class RunAccepted(CamelModel):
    run_id: UUID
    status: str


class SegmentSummary(CamelModel):
    segment_id: UUID
    name: str
    description: str
    youth_count: int
    percentage: float
    priority: str


class RunMetrics(CamelModel):
    overall_quality_score: Optional[float] = None
    data_quality_score: Optional[float] = None
    total_responses: int = 0
    segments_created: int = 0
    duration_seconds: Optional[float] = None


class RunResult(CamelModel):
    run_id: UUID
    status: str
    error_message: Optional[str] = None
    segments: list[SegmentSummary] = Field(default_factory=list)
    metrics: RunMetrics


class RunSummary(CamelModel):
    run_id: UUID
    run_type: str
    scope: str
    barangay_id: Optional[str] = None
    batch_id: Optional[str] = None
    status: str
    triggered_by: str
    selected_k: Optional[int] = None
    selection_method: Optional[str] = None
    total_responses: Optional[int] = None
    segments_created: Optional[int] = None
    overall_quality_score: Optional[float] = None
    data_quality_score: Optional[float] = None
    error_message: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None


class RunDetail(RunSummary):
    k_min: int
    k_max: int
    seed: int
    k_selection: Optional[dict[str, Any]] = None
    quality: Optional[dict[str, Any]] = None
    timings: Optional[dict[str, Any]] = None
    segments: list[SegmentSummary] = Field(default_factory=list)


class SegmentResource(CamelModel):
    id: UUID
    run_id: UUID
    scope: str
    barangay_id: Optional[str] = None
    batch_id: Optional[str] = None
    cluster_index: int
    name: str
    description: str
    avg_age: float
    avg_education_level: float
    employment_rate: float
    civic_engagement_rate: float
    characteristics: Optional[dict[str, Any]] = None
    youth_count: int
    percentage: float
    priority_level: str
    cluster_quality_score: Optional[float] = None
    is_active: bool
    created_at: datetime


class AssignedYouth(CamelModel):
    response_id: str
    youth_id: str


class RecommendationResource(CamelModel):
    id: UUID
    program_name: str
    program_type: str
    description: Optional[str] = None
    target_need: str
    priority_rank: int
    expected_impact: str
    impact_score: float
    duration_months: int
    target_youth_count: int
    implementation_plan: Optional[str] = None
    success_metrics: Optional[dict[str, Any]] = None
    primary_sdg: str
    sdg_alignment_score: float


class ActiveRecommendation(RecommendationResource):
    segment_id: UUID
    segment_name: str
    segment_youth_count: int


class RecommendationListing(CamelModel):
    recommendations: list[ActiveRecommendation] = Field(default_factory=list)
    by_type: dict[str, list[ActiveRecommendation]] = Field(default_factory=dict)
    total_recommendations: int = 0


class SegmentDetail(CamelModel):
    segment: SegmentResource
    youth: list[AssignedYouth] = Field(default_factory=list)
    recommendations: list[RecommendationResource] = Field(default_factory=list)


class ClusteringStats(CamelModel):
    scope: str
    barangay_id: Optional[str] = None
    batch_id: Optional[str] = None
    latest_run: Optional[RunSummary] = None
    total_runs: int = 0
    failed_runs: int = 0
    active_segments: int = 0
    total_youth_segmented: int = 0
    priority_counts: dict[str, int] = Field(default_factory=dict)
