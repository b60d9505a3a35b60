"""Clustering run ORM model.

Classes:
    RunStatus: Valid run lifecycle states.
    RunType: How a run was triggered.
    RunScope: Population boundary a run covers.
    ClusteringRun: Records the selector, solver parameters, metrics, and outcome of one segmentation run.

Functions:
    utcnow(): Timezone-aware UTC timestamp used for every persisted datetime.
    as_utc(value): Attach UTC to a timestamp the database handed back without an offset.
    guard_terminal_state(_, __, target): Refuse to rewrite a run after it reached a terminal state.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, Float, Integer, Text, event, inspect
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite drops the offset on the way back; every stored value is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class RunStatus(str):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    TERMINAL = frozenset({COMPLETED, FAILED})


class RunType(str):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class RunScope(str):
    MUNICIPALITY = "municipality"
    BARANGAY = "barangay"


class ClusteringRun(SQLModel, table=True):
    __tablename__ = "clustering_runs"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    run_type: str = Field(default=RunType.MANUAL)
    scope: str = Field(index=True)
    barangay_id: Optional[str] = Field(default=None, index=True)
    batch_id: Optional[str] = Field(default=None, index=True)
    status: str = Field(default=RunStatus.RUNNING, index=True)
    triggered_by: str
    k_min: int = Field(default=2, sa_column=Column(Integer))
    k_max: int = Field(default=6, sa_column=Column(Integer))
    seed: int = Field(default=42, sa_column=Column(Integer))
    selected_k: Optional[int] = Field(default=None, sa_column=Column(Integer))
    selection_method: Optional[str] = Field(default=None, sa_column=Column(Text))
    total_responses: Optional[int] = Field(default=None, sa_column=Column(Integer))
    segments_created: Optional[int] = Field(default=None, sa_column=Column(Integer))
    overall_quality_score: Optional[float] = Field(default=None, sa_column=Column(Float))
    data_quality_score: Optional[float] = Field(default=None, sa_column=Column(Float))
    k_selection_json: Optional[str] = Field(default=None, sa_column=Column(Text))
    quality_json: Optional[str] = Field(default=None, sa_column=Column(Text))
    timings_json: Optional[str] = Field(default=None, sa_column=Column(Text))
    error_message: Optional[str] = Field(default=None, sa_column=Column(Text))
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = Field(default=None, sa_column=Column(Float))

    @property
    def is_terminal(self) -> bool:
        return self.status in RunStatus.TERMINAL


@event.listens_for(ClusteringRun, "before_update", propagate=True)
def guard_terminal_state(_, __, target):
    history = inspect(target).attrs.status.history
    if history.has_changes():
        # an expired attribute has no loaded previous value
        previous = history.deleted[0] if history.deleted else None
    else:
        previous = target.status
    if previous in RunStatus.TERMINAL:
        raise ValueError(f"Clustering run {target.id} is {previous} and can no longer change")
