"""Append-only audit trail of clustering run outcomes."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from .clustering_run import utcnow


class ClusteringRunEvent(SQLModel, table=True):
    __tablename__ = "clustering_run_events"

    id: Optional[int] = Field(default=None, primary_key=True)
    run_id: UUID = Field(index=True)
    event: str
    actor: Optional[str] = None
    details: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    recorded_at: datetime = Field(default_factory=utcnow)
