"""Clustering endpoints for triggering runs and reading segments.

Endpoints:
    create_run(payload, wait, ...): Run the pipeline inline or schedule it in the background.
    list_runs(...): Recent run history, optionally filtered by scope key or status.
    get_run(run_id, session): Full record of one run including model selection details.
    list_segments(...): Currently active segments, optionally for one scope key.
    get_segment(segment_id, session): Segment with its assigned youth and ranked recommendations.
    list_recommendations(...): Active recommendations for a scope key or one segment, grouped by program type.
    get_stats(...): Active partition overview for one scope key.
"""

from __future__ import annotations

import logging
from typing import Optional, Union
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Response, status
from sqlmodel.ext.asyncio.session import AsyncSession

from youth_clustering.db.session import get_session, get_session_factory
from youth_clustering.schemas import (
    ClusteringStats,
    RecommendationListing,
    RunAccepted,
    RunDetail,
    RunRequest,
    RunResult,
    RunSummary,
    SegmentDetail,
    SegmentResource,
)
from youth_clustering.services import ClusteringService, InvalidSelector, ScopeSelector

router = APIRouter(prefix="/clustering", tags=["clustering"])

_LOGGER = logging.getLogger(__name__)


def _selector(scope: str, barangay_id: Optional[str], batch_id: Optional[str]) -> ScopeSelector:
    try:
        return ScopeSelector(scope=scope, barangay_id=barangay_id or None, batch_id=batch_id or None)
    except InvalidSelector as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


async def _execute_in_background(session_factory, run_id: UUID) -> None:
    service = ClusteringService(session_factory=session_factory)
    async with session_factory() as session:
        result = await service.execute_run(session, run_id)
    _LOGGER.info("Background run %s finished with status %s", run_id, result.status)


@router.post("/runs", response_model=Union[RunResult, RunAccepted])
async def create_run(
    payload: RunRequest,
    background_tasks: BackgroundTasks,
    response: Response,
    wait: bool = True,
    session: AsyncSession = Depends(get_session),
    session_factory=Depends(get_session_factory),
) -> Union[RunResult, RunAccepted]:
    service = ClusteringService(session_factory=session_factory)
    try:
        run = await service.create_run(session, payload)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    if not wait:
        background_tasks.add_task(_execute_in_background, session_factory, run.id)
        response.status_code = status.HTTP_202_ACCEPTED
        return RunAccepted(run_id=run.id, status=run.status)

    return await service.execute_run(session, run.id)


@router.get("/runs", response_model=list[RunSummary])
async def list_runs(
    scope: Optional[str] = None,
    barangay_id: Optional[str] = Query(default=None, alias="barangayId"),
    batch_id: Optional[str] = Query(default=None, alias="batchId"),
    run_status: Optional[str] = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1, le=200),
    session: AsyncSession = Depends(get_session),
) -> list[RunSummary]:
    service = ClusteringService()
    return await service.list_runs(
        session,
        scope=scope,
        barangay_id=barangay_id,
        batch_id=batch_id,
        status=run_status,
        limit=limit,
    )


@router.get("/runs/{run_id}", response_model=RunDetail)
async def get_run(run_id: UUID, session: AsyncSession = Depends(get_session)) -> RunDetail:
    # RunNotFound is mapped to 404 by the app-level handler
    return await ClusteringService().get_run_detail(session, run_id)


@router.get("/segments", response_model=list[SegmentResource])
async def list_segments(
    scope: Optional[str] = None,
    barangay_id: Optional[str] = Query(default=None, alias="barangayId"),
    batch_id: Optional[str] = Query(default=None, alias="batchId"),
    session: AsyncSession = Depends(get_session),
) -> list[SegmentResource]:
    selector = _selector(scope, barangay_id, batch_id) if scope else None
    service = ClusteringService()
    segments = await service.list_active_segments(session, selector)
    return [SegmentResource.model_validate(segment) for segment in segments]


@router.get("/segments/{segment_id}", response_model=SegmentDetail)
async def get_segment(segment_id: UUID, session: AsyncSession = Depends(get_session)) -> SegmentDetail:
    return await ClusteringService().get_segment_details(session, segment_id)


@router.get("/recommendations", response_model=RecommendationListing)
async def list_recommendations(
    scope: str = "municipality",
    barangay_id: Optional[str] = Query(default=None, alias="barangayId"),
    batch_id: Optional[str] = Query(default=None, alias="batchId"),
    segment_id: Optional[UUID] = Query(default=None, alias="segmentId"),
    session: AsyncSession = Depends(get_session),
) -> RecommendationListing:
    service = ClusteringService()
    if segment_id is not None:
        return await service.list_active_recommendations(session, segment_id=segment_id)
    return await service.list_active_recommendations(session, _selector(scope, barangay_id, batch_id))


@router.get("/stats", response_model=ClusteringStats)
async def get_stats(
    scope: str = "municipality",
    barangay_id: Optional[str] = Query(default=None, alias="barangayId"),
    batch_id: Optional[str] = Query(default=None, alias="batchId"),
    session: AsyncSession = Depends(get_session),
) -> ClusteringStats:
    service = ClusteringService()
    return await service.get_statistics(session, _selector(scope, barangay_id, batch_id))
