"""High level orchestration for clustering runs.

A run moves ``running -> completed | failed`` exactly once. CPU-bound stages
execute in a worker thread; the only shared write is a single transaction
that supersedes the scope key's active segments and inserts the new
segments, assignments, and recommendations together.

Classes:
    RunStageTimer: Captures per-stage timings for a run.
    ClusteringService: Creates, executes, and reads clustering runs.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import contextmanager
from dataclasses import asdict
from typing import Any, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from youth_clustering.core.config import Settings, get_settings
from youth_clustering.models import (
    ClusterAssignment,
    ClusteringRun,
    ProgramRecommendation,
    RunStatus,
    YouthSegment,
    as_utc,
    utcnow,
)
from youth_clustering.schemas import (
    ActiveRecommendation,
    AssignedYouth,
    ClusteringStats,
    RecommendationListing,
    RecommendationResource,
    RunDetail,
    RunMetrics,
    RunRequest,
    RunResult,
    RunSummary,
    SegmentDetail,
    SegmentResource,
    SegmentSummary,
)
from youth_clustering.services.audit import AuditRecorder, DatabaseAuditRecorder, LoggingAuditRecorder
from youth_clustering.services.errors import InsufficientData, InvalidSelector, PersistenceFailure, RunNotFound
from youth_clustering.services.features import FeatureMatrix, extract_features
from youth_clustering.services.labeler import LabeledSegment, label_segments
from youth_clustering.services.quality import DataQualityReport, PartitionQuality, assess_data_quality, evaluate_partition
from youth_clustering.services.recommendations import RecommendationDraft, generate_for_segment
from youth_clustering.services.solver import SolverConfig, SolverResult, solve_partition
from youth_clustering.services.survey_source import ScopeSelector, SqlSurveyResponseSource, SurveyResponseSource

_LOGGER = logging.getLogger(__name__)


def _stamp(value) -> str:
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class RunStageTimer:
    """Utility to capture stage-level timings for a clustering run."""

    def __init__(self) -> None:
        self._origin = time.perf_counter()
        self._wall_start = utcnow()
        self._stages: list[dict[str, Any]] = []

    @contextmanager
    def track(self, name: str):
        start_counter = time.perf_counter()
        start_wall = utcnow()
        try:
            yield
        finally:
            end_counter = time.perf_counter()
            self._stages.append(
                {
                    "name": name,
                    "duration_ms": round((end_counter - start_counter) * 1000.0, 3),
                    "offset_ms": round((start_counter - self._origin) * 1000.0, 3),
                    "started_at": _stamp(start_wall),
                }
            )

    def snapshot(self) -> dict[str, Any]:
        return {
            "total_duration_ms": round((time.perf_counter() - self._origin) * 1000.0, 3),
            "stages": list(self._stages),
            "started_at": _stamp(self._wall_start),
            "finished_at": _stamp(utcnow()),
        }


def _scope_conditions(model, key: tuple[Optional[str], Optional[str], Optional[str]]) -> list:
    scope, barangay_id, batch_id = key
    conditions = [model.scope == scope]
    conditions.append(model.barangay_id.is_(None) if barangay_id is None else model.barangay_id == barangay_id)
    conditions.append(model.batch_id.is_(None) if batch_id is None else model.batch_id == batch_id)
    return conditions


def _load_json(raw: Optional[str]) -> Optional[dict[str, Any]]:
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        _LOGGER.warning("Ignoring malformed JSON column payload")
        return None
    return parsed if isinstance(parsed, dict) else None


def _segment_summary(segment: YouthSegment) -> SegmentSummary:
    return SegmentSummary(
        segment_id=segment.id,
        name=segment.name,
        description=segment.description,
        youth_count=segment.youth_count,
        percentage=segment.percentage,
        priority=segment.priority_level,
    )


def _run_summary(run: ClusteringRun) -> RunSummary:
    return RunSummary(
        run_id=run.id,
        run_type=run.run_type,
        scope=run.scope,
        barangay_id=run.barangay_id,
        batch_id=run.batch_id,
        status=run.status,
        triggered_by=run.triggered_by,
        selected_k=run.selected_k,
        selection_method=run.selection_method,
        total_responses=run.total_responses,
        segments_created=run.segments_created,
        overall_quality_score=run.overall_quality_score,
        data_quality_score=run.data_quality_score,
        error_message=run.error_message,
        started_at=run.started_at,
        completed_at=run.completed_at,
        duration_seconds=run.duration_seconds,
    )


def _run_result(run: ClusteringRun, segments: Sequence[SegmentSummary]) -> RunResult:
    return RunResult(
        run_id=run.id,
        status=run.status,
        error_message=run.error_message,
        segments=list(segments),
        metrics=RunMetrics(
            overall_quality_score=run.overall_quality_score,
            data_quality_score=run.data_quality_score,
            total_responses=run.total_responses or 0,
            segments_created=run.segments_created or 0,
            duration_seconds=run.duration_seconds,
        ),
    )


class ClusteringService:
    def __init__(
        self,
        *,
        settings: Settings | None = None,
        source: SurveyResponseSource | None = None,
        audit: AuditRecorder | None = None,
        session_factory=None,
    ) -> None:
        self._settings = settings or get_settings()
        self._source = source or SqlSurveyResponseSource()
        if audit is not None:
            self._audit = audit
        elif session_factory is not None:
            self._audit = DatabaseAuditRecorder(session_factory)
        else:
            self._audit = LoggingAuditRecorder()

    def validate_selector(self, payload: RunRequest) -> ScopeSelector:
        return ScopeSelector(
            scope=payload.scope,
            barangay_id=payload.barangay_id or None,
            batch_id=payload.batch_id or None,
        )

    def solver_config(self, payload: RunRequest | None = None) -> SolverConfig:
        if payload is None:
            return SolverConfig.from_settings(self._settings)
        return SolverConfig.from_settings(
            self._settings,
            k_min=payload.k_min,
            k_max=payload.k_max,
            seed=payload.seed,
        )

    def min_population(self, config: SolverConfig) -> int:
        return max(self._settings.min_responses, config.k_min + 1)

    async def create_run(self, session, payload: RunRequest) -> ClusteringRun:
        selector = self.validate_selector(payload)
        config = self.solver_config(payload)

        run = ClusteringRun(
            run_type=payload.run_type,
            scope=selector.scope,
            barangay_id=selector.barangay_id,
            batch_id=selector.batch_id,
            status=RunStatus.RUNNING,
            triggered_by=payload.triggered_by,
            k_min=config.k_min,
            k_max=config.k_max,
            seed=config.seed,
        )
        session.add(run)
        await session.commit()
        await session.refresh(run)
        _LOGGER.info("Created clustering run %s for %s", run.id, selector.describe())
        return run

    async def run_pipeline(self, session, payload: RunRequest) -> RunResult:
        run = await self.create_run(session, payload)
        return await self.execute_run(session, run.id)

    async def execute_run(self, session, run_id: UUID) -> RunResult:
        run = await session.get(ClusteringRun, run_id)
        if run is None:
            raise RunNotFound(f"Clustering run {run_id} not found")
        if run.is_terminal:
            return await self.get_run_result(session, run_id)

        selector = ScopeSelector(scope=run.scope, barangay_id=run.barangay_id, batch_id=run.batch_id)
        config = SolverConfig.from_settings(self._settings, k_min=run.k_min, k_max=run.k_max, seed=run.seed)
        triggered_by = run.triggered_by
        as_of = run.started_at.date()

        telemetry = RunStageTimer()
        current_stage = "fetch"
        report: DataQualityReport | None = None

        try:
            with telemetry.track("fetch"):
                responses = await self._source.fetch_validated(session, selector)
            _LOGGER.info("Run %s: fetched %d validated responses", run_id, len(responses))

            current_stage = "extract"
            with telemetry.track("extract"):
                report = assess_data_quality(responses)
                features = await asyncio.to_thread(
                    extract_features,
                    responses,
                    as_of=as_of,
                    min_population=self.min_population(config),
                )
                threshold = self._settings.min_data_quality_score
                if threshold > 0 and report.quality_score < threshold:
                    raise InsufficientData(
                        f"Data quality score {report.quality_score:.2f} is below the required {threshold:.2f}",
                        available=report.total_records,
                    )

            current_stage = "solve"
            with telemetry.track("solve"):
                solved = await asyncio.to_thread(solve_partition, features.matrix, config)
                quality = await asyncio.to_thread(evaluate_partition, features.matrix, solved.partition.labels)

            current_stage = "label"
            with telemetry.track("label"):
                labeled = await asyncio.to_thread(
                    label_segments,
                    features,
                    solved.partition,
                    quality,
                    degenerate=solved.is_degenerate,
                )

            current_stage = "recommend"
            with telemetry.track("recommend"):
                coverage = self._settings.recommendation_target_coverage
                recommendations = {
                    segment.cluster_index: generate_for_segment(segment, coverage=coverage)
                    for segment in labeled
                }
            _LOGGER.info(
                "Run %s: %d recommendations across %d segments",
                run_id,
                sum(len(items) for items in recommendations.values()),
                len(labeled),
            )

            current_stage = "persist"
            with telemetry.track("persist"):
                summaries = await self._persist(
                    session,
                    run_id,
                    selector,
                    features=features,
                    solved=solved,
                    quality=quality,
                    report=report,
                    labeled=labeled,
                    recommendations=recommendations,
                    timings=telemetry.snapshot(),
                    created_by=triggered_by,
                )
        except Exception as exc:
            _LOGGER.error("Run %s failed during %s", run_id, current_stage, exc_info=True)
            run = await self._mark_failed(session, run_id, current_stage, exc, report, telemetry)
            await self._record_event(
                run_id,
                "failed",
                actor=triggered_by,
                details={"stage": current_stage, "error": run.error_message},
            )
            return _run_result(run, [])

        run = await session.get(ClusteringRun, run_id)
        await self._record_event(
            run_id,
            "completed",
            actor=triggered_by,
            details={
                "segments_created": run.segments_created,
                "total_responses": run.total_responses,
                "overall_quality_score": run.overall_quality_score,
            },
        )
        _LOGGER.info(
            "Run %s completed: k=%s, quality %.4f, %.2fs",
            run_id,
            run.selected_k,
            run.overall_quality_score or 0.0,
            run.duration_seconds or 0.0,
        )
        return _run_result(run, summaries)

    async def _record_event(self, run_id: UUID, event: str, *, actor: str, details: dict[str, Any]) -> None:
        # the run outcome is already committed; a broken recorder must not change it
        try:
            await self._audit.record(run_id, event, actor=actor, details=details)
        except Exception:
            _LOGGER.warning("Audit recorder failed for %s event of run %s", event, run_id, exc_info=True)

    async def _persist(
        self,
        session,
        run_id: UUID,
        selector: ScopeSelector,
        *,
        features: FeatureMatrix,
        solved: SolverResult,
        quality: PartitionQuality,
        report: DataQualityReport,
        labeled: list[LabeledSegment],
        recommendations: dict[int, list[RecommendationDraft]],
        timings: dict[str, Any],
        created_by: str,
    ) -> list[SegmentSummary]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self._settings.persistence_retry_attempts)),
            wait=wait_exponential(multiplier=0.1, max=2),
            retry=retry_if_exception_type(OperationalError),
            reraise=True,
        )
        summaries: list[SegmentSummary] = []
        try:
            async for attempt in retrying:
                with attempt:
                    summaries = await self._write_artifacts(
                        session,
                        run_id,
                        selector,
                        features=features,
                        solved=solved,
                        quality=quality,
                        report=report,
                        labeled=labeled,
                        recommendations=recommendations,
                        timings=timings,
                        created_by=created_by,
                    )
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Failed to persist clustering run {run_id}: {exc}") from exc
        return summaries

    async def _write_artifacts(
        self,
        session,
        run_id: UUID,
        selector: ScopeSelector,
        *,
        features: FeatureMatrix,
        solved: SolverResult,
        quality: PartitionQuality,
        report: DataQualityReport,
        labeled: list[LabeledSegment],
        recommendations: dict[int, list[RecommendationDraft]],
        timings: dict[str, Any],
        created_by: str,
    ) -> list[SegmentSummary]:
        try:
            run = await session.get(ClusteringRun, run_id)
            # deactivate first so the scope key never has two active partitions
            await session.execute(
                update(YouthSegment)
                .where(*_scope_conditions(YouthSegment, selector.key), YouthSegment.is_active.is_(True))
                .values(is_active=False)
            )

            summaries: list[SegmentSummary] = []
            for item in labeled:
                segment = YouthSegment(
                    run_id=run_id,
                    scope=selector.scope,
                    barangay_id=selector.barangay_id,
                    batch_id=selector.batch_id,
                    cluster_index=item.cluster_index,
                    name=item.name,
                    description=item.description,
                    avg_age=round(item.avg_age, 2),
                    avg_education_level=round(item.avg_education_level, 2),
                    employment_rate=round(item.employment_rate, 4),
                    civic_engagement_rate=round(item.civic_engagement_rate, 4),
                    characteristics=item.characteristics,
                    youth_count=item.youth_count,
                    percentage=item.percentage,
                    priority_level=item.priority_level,
                    cluster_quality_score=round(item.quality_score, 4),
                    is_active=True,
                    created_by=created_by,
                )
                session.add(segment)
                session.add_all(
                    ClusterAssignment(
                        run_id=run_id,
                        segment_id=segment.id,
                        response_id=response_id,
                        youth_id=youth_id,
                    )
                    for response_id, youth_id in zip(item.response_ids, item.youth_ids)
                )
                session.add_all(
                    ProgramRecommendation(segment_id=segment.id, **asdict(draft))
                    for draft in recommendations.get(item.cluster_index, [])
                )
                summaries.append(_segment_summary(segment))

            completed_at = utcnow()
            run.status = RunStatus.COMPLETED
            run.selected_k = solved.partition.k
            run.selection_method = solved.method
            run.total_responses = len(features)
            run.segments_created = len(labeled)
            run.overall_quality_score = round(solved.partition.quality, 6)
            run.data_quality_score = round(report.quality_score, 6)
            run.k_selection_json = json.dumps(solved.as_dict())
            run.quality_json = json.dumps(
                {
                    "partition": quality.as_dict(),
                    "cluster_silhouettes": {str(k): v for k, v in quality.cluster_silhouettes.items()},
                    "cluster_cohesion": {str(k): v for k, v in quality.cluster_cohesion.items()},
                    "data_quality": report.as_dict(),
                    "scaling": features.scaling,
                }
            )
            run.timings_json = json.dumps(timings)
            run.error_message = None
            run.completed_at = completed_at
            run.duration_seconds = round((completed_at - as_utc(run.started_at)).total_seconds(), 3)
            session.add(run)
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            _LOGGER.warning("Persisting run %s failed", run_id, exc_info=True)
            raise
        return summaries

    async def _mark_failed(
        self,
        session,
        run_id: UUID,
        stage: str,
        exc: Exception,
        report: DataQualityReport | None,
        telemetry: RunStageTimer,
    ) -> ClusteringRun:
        await session.rollback()
        run = await session.get(ClusteringRun, run_id)
        completed_at = utcnow()
        run.status = RunStatus.FAILED
        run.error_message = str(exc) or exc.__class__.__name__
        if isinstance(exc, InsufficientData) and exc.available is not None:
            run.total_responses = exc.available
        if report is not None:
            run.data_quality_score = round(report.quality_score, 6)
            run.quality_json = json.dumps({"data_quality": report.as_dict()})
        run.segments_created = 0
        run.timings_json = json.dumps({**telemetry.snapshot(), "failed_stage": stage})
        run.completed_at = completed_at
        run.duration_seconds = round((completed_at - as_utc(run.started_at)).total_seconds(), 3)
        session.add(run)
        await session.commit()
        await session.refresh(run)
        return run

    async def _load_run(self, session, run_id: UUID) -> ClusteringRun:
        run = await session.get(ClusteringRun, run_id)
        if run is None:
            raise RunNotFound(f"Clustering run {run_id} not found")
        return run

    async def _run_segments(self, session, run_id: UUID) -> list[YouthSegment]:
        result = await session.exec(
            select(YouthSegment).where(YouthSegment.run_id == run_id).order_by(YouthSegment.cluster_index)
        )
        return list(result.scalars().all())

    async def get_run_result(self, session, run_id: UUID) -> RunResult:
        run = await self._load_run(session, run_id)
        segments = await self._run_segments(session, run_id)
        return _run_result(run, [_segment_summary(segment) for segment in segments])

    async def get_run_detail(self, session, run_id: UUID) -> RunDetail:
        run = await self._load_run(session, run_id)
        segments = await self._run_segments(session, run_id)
        return RunDetail(
            **_run_summary(run).model_dump(),
            k_min=run.k_min,
            k_max=run.k_max,
            seed=run.seed,
            k_selection=_load_json(run.k_selection_json),
            quality=_load_json(run.quality_json),
            timings=_load_json(run.timings_json),
            segments=[_segment_summary(segment) for segment in segments],
        )

    async def list_runs(
        self,
        session,
        *,
        scope: Optional[str] = None,
        barangay_id: Optional[str] = None,
        batch_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 20,
    ) -> list[RunSummary]:
        stmt = select(ClusteringRun)
        if scope:
            stmt = stmt.where(ClusteringRun.scope == scope)
        if barangay_id:
            stmt = stmt.where(ClusteringRun.barangay_id == barangay_id)
        if batch_id:
            stmt = stmt.where(ClusteringRun.batch_id == batch_id)
        if status:
            stmt = stmt.where(ClusteringRun.status == status)
        stmt = stmt.order_by(ClusteringRun.started_at.desc()).limit(limit)
        results = await session.exec(stmt)
        return [_run_summary(run) for run in results.scalars().all()]

    async def list_active_segments(
        self,
        session,
        selector: ScopeSelector | None = None,
    ) -> list[YouthSegment]:
        stmt = select(YouthSegment).where(YouthSegment.is_active.is_(True))
        if selector is not None:
            stmt = stmt.where(*_scope_conditions(YouthSegment, selector.key))
        stmt = stmt.order_by(YouthSegment.created_at.desc(), YouthSegment.cluster_index)
        results = await session.exec(stmt)
        return list(results.scalars().all())

    async def get_segment_details(self, session, segment_id: UUID) -> SegmentDetail:
        segment = await session.get(YouthSegment, segment_id)
        if segment is None:
            raise RunNotFound(f"Youth segment {segment_id} not found")

        assignments = await session.exec(
            select(ClusterAssignment)
            .where(ClusterAssignment.segment_id == segment_id)
            .order_by(ClusterAssignment.id)
        )
        programs = await session.exec(
            select(ProgramRecommendation)
            .where(ProgramRecommendation.segment_id == segment_id)
            .order_by(ProgramRecommendation.priority_rank)
        )
        return SegmentDetail(
            segment=SegmentResource.model_validate(segment),
            youth=[
                AssignedYouth(response_id=row.response_id, youth_id=row.youth_id)
                for row in assignments.scalars().all()
            ],
            recommendations=[
                RecommendationResource.model_validate(row) for row in programs.scalars().all()
            ],
        )

    async def list_active_recommendations(
        self,
        session,
        selector: ScopeSelector | None = None,
        *,
        segment_id: UUID | None = None,
    ) -> RecommendationListing:
        """Recommendations of active segments, by ascending rank and grouped by program type.

        A segment id takes precedence over the selector; one of the two is required.
        """
        if selector is None and segment_id is None:
            raise InvalidSelector("a scope selector or a segment id is required")

        stmt = (
            select(ProgramRecommendation, YouthSegment)
            .join(YouthSegment, ProgramRecommendation.segment_id == YouthSegment.id)
            .where(YouthSegment.is_active.is_(True))
        )
        if segment_id is not None:
            stmt = stmt.where(ProgramRecommendation.segment_id == segment_id)
        else:
            stmt = stmt.where(*_scope_conditions(YouthSegment, selector.key))
        stmt = stmt.order_by(
            ProgramRecommendation.priority_rank,
            YouthSegment.cluster_index,
            ProgramRecommendation.program_name,
        )
        rows = await session.exec(stmt)

        items = [
            ActiveRecommendation(
                **RecommendationResource.model_validate(program).model_dump(),
                segment_id=segment.id,
                segment_name=segment.name,
                segment_youth_count=segment.youth_count,
            )
            for program, segment in rows.all()
        ]
        by_type: dict[str, list[ActiveRecommendation]] = {}
        for item in items:
            by_type.setdefault(item.program_type or "Other", []).append(item)
        return RecommendationListing(
            recommendations=items,
            by_type=by_type,
            total_recommendations=len(items),
        )

    async def get_statistics(self, session, selector: ScopeSelector) -> ClusteringStats:
        conditions = _scope_conditions(ClusteringRun, selector.key)

        latest = await session.exec(
            select(ClusteringRun)
            .where(*conditions, ClusteringRun.status == RunStatus.COMPLETED)
            .order_by(ClusteringRun.completed_at.desc())
            .limit(1)
        )
        latest_run = latest.scalars().first()

        counts = await session.exec(
            select(ClusteringRun.status, func.count()).where(*conditions).group_by(ClusteringRun.status)
        )
        status_counts = {row[0]: int(row[1]) for row in counts.all()}

        segments = await self.list_active_segments(session, selector)
        priority_counts = {"high": 0, "medium": 0, "low": 0}
        for segment in segments:
            priority_counts[segment.priority_level] = priority_counts.get(segment.priority_level, 0) + 1

        return ClusteringStats(
            scope=selector.scope,
            barangay_id=selector.barangay_id,
            batch_id=selector.batch_id,
            latest_run=_run_summary(latest_run) if latest_run is not None else None,
            total_runs=sum(status_counts.values()),
            failed_runs=status_counts.get(RunStatus.FAILED, 0),
            active_segments=len(segments),
            total_youth_segmented=sum(segment.youth_count for segment in segments),
            priority_counts=priority_counts,
        )


__all__ = ["ClusteringService", "RunStageTimer"]
