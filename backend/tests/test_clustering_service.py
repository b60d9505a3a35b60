import asyncio
import json
import logging
from collections import Counter, defaultdict
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel.ext.asyncio.session import AsyncSession

from youth_clustering.db.session import init_db
from youth_clustering.models import (
    ClusterAssignment,
    ClusteringRun,
    ClusteringRunEvent,
    ProgramRecommendation,
    RunStatus,
    ValidationStatus,
    YouthSegment,
    as_utc,
    utcnow,
)
from youth_clustering.schemas import RunRequest
from youth_clustering.services import ClusteringService, InvalidSelector, RunNotFound, ScopeSelector
from youth_clustering.services.audit import DatabaseAuditRecorder
from youth_clustering.services.labeler import UNDIFFERENTIATED_NAME

from .factories import identical_population, make_response, two_group_population


class RecordingAudit:
    def __init__(self) -> None:
        self.events: list[tuple] = []

    async def record(self, run_id, event, *, actor=None, details=None) -> None:
        self.events.append((run_id, event, actor, details))


async def _seed(session, responses) -> None:
    session.add_all(responses)
    await session.commit()


async def _segments_for(session, run_id) -> list[YouthSegment]:
    result = await session.exec(
        select(YouthSegment).where(YouthSegment.run_id == run_id).order_by(YouthSegment.cluster_index)
    )
    return list(result.scalars().all())


async def _assignments_for(session, run_id) -> list[ClusterAssignment]:
    result = await session.exec(select(ClusterAssignment).where(ClusterAssignment.run_id == run_id))
    return list(result.scalars().all())


async def _partition_for(session, run_id) -> set[frozenset[str]]:
    groups: dict = defaultdict(set)
    for assignment in await _assignments_for(session, run_id):
        groups[assignment.segment_id].add(assignment.response_id)
    return {frozenset(members) for members in groups.values()}


def _barangay_request(barangay_id: str = "BAR001", **overrides) -> RunRequest:
    return RunRequest(scope="barangay", barangay_id=barangay_id, triggered_by="admin", **overrides)


@pytest.mark.asyncio
async def test_separable_population_produces_two_complete_segments(session, settings):
    responses = two_group_population("S", 30)
    responses.append(make_response("S-REJ", validation_status=ValidationStatus.REJECTED))
    responses.append(make_response("S-OTHER", barangay_id="BAR009"))
    await _seed(session, responses)
    audit = RecordingAudit()
    service = ClusteringService(settings=settings, audit=audit)

    result = await service.run_pipeline(session, _barangay_request())

    assert result.status == RunStatus.COMPLETED
    assert result.metrics.total_responses == 60
    assert result.metrics.segments_created == 2
    assert sum(segment.youth_count for segment in result.segments) == 60
    assert -1.0 <= result.metrics.overall_quality_score <= 1.0
    assert result.metrics.data_quality_score == pytest.approx(1.0)
    assert {segment.priority for segment in result.segments} == {"high", "medium"}

    run = await session.get(ClusteringRun, result.run_id)
    assert run.selected_k == 2
    assert run.selection_method == "silhouette"
    assert run.completed_at is not None
    assert run.duration_seconds >= 0
    k_selection = json.loads(run.k_selection_json)
    assert k_selection["selected_k"] == 2
    assert [candidate["k"] for candidate in k_selection["candidates"]] == [2, 3, 4, 5]
    stages = [stage["name"] for stage in json.loads(run.timings_json)["stages"]]
    assert stages[:4] == ["fetch", "extract", "solve", "label"]

    segments = await _segments_for(session, result.run_id)
    assert all(segment.is_active for segment in segments)
    assert sum(segment.percentage for segment in segments) == pytest.approx(100.0, abs=0.5)

    assignments = await _assignments_for(session, result.run_id)
    response_ids = [assignment.response_id for assignment in assignments]
    assert len(response_ids) == 60
    assert len(set(response_ids)) == 60
    assert "S-REJ" not in response_ids and "S-OTHER" not in response_ids

    for segment in segments:
        programs = await session.exec(
            select(ProgramRecommendation).where(ProgramRecommendation.segment_id == segment.id)
        )
        ranks = sorted(program.priority_rank for program in programs.scalars().all())
        assert ranks, f"segment {segment.name} has no recommendations"
        assert ranks == list(range(1, len(ranks) + 1))

    assert [event[1] for event in audit.events] == ["completed"]
    assert audit.events[0][2] == "admin"


@pytest.mark.asyncio
async def test_insufficient_population_fails_without_artifacts(session, settings):
    await _seed(session, two_group_population("I", 1) + [make_response("I-X", birth_date=None)])
    audit = RecordingAudit()
    service = ClusteringService(settings=settings, audit=audit)

    result = await service.run_pipeline(session, _barangay_request())

    assert result.status == RunStatus.FAILED
    assert "Insufficient data" in result.error_message
    assert result.segments == []
    run = await session.get(ClusteringRun, result.run_id)
    assert run.status == RunStatus.FAILED
    assert run.total_responses == 3
    assert json.loads(run.timings_json)["failed_stage"] == "extract"
    assert await _segments_for(session, result.run_id) == []
    assert await _assignments_for(session, result.run_id) == []
    assert [event[1] for event in audit.events] == ["failed"]


@pytest.mark.asyncio
async def test_rerun_reproduces_partition_and_supersedes_previous_segments(session, settings):
    await _seed(session, two_group_population("R", 20))
    service = ClusteringService(settings=settings, audit=RecordingAudit())

    first = await service.run_pipeline(session, _barangay_request())
    second = await service.run_pipeline(session, _barangay_request())

    assert first.status == second.status == RunStatus.COMPLETED
    assert await _partition_for(session, first.run_id) == await _partition_for(session, second.run_id)

    first_segments = await _segments_for(session, first.run_id)
    second_segments = await _segments_for(session, second.run_id)
    for segment in first_segments:
        await session.refresh(segment)
    assert not any(segment.is_active for segment in first_segments)
    assert all(segment.is_active for segment in second_segments)

    active = await service.list_active_segments(session, ScopeSelector("barangay", "BAR001"))
    assert {segment.run_id for segment in active} == {second.run_id}

    # history stays queryable after supersession
    previous = await service.get_run_result(session, first.run_id)
    assert len(previous.segments) == len(first_segments)


@pytest.mark.asyncio
async def test_identical_vectors_fall_back_to_single_segment(session, settings):
    await _seed(session, identical_population("U", 40))
    service = ClusteringService(settings=settings, audit=RecordingAudit())

    result = await service.run_pipeline(session, _barangay_request())

    assert result.status == RunStatus.COMPLETED
    assert len(result.segments) == 1
    assert result.segments[0].name == UNDIFFERENTIATED_NAME
    assert result.segments[0].youth_count == 40
    assert result.segments[0].percentage == 100.0
    assert result.metrics.overall_quality_score == 0.0
    run = await session.get(ClusteringRun, result.run_id)
    assert run.selected_k == 1
    assert run.selection_method == "degenerate"
    (segment,) = await _segments_for(session, result.run_id)
    assert segment.characteristics["low_variance"] is True


@pytest.mark.asyncio
async def test_concurrent_runs_for_different_scope_keys_are_independent(tmp_path, settings):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'concurrent.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    await init_db(bind=engine)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with factory() as seed_session:
            await _seed(
                seed_session,
                two_group_population("M1", 20, barangay_id="BAR001")
                + two_group_population("M2", 10, barangay_id="BAR002"),
            )

        service = ClusteringService(settings=settings, session_factory=factory)

        async def _run(payload: RunRequest):
            async with factory() as run_session:
                return await service.run_pipeline(run_session, payload)

        municipal, barangay = await asyncio.gather(
            _run(RunRequest(scope="municipality", triggered_by="scheduler", run_type="scheduled")),
            _run(_barangay_request("BAR002")),
        )
        assert municipal.status == RunStatus.COMPLETED, municipal.error_message
        assert barangay.status == RunStatus.COMPLETED, barangay.error_message
        assert municipal.metrics.total_responses == 60
        assert barangay.metrics.total_responses == 20

        rerun = await _run(RunRequest(scope="municipality", triggered_by="scheduler"))
        assert rerun.status == RunStatus.COMPLETED

        async with factory() as check:
            bar002_active = await service.list_active_segments(check, ScopeSelector("barangay", "BAR002"))
            municipal_active = await service.list_active_segments(check, ScopeSelector("municipality"))
            events = await check.exec(select(ClusteringRunEvent))
            recorded = Counter(event.event for event in events.scalars().all())

        assert {segment.run_id for segment in bar002_active} == {barangay.run_id}
        assert {segment.run_id for segment in municipal_active} == {rerun.run_id}
        assert recorded["completed"] == 3
    finally:
        await engine.dispose()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("scope", "barangay_id"),
    [("barangay", None), ("municipality", "BAR001"), ("province", None)],
)
async def test_invalid_selector_rejected_before_run_creation(session, settings, scope, barangay_id):
    service = ClusteringService(settings=settings, audit=RecordingAudit())

    with pytest.raises(InvalidSelector):
        await service.run_pipeline(session, RunRequest(scope=scope, barangay_id=barangay_id))

    runs = await session.exec(select(ClusteringRun))
    assert runs.scalars().all() == []


@pytest.mark.asyncio
async def test_persistence_failure_keeps_previous_active_segments(session, settings, monkeypatch):
    await _seed(session, two_group_population("P", 15))
    service = ClusteringService(settings=settings, audit=RecordingAudit())
    first = await service.run_pipeline(session, _barangay_request())
    attempts = []

    async def _locked(*args, **kwargs):
        attempts.append(1)
        raise OperationalError("INSERT INTO youth_segments", {}, Exception("database is locked"))

    monkeypatch.setattr(service, "_write_artifacts", _locked)
    second = await service.run_pipeline(session, _barangay_request())

    assert second.status == RunStatus.FAILED
    assert "Failed to persist" in second.error_message
    assert len(attempts) == settings.persistence_retry_attempts
    assert await _segments_for(session, second.run_id) == []
    active = await service.list_active_segments(session, ScopeSelector("barangay", "BAR001"))
    assert {segment.run_id for segment in active} == {first.run_id}


@pytest.mark.asyncio
async def test_data_quality_gate_fails_run(session, settings):
    responses = two_group_population("G", 10)
    for response in responses[::2]:
        response.gender = None
    await _seed(session, responses)
    strict = settings.model_copy(update={"min_data_quality_score": 0.9})
    service = ClusteringService(settings=strict, audit=RecordingAudit())

    result = await service.run_pipeline(session, _barangay_request())

    assert result.status == RunStatus.FAILED
    assert "Data quality score" in result.error_message
    assert result.metrics.data_quality_score == pytest.approx(0.5)
    # every fetched response counts, not only the complete ones
    assert result.metrics.total_responses == 20


@pytest.mark.asyncio
async def test_completed_runs_are_immutable(session, settings):
    await _seed(session, two_group_population("T", 10))
    service = ClusteringService(settings=settings, audit=RecordingAudit())
    result = await service.run_pipeline(session, _barangay_request())

    run = await session.get(ClusteringRun, result.run_id)
    run.status = RunStatus.RUNNING
    session.add(run)
    with pytest.raises(ValueError):
        await session.commit()
    await session.rollback()

    again = await service.execute_run(session, result.run_id)
    assert again.status == RunStatus.COMPLETED
    assert {segment.segment_id for segment in again.segments} == {segment.segment_id for segment in result.segments}


@pytest.mark.asyncio
async def test_request_overrides_solver_parameters(session, settings):
    await _seed(session, two_group_population("O", 20))
    service = ClusteringService(settings=settings, audit=RecordingAudit())

    result = await service.run_pipeline(session, _barangay_request(k_max=3, seed=7))

    run = await session.get(ClusteringRun, result.run_id)
    assert (run.k_min, run.k_max, run.seed) == (2, 3, 7)
    assert [candidate["k"] for candidate in json.loads(run.k_selection_json)["candidates"]] == [2, 3]


@pytest.mark.asyncio
async def test_read_helpers(session, settings):
    await _seed(session, two_group_population("H", 15))
    service = ClusteringService(settings=settings, audit=RecordingAudit())
    result = await service.run_pipeline(session, _barangay_request())

    runs = await service.list_runs(session, scope="barangay", barangay_id="BAR001")
    assert [summary.run_id for summary in runs] == [result.run_id]

    detail = await service.get_run_detail(session, result.run_id)
    assert detail.k_selection["selected_k"] == 2
    assert detail.quality["data_quality"]["total_records"] == 30

    segment_id = result.segments[0].segment_id
    segment_detail = await service.get_segment_details(session, segment_id)
    assert len(segment_detail.youth) == segment_detail.segment.youth_count
    ranks = [item.priority_rank for item in segment_detail.recommendations]
    assert ranks == list(range(1, len(ranks) + 1))

    stats = await service.get_statistics(session, ScopeSelector("barangay", "BAR001"))
    assert stats.latest_run.run_id == result.run_id
    assert stats.active_segments == 2
    assert stats.total_youth_segmented == 30
    assert stats.priority_counts == {"high": 1, "medium": 1, "low": 0}

    with pytest.raises(RunNotFound):
        await service.get_run_result(session, segment_id)


@pytest.mark.asyncio
async def test_database_audit_recorder_swallows_storage_errors(caplog):
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    recorder = DatabaseAuditRecorder(factory)
    try:
        with caplog.at_level(logging.WARNING, logger="youth_clustering.services.audit"):
            await recorder.record(uuid4(), "completed")
    finally:
        await engine.dispose()

    assert any("Failed to record completed event" in record.message for record in caplog.records)


class FailingAudit:
    def __init__(self) -> None:
        self.calls = 0

    async def record(self, run_id, event, *, actor=None, details=None) -> None:
        self.calls += 1
        raise RuntimeError("audit service down")


@pytest.mark.asyncio
async def test_audit_failure_does_not_change_run_outcome(session, settings, caplog):
    await _seed(session, two_group_population("X", 10))
    audit = FailingAudit()
    service = ClusteringService(settings=settings, audit=audit)

    with caplog.at_level(logging.WARNING, logger="youth_clustering.services.clustering"):
        completed = await service.run_pipeline(session, _barangay_request())
        failed = await service.run_pipeline(session, _barangay_request("BAR404"))

    assert completed.status == RunStatus.COMPLETED
    assert len(completed.segments) == 2
    assert failed.status == RunStatus.FAILED
    assert audit.calls == 2
    warnings = [record.message for record in caplog.records if "Audit recorder failed" in record.message]
    assert len(warnings) == 2


@pytest.mark.asyncio
async def test_run_timestamps_survive_a_database_round_trip(session, session_factory, settings):
    await _seed(session, two_group_population("Z", 10))
    service = ClusteringService(settings=settings, audit=RecordingAudit())
    before = utcnow()
    run = await service.create_run(session, _barangay_request())

    # a fresh session reloads the row from storage, as background execution does
    async with session_factory() as fresh:
        result = await service.execute_run(fresh, run.id)
        stored = await fresh.get(ClusteringRun, run.id)

    assert result.status == RunStatus.COMPLETED
    assert before <= as_utc(stored.started_at) <= as_utc(stored.completed_at) <= utcnow()
    assert stored.duration_seconds >= 0
    stamp = json.loads(stored.timings_json)["started_at"]
    assert stamp.endswith("Z") and "+00:00" not in stamp


@pytest.mark.asyncio
async def test_active_recommendations_by_scope_and_segment(session, settings):
    await _seed(
        session,
        two_group_population("Q", 15) + two_group_population("W", 10, barangay_id="BAR002"),
    )
    service = ClusteringService(settings=settings, audit=RecordingAudit())
    first = await service.run_pipeline(session, _barangay_request())
    second = await service.run_pipeline(session, _barangay_request())
    await service.run_pipeline(session, _barangay_request("BAR002"))

    listing = await service.list_active_recommendations(session, ScopeSelector("barangay", "BAR001"))

    active_ids = {segment.segment_id for segment in second.segments}
    assert listing.total_recommendations == len(listing.recommendations) > 0
    assert {item.segment_id for item in listing.recommendations} == active_ids
    assert not {item.segment_id for item in listing.recommendations} & {s.segment_id for s in first.segments}
    ranks = [item.priority_rank for item in listing.recommendations]
    assert ranks == sorted(ranks)
    assert sum(len(items) for items in listing.by_type.values()) == listing.total_recommendations
    for program_type, items in listing.by_type.items():
        assert all(item.program_type == program_type for item in items)

    segment_id = second.segments[0].segment_id
    single = await service.list_active_recommendations(session, segment_id=segment_id)
    assert {item.segment_id for item in single.recommendations} == {segment_id}
    assert [item.priority_rank for item in single.recommendations] == list(
        range(1, single.total_recommendations + 1)
    )
    assert single.recommendations[0].segment_name == second.segments[0].name

    # superseded segments no longer surface
    stale = await service.list_active_recommendations(session, segment_id=first.segments[0].segment_id)
    assert stale.total_recommendations == 0

    with pytest.raises(InvalidSelector):
        await service.list_active_recommendations(session)
