"""Fire-and-forget recording of clustering run events.

Classes:
    AuditRecorder: Protocol the orchestrator calls on completion or failure.
    LoggingAuditRecorder: Writes events to the application log only.
    DatabaseAuditRecorder: Appends ``clustering_run_events`` rows using a dedicated session.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from youth_clustering.models import ClusteringRunEvent

_LOGGER = logging.getLogger(__name__)


class AuditRecorder(Protocol):
    async def record(
        self,
        run_id: UUID,
        event: str,
        *,
        actor: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        ...


class LoggingAuditRecorder:
    async def record(
        self,
        run_id: UUID,
        event: str,
        *,
        actor: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        _LOGGER.info("Run %s %s by %s: %s", run_id, event, actor or "system", details or {})


class DatabaseAuditRecorder:
    """Audit failures are logged and never propagate to the run."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    async def record(
        self,
        run_id: UUID,
        event: str,
        *,
        actor: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        try:
            async with self._session_factory() as session:
                session.add(
                    ClusteringRunEvent(run_id=run_id, event=event, actor=actor, details=details or {})
                )
                await session.commit()
        except SQLAlchemyError:
            _LOGGER.warning("Failed to record %s event for run %s", event, run_id, exc_info=True)


__all__ = ["AuditRecorder", "DatabaseAuditRecorder", "LoggingAuditRecorder"]
