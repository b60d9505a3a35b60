"""Read access to validated survey responses.

Classes:
    ScopeSelector: Validated (scope, barangay, batch) selector that doubles as the supersession key.
    SurveyResponseSource: Protocol the survey subsystem implements for the feature extractor.
    SqlSurveyResponseSource: Default source backed by the ``kk_survey_responses`` table.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from sqlalchemy import select

from youth_clustering.models import RunScope, SurveyResponse, ValidationStatus
from youth_clustering.services.errors import InvalidSelector

_SCOPES = frozenset({RunScope.MUNICIPALITY, RunScope.BARANGAY})


@dataclass(frozen=True, slots=True)
class ScopeSelector:
    scope: str
    barangay_id: Optional[str] = None
    batch_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.scope not in _SCOPES:
            raise InvalidSelector(f"scope must be 'municipality' or 'barangay', got {self.scope!r}")
        if self.scope == RunScope.BARANGAY and not self.barangay_id:
            raise InvalidSelector("scope 'barangay' requires a barangay id")
        if self.scope == RunScope.MUNICIPALITY and self.barangay_id:
            raise InvalidSelector("scope 'municipality' must not carry a barangay id")

    @property
    def key(self) -> tuple[str, Optional[str], Optional[str]]:
        return (self.scope, self.barangay_id, self.batch_id)

    def describe(self) -> str:
        parts = [self.scope]
        if self.barangay_id:
            parts.append(f"barangay={self.barangay_id}")
        if self.batch_id:
            parts.append(f"batch={self.batch_id}")
        return " ".join(parts)


class SurveyResponseSource(Protocol):
    async def fetch_validated(self, session, selector: ScopeSelector) -> list[SurveyResponse]:
        ...


class SqlSurveyResponseSource:
    async def fetch_validated(self, session, selector: ScopeSelector) -> list[SurveyResponse]:
        stmt = select(SurveyResponse).where(
            SurveyResponse.validation_status == ValidationStatus.VALIDATED
        )
        if selector.scope == RunScope.BARANGAY:
            stmt = stmt.where(SurveyResponse.barangay_id == selector.barangay_id)
        if selector.batch_id:
            stmt = stmt.where(SurveyResponse.batch_id == selector.batch_id)
        # stable row order keeps seeded k-means++ reproducible
        stmt = stmt.order_by(SurveyResponse.created_at, SurveyResponse.id)
        result = await session.exec(stmt)
        return list(result.scalars().all())


__all__ = ["ScopeSelector", "SurveyResponseSource", "SqlSurveyResponseSource"]
