"""KK survey response ORM model.

Classes:
    ValidationStatus: Lifecycle states assigned by the validation queue.
    SurveyResponse: One youth's answers for a survey batch, joined with the profile fields clustering needs.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from .clustering_run import utcnow


class ValidationStatus(str):
    PENDING = "pending"
    VALIDATED = "validated"
    REJECTED = "rejected"


class SurveyResponse(SQLModel, table=True):
    __tablename__ = "kk_survey_responses"

    id: str = Field(primary_key=True)
    youth_id: str = Field(index=True)
    barangay_id: str = Field(index=True)
    batch_id: Optional[str] = Field(default=None, index=True)
    validation_status: str = Field(default=ValidationStatus.PENDING, index=True)
    youth_age_group: Optional[str] = None
    birth_date: Optional[date] = None
    gender: Optional[str] = None
    educational_background: Optional[str] = None
    work_status: Optional[str] = None
    civil_status: Optional[str] = None
    youth_classification: Optional[str] = None
    registered_sk_voter: Optional[bool] = None
    registered_national_voter: Optional[bool] = None
    attended_kk_assembly: Optional[bool] = None
    voted_last_sk: Optional[bool] = None
    times_attended: Optional[str] = None
    reason_not_attended: Optional[str] = None
    youth_specific_needs: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
