"""Feature engineering for youth survey responses.

Each validated response is decoded into ``YouthAttributes`` (the human-readable
values the labeler aggregates) and a weighted, min-max scaled ``FeatureVector``.
Scaling parameters are fit once over the whole run population so distances
between youths stay comparable.

Classes:
    YouthAttributes: Decoded, denormalised attributes for one youth.
    FeatureVector: Fixed-dimension numeric representation of one youth.
    FeatureMatrix: All vectors of a run plus the fitted scaling parameters.

Functions:
    describe_youth(response, as_of): Decode a survey response into YouthAttributes.
    extract_features(responses, as_of, min_population): Build the run's FeatureMatrix.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional, Sequence

import numpy as np
from sklearn.preprocessing import MinMaxScaler

from youth_clustering.models import SurveyResponse
from youth_clustering.services.errors import InsufficientData

_LOGGER = logging.getLogger(__name__)

FEATURE_NAMES: tuple[str, ...] = (
    "age",
    "education",
    "work_status",
    "civic_engagement",
    "civil_status",
    "classification",
    "gender",
    "specific_needs",
    "motivation",
)
FEATURE_DIM = len(FEATURE_NAMES)

# employment dominates, gender is the least discriminative
FEATURE_WEIGHTS = np.array([1.0, 1.2, 2.0, 1.5, 0.8, 1.3, 0.5, 1.0, 1.2], dtype=float)

EDUCATION_LEVELS: dict[str, int] = {
    "Elementary Level": 1,
    "Elementary Grad": 2,
    "High School Level": 3,
    "High School Grad": 4,
    "Vocational Grad": 5,
    "College Level": 6,
    "College Grad": 7,
    "Masters Level": 8,
    "Masters Grad": 9,
    "Doctorate Level": 9,
    "Doctorate Graduate": 10,
}
EDUCATION_MAX = 10

WORK_STATUS_SCORES: dict[str, int] = {
    "Unemployed": 1,
    "Not interested looking for a job": 1,
    "Currently looking for a Job": 2,
    "Self-Employed": 3,
    "Employed": 4,
}
EMPLOYED_STATUSES = frozenset({"Employed", "Self-Employed"})

CLASSIFICATION_SCORES: dict[str, int] = {
    "In School Youth": 1,
    "Out of School Youth": 2,
    "Working Youth": 3,
    "Youth w/Specific Needs": 1,
}

TIMES_ATTENDED_BONUS: dict[str, float] = {
    "5 and above": 2.0,
    "3-4 Times": 1.0,
    "1-2 Times": 0.5,
}
CIVIC_SCORE_MAX = 6.0

AGE_FLOOR = 15
AGE_CEILING = 30


@dataclass(slots=True)
class YouthAttributes:
    response_id: str
    youth_id: str
    barangay_id: str
    age: Optional[int]
    education: Optional[str]
    education_level: int
    work_status: Optional[str]
    work_score: int
    civic_score: float
    civil_status: Optional[str]
    gender: Optional[str]
    classification: Optional[str]
    classification_score: int
    has_specific_needs: bool
    motivation: float
    registered_sk_voter: bool = False
    attended_kk_assembly: bool = False

    @property
    def employed(self) -> bool:
        return self.work_status in EMPLOYED_STATUSES


@dataclass(frozen=True, slots=True)
class FeatureVector:
    response_id: str
    values: tuple[float, ...]

    def __post_init__(self) -> None:
        if len(self.values) != FEATURE_DIM:
            raise ValueError(
                f"Feature vector for {self.response_id} has {len(self.values)} dimensions, expected {FEATURE_DIM}"
            )
        if not all(math.isfinite(value) for value in self.values):
            raise ValueError(f"Feature vector for {self.response_id} contains non-finite values")


@dataclass(slots=True)
class FeatureMatrix:
    vectors: list[FeatureVector]
    attributes: list[YouthAttributes]
    scaling: dict[str, Any] = field(default_factory=dict)
    matrix: np.ndarray = field(init=False)

    def __post_init__(self) -> None:
        if len(self.vectors) != len(self.attributes):
            raise ValueError("Every feature vector needs matching youth attributes")
        if self.vectors:
            self.matrix = np.array([vector.values for vector in self.vectors], dtype=float)
        else:
            self.matrix = np.empty((0, FEATURE_DIM), dtype=float)

    def __len__(self) -> int:
        return len(self.vectors)

    @property
    def response_ids(self) -> list[str]:
        return [vector.response_id for vector in self.vectors]


def calculate_age(birth_date: date | None, as_of: date) -> Optional[int]:
    if birth_date is None:
        return None
    age = as_of.year - birth_date.year
    if (as_of.month, as_of.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


def civic_score(response: SurveyResponse) -> float:
    score = float(
        sum(
            bool(flag)
            for flag in (
                response.registered_sk_voter,
                response.registered_national_voter,
                response.attended_kk_assembly,
                response.voted_last_sk,
            )
        )
    )
    score += TIMES_ATTENDED_BONUS.get(response.times_attended or "", 0.0)
    return score


def motivation_score(response: SurveyResponse) -> float:
    if response.attended_kk_assembly:
        return 1.0
    if response.reason_not_attended == "Not interested to Attend":
        return 0.0
    return 0.5


def describe_youth(response: SurveyResponse, as_of: date) -> YouthAttributes:
    return YouthAttributes(
        response_id=response.id,
        youth_id=response.youth_id,
        barangay_id=response.barangay_id,
        age=calculate_age(response.birth_date, as_of),
        education=response.educational_background,
        education_level=EDUCATION_LEVELS.get(response.educational_background or "", 0),
        work_status=response.work_status,
        work_score=WORK_STATUS_SCORES.get(response.work_status or "", 0),
        civic_score=civic_score(response),
        civil_status=response.civil_status,
        gender=response.gender,
        classification=response.youth_classification,
        classification_score=CLASSIFICATION_SCORES.get(response.youth_classification or "", 0),
        has_specific_needs=bool(response.youth_specific_needs),
        motivation=motivation_score(response),
        registered_sk_voter=bool(response.registered_sk_voter),
        attended_kk_assembly=bool(response.attended_kk_assembly),
    )


def _raw_row(attrs: YouthAttributes, fallback_age: float) -> list[float]:
    age = float(attrs.age) if attrs.age is not None else fallback_age
    return [
        float(np.clip(age, AGE_FLOOR, AGE_CEILING)),
        float(attrs.education_level),
        float(attrs.work_score),
        attrs.civic_score,
        0.0 if attrs.civil_status == "Single" else 1.0,
        float(attrs.classification_score),
        0.0 if attrs.gender == "Male" else 1.0,
        1.0 if attrs.has_specific_needs else 0.0,
        attrs.motivation,
    ]


def extract_features(
    responses: Sequence[SurveyResponse],
    *,
    as_of: date,
    min_population: int,
) -> FeatureMatrix:
    if len(responses) < min_population:
        raise InsufficientData(
            f"Insufficient data: {len(responses)} validated responses (minimum: {min_population} for clustering)",
            available=len(responses),
            required=min_population,
        )

    attributes = [describe_youth(response, as_of) for response in responses]
    known_ages = [attrs.age for attrs in attributes if attrs.age is not None]
    fallback_age = float(np.median(known_ages)) if known_ages else float(AGE_FLOOR)

    raw = np.array([_raw_row(attrs, fallback_age) for attrs in attributes], dtype=float)
    scaler = MinMaxScaler()
    scaled = scaler.fit_transform(raw)
    weighted = scaled * FEATURE_WEIGHTS

    vectors = [
        FeatureVector(response_id=attrs.response_id, values=tuple(float(value) for value in row))
        for attrs, row in zip(attributes, weighted)
    ]
    scaling = {
        "method": "min-max",
        "features": list(FEATURE_NAMES),
        "data_min": [float(value) for value in scaler.data_min_],
        "data_max": [float(value) for value in scaler.data_max_],
        "weights": [float(value) for value in FEATURE_WEIGHTS],
        "imputed_age": fallback_age if len(known_ages) < len(attributes) else None,
    }

    _LOGGER.info(
        "Extracted %d feature vectors (%d dimensions, %d missing ages imputed)",
        len(vectors),
        FEATURE_DIM,
        len(attributes) - len(known_ages),
    )
    return FeatureMatrix(vectors=vectors, attributes=attributes, scaling=scaling)


__all__ = [
    "CIVIC_SCORE_MAX",
    "EDUCATION_LEVELS",
    "EDUCATION_MAX",
    "FEATURE_DIM",
    "FEATURE_NAMES",
    "FeatureMatrix",
    "FeatureVector",
    "YouthAttributes",
    "calculate_age",
    "describe_youth",
    "extract_features",
]
