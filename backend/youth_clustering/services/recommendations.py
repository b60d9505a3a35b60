"""Rule-based program recommendations for labelled segments.

A segment's weakest characteristics are expressed as need tags with a
severity in [0, 1]. Every catalog template whose tag matches becomes a
candidate; candidates are ranked by ``impact weight * severity``.

Classes:
    ProgramTemplate: Static description of a program the municipality can run.
    RecommendationDraft: A ranked, sized recommendation ready for persistence.

Functions:
    analyze_needs(segment): Need tags and their severities for one segment.
    generate_for_segment(segment, coverage): Ranked recommendations (possibly empty).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

from youth_clustering.services.labeler import LabeledSegment

_LOGGER = logging.getLogger(__name__)

IMPACT_WEIGHTS: dict[str, float] = {"high": 1.0, "medium": 0.6, "low": 0.3}

_JOB_SEEKING_STATUSES = frozenset({"Unemployed", "Currently looking for a Job"})

SDG_DECENT_WORK = "SDG 8: Decent Work and Economic Growth"
SDG_EDUCATION = "SDG 4: Quality Education"
SDG_INSTITUTIONS = "SDG 16: Peace, Justice and Strong Institutions"
SDG_COMMUNITIES = "SDG 11: Sustainable Cities and Communities"
SDG_PARTNERSHIPS = "SDG 17: Partnerships for the Goals"


@dataclass(frozen=True, slots=True)
class ProgramTemplate:
    name: str
    program_type: str
    description: str
    target_need: str
    need_tag: str
    expected_impact: str
    duration_months: int
    implementation_plan: str
    success_metrics: dict[str, str]
    primary_sdg: str
    sdg_alignment: float


@dataclass(slots=True)
class RecommendationDraft:
    program_name: str
    program_type: str
    description: str
    target_need: str
    priority_rank: int
    expected_impact: str
    impact_score: float
    duration_months: int
    target_youth_count: int
    implementation_plan: str
    success_metrics: dict[str, str] = field(default_factory=dict)
    primary_sdg: str = ""
    sdg_alignment_score: float = 0.0


PROGRAM_CATALOG: tuple[ProgramTemplate, ...] = (
    ProgramTemplate(
        name="Youth Employment Readiness Program",
        program_type="Employment",
        description="Job readiness training covering resume writing, interview skills, and workplace conduct.",
        target_need="Job Readiness",
        need_tag="job_seeking",
        expected_impact="high",
        duration_months=3,
        implementation_plan="1) Skills assessment, 2) Training modules, 3) Employer introductions, 4) Placement support",
        success_metrics={
            "placement_rate": "60% employed within 6 months",
            "skills_improvement": "80% pass the job readiness assessment",
            "employer_satisfaction": "75% employer satisfaction",
        },
        primary_sdg=SDG_DECENT_WORK,
        sdg_alignment=85.0,
    ),
    ProgramTemplate(
        name="Local Job Matching & Placement Service",
        program_type="Employment",
        description="Connects youth with local openings through business and government agency partnerships.",
        target_need="Job Placement",
        need_tag="job_seeking",
        expected_impact="high",
        duration_months=6,
        implementation_plan="1) Partner with local businesses, 2) Publish a job board, 3) Hold job fairs, 4) Follow up placements",
        success_metrics={
            "partnerships": "20+ local employers engaged",
            "placements": "50+ youth employed",
            "retention": "70% still employed after 6 months",
        },
        primary_sdg=SDG_DECENT_WORK,
        sdg_alignment=90.0,
    ),
    ProgramTemplate(
        name="Livelihood & Entrepreneurship Support",
        program_type="Employment",
        description="Business training, microfinance links, and mentoring for self-employed youth.",
        target_need="Business Development",
        need_tag="self_employed",
        expected_impact="medium",
        duration_months=12,
        implementation_plan="1) Entrepreneurship training, 2) Business plans, 3) Microfinance referrals, 4) Mentoring",
        success_metrics={
            "business_survival": "70% of businesses operating after 1 year",
            "income_increase": "40% higher average income",
            "jobs_created": "2 jobs created per business on average",
        },
        primary_sdg=SDG_DECENT_WORK,
        sdg_alignment=80.0,
    ),
    ProgramTemplate(
        name="Alternative Learning System (ALS) Support",
        program_type="Education",
        description="Helps out-of-school youth complete basic education through the Alternative Learning System.",
        target_need="Basic Education",
        need_tag="basic_education",
        expected_impact="high",
        duration_months=12,
        implementation_plan="1) Identify out-of-school youth, 2) Provide ALS materials and tutoring, 3) Facilitate exams, 4) Track completion",
        success_metrics={
            "enrollment": "80% of targeted youth enrolled",
            "completion": "70% complete ALS",
            "pass_rate": "85% pass the ALS exam",
        },
        primary_sdg=SDG_EDUCATION,
        sdg_alignment=95.0,
    ),
    ProgramTemplate(
        name="Scholarship & Financial Aid Program",
        program_type="Education",
        description="Financial assistance for higher education or vocational study.",
        target_need="Higher Education Access",
        need_tag="higher_education",
        expected_impact="high",
        duration_months=24,
        implementation_plan="1) Set scholarship criteria, 2) Partner with schools, 3) Disburse support, 4) Monitor academic progress",
        success_metrics={
            "scholarships": "30+ scholarships awarded",
            "retention": "80% in good academic standing",
            "graduation": "75% complete their program",
        },
        primary_sdg=SDG_EDUCATION,
        sdg_alignment=90.0,
    ),
    ProgramTemplate(
        name="Technical-Vocational Skills Training",
        program_type="Skills Development",
        description="Hands-on training in ICT, welding, electronics, food service, and care-giving.",
        target_need="Marketable Skills",
        need_tag="skills",
        expected_impact="high",
        duration_months=6,
        implementation_plan="1) Labor market scan, 2) Partner with TESDA, 3) Deliver courses, 4) Facilitate certification",
        success_metrics={
            "trained": "100+ youth trained",
            "certified": "85% obtain TESDA certification",
            "employed": "65% employed within 3 months",
        },
        primary_sdg=SDG_EDUCATION,
        sdg_alignment=85.0,
    ),
    ProgramTemplate(
        name="Digital Literacy & ICT Training",
        program_type="Skills Development",
        description="Computer skills, online tools, and digital citizenship for work and study.",
        target_need="Digital Skills",
        need_tag="skills",
        expected_impact="medium",
        duration_months=3,
        implementation_plan="1) Set up a lab or mobile training, 2) Build the curriculum, 3) Run sessions, 4) Assess competency",
        success_metrics={
            "participants": "150+ youth trained",
            "competency": "80% pass the digital literacy assessment",
            "application": "60% use the skills at work or school",
        },
        primary_sdg=SDG_EDUCATION,
        sdg_alignment=75.0,
    ),
    ProgramTemplate(
        name="Youth Leadership & Civic Engagement Program",
        program_type="Civic Engagement",
        description="Leadership training and participation in community activities and local governance.",
        target_need="Civic Participation",
        need_tag="civic",
        expected_impact="medium",
        duration_months=6,
        implementation_plan="1) Leadership workshops, 2) Community service projects, 3) SK and barangay participation, 4) Recognition",
        success_metrics={
            "participants": "80+ youth engaged",
            "projects": "10+ community projects",
            "continued": "50% stay active after the program",
        },
        primary_sdg=SDG_INSTITUTIONS,
        sdg_alignment=80.0,
    ),
    ProgramTemplate(
        name="Volunteer & Community Service Initiative",
        program_type="Civic Engagement",
        description="Mobilises youth for community service that addresses local needs.",
        target_need="Community Involvement",
        need_tag="civic",
        expected_impact="low",
        duration_months=12,
        implementation_plan="1) Map community needs, 2) Organise activities, 3) Recognise volunteers, 4) Sustain engagement",
        success_metrics={
            "volunteers": "200+ youth volunteers",
            "hours": "5,000+ volunteer hours",
            "projects": "15+ community initiatives",
        },
        primary_sdg=SDG_COMMUNITIES,
        sdg_alignment=70.0,
    ),
    ProgramTemplate(
        name="Peer Mentorship Network",
        program_type="Civic Engagement",
        description="Pairs employed, civically active youth with peers in higher-need segments.",
        target_need="Peer Mentorship",
        need_tag="mentorship",
        expected_impact="medium",
        duration_months=6,
        implementation_plan="1) Recruit mentors, 2) Mentor orientation, 3) Match with mentees, 4) Monthly check-ins",
        success_metrics={
            "mentors": "30+ active mentors",
            "pairs": "60+ mentor-mentee pairs",
            "satisfaction": "80% of mentees rate the program useful",
        },
        primary_sdg=SDG_PARTNERSHIPS,
        sdg_alignment=70.0,
    ),
)


def analyze_needs(segment: LabeledSegment) -> dict[str, float]:
    employment = segment.employment_rate
    civic = segment.civic_engagement_rate
    education = segment.avg_education_level
    unemployment = 1.0 - employment

    needs: dict[str, float] = {}
    if employment < 0.5:
        if segment.dominant_work_status in _JOB_SEEKING_STATUSES:
            needs["job_seeking"] = unemployment
        elif segment.dominant_work_status == "Self-Employed":
            needs["self_employed"] = unemployment
        if education < 6:
            needs["skills"] = unemployment
    if education < 4:
        needs["basic_education"] = 1.0 - education / 10.0
    elif education < 5:
        needs["higher_education"] = 1.0 - education / 10.0
    if civic < 0.4:
        needs["civic"] = 1.0 - civic
    if employment >= 0.6 and civic >= 0.4:
        needs["mentorship"] = (employment + civic) / 2.0
    return needs


def target_youth_count(youth_count: int, coverage: float) -> int:
    # round first: 10 * 0.7 is 7.000000000000001 in binary floating point
    return min(youth_count, math.ceil(round(youth_count * coverage, 9)))


def generate_for_segment(segment: LabeledSegment, *, coverage: float = 0.7) -> list[RecommendationDraft]:
    needs = analyze_needs(segment)
    candidates: list[tuple[float, int, ProgramTemplate]] = []
    for position, template in enumerate(PROGRAM_CATALOG):
        severity = needs.get(template.need_tag)
        if severity is None:
            continue
        score = round(IMPACT_WEIGHTS[template.expected_impact] * severity, 6)
        candidates.append((score, position, template))

    candidates.sort(key=lambda item: (-item[0], -item[2].sdg_alignment, item[1]))
    target = target_youth_count(segment.youth_count, coverage)
    drafts = [
        RecommendationDraft(
            program_name=template.name,
            program_type=template.program_type,
            description=template.description,
            target_need=template.target_need,
            priority_rank=rank,
            expected_impact=template.expected_impact,
            impact_score=score,
            duration_months=template.duration_months,
            target_youth_count=target,
            implementation_plan=template.implementation_plan,
            success_metrics=dict(template.success_metrics),
            primary_sdg=template.primary_sdg,
            sdg_alignment_score=template.sdg_alignment,
        )
        for rank, (score, _, template) in enumerate(candidates, start=1)
    ]
    _LOGGER.debug(
        "Segment %s: needs=%s -> %d recommendations",
        segment.name,
        sorted(needs),
        len(drafts),
    )
    return drafts


__all__ = [
    "IMPACT_WEIGHTS",
    "PROGRAM_CATALOG",
    "ProgramTemplate",
    "RecommendationDraft",
    "analyze_needs",
    "generate_for_segment",
    "target_youth_count",
]
