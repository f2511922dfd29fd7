"""Record factories shared across the test suite."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Dict, Optional

from capacity_engine.data_loader import build_snapshot
from capacity_engine.models import (
    Candidate,
    CandidateDisposition,
    CapacityProfile,
    CohortDefaults,
    ConfidenceLevel,
    Event,
    EventType,
    FitMatrixCell,
    LevelBand,
    RecruiterLoadRow,
    ReqWithWorkload,
    Requisition,
    Segment,
    Snapshot,
    Stage,
    StageCapacity,
    User,
    UserRole,
    WorkloadComponents,
)

AS_OF = date(2024, 6, 3)  # a Monday
RECRUITERS = ("r1", "r2", "r3")
RECRUITER_NAMES = {"r1": "Alice Chen", "r2": "Bob Diaz", "r3": "Cara Ito"}
SALES_MID_HYBRID = Segment("Sales", LevelBand.MID, "Hybrid")


def make_req(req_id: str, recruiter_id: Optional[str] = "r1", hiring_manager_id: Optional[str] = "h1",
             job_family: Optional[str] = "Sales", level: Optional[str] = "L3",
             location_type: Optional[str] = "Hybrid", opened_at: Optional[date] = date(2024, 1, 1),
             **kwargs) -> Requisition:
    return Requisition(
        req_id=req_id,
        recruiter_id=recruiter_id,
        hiring_manager_id=hiring_manager_id,
        job_family=job_family,
        level=level,
        location_type=location_type,
        opened_at=opened_at,
        title=kwargs.pop("title", f"Role {req_id}"),
        **kwargs,
    )


def make_candidate(candidate_id: str, req_id: str, stage: Stage = Stage.SCREEN, **kwargs) -> Candidate:
    return Candidate(candidate_id=candidate_id, req_id=req_id, current_stage=stage, **kwargs)


def make_event(candidate_id: str, req_id: str, timestamp: datetime,
               event_type: EventType = EventType.STAGE_CHANGE, to_stage: Optional[Stage] = Stage.SCREEN,
               actor_id: Optional[str] = None) -> Event:
    return Event(
        candidate_id=candidate_id,
        req_id=req_id,
        event_type=event_type,
        timestamp=timestamp,
        to_stage=to_stage,
        actor_id=actor_id,
    )


def make_user(user_id: str, role: UserRole = UserRole.RECRUITER, name: Optional[str] = None) -> User:
    return User(user_id=user_id, name=name or RECRUITER_NAMES.get(user_id, user_id), role=role)


def week_start(weeks_ago: int, as_of: date = AS_OF) -> datetime:
    monday = as_of - timedelta(days=as_of.weekday()) - timedelta(weeks=weeks_ago)
    return datetime(monday.year, monday.month, monday.day)


def make_team_snapshot(history_weeks: int = 10, recruiter_demand: Optional[Dict[str, float]] = None) -> Snapshot:
    """Three recruiters, twelve open Sales reqs, one screen per recruiter per week of history.

    r1 owns q00-q05, r2 owns q06-q08, r3 owns q09-q11. Each req has one active
    candidate at SCREEN and one at ONSITE.
    """
    owners = ["r1"] * 6 + ["r2"] * 3 + ["r3"] * 3
    reqs = [
        make_req(f"q{i:02d}", recruiter_id=owner, hiring_manager_id="h1" if i % 2 == 0 else "h2")
        for i, owner in enumerate(owners)
    ]
    candidates = []
    for req in reqs:
        candidates.append(make_candidate(f"{req.req_id}-a", req.req_id, Stage.SCREEN))
        candidates.append(make_candidate(f"{req.req_id}-b", req.req_id, Stage.ONSITE))

    events = []
    for recruiter_id in RECRUITERS:
        owned = [r for r in reqs if r.recruiter_id == recruiter_id]
        for weeks_ago in range(1, history_weeks + 1):
            req = owned[weeks_ago % len(owned)]
            events.append(make_event(
                f"{req.req_id}-w{weeks_ago}", req.req_id,
                week_start(weeks_ago) + timedelta(days=1, hours=10),
                actor_id=recruiter_id,
            ))

    users = [make_user(rid) for rid in RECRUITERS]
    users += [make_user("h1", UserRole.HIRING_MANAGER, "Hana Park"),
              make_user("h2", UserRole.HIRING_MANAGER, "Omar Nye")]
    return build_snapshot(reqs, candidates, events, users, recruiter_demand)


def make_hired_candidate(candidate_id: str, req_id: str, applied_at: date, days_to_hire: int) -> Candidate:
    hired_at = applied_at + timedelta(days=days_to_hire)
    return Candidate(
        candidate_id=candidate_id,
        req_id=req_id,
        current_stage=Stage.HIRED,
        applied_at=applied_at,
        hired_at=hired_at,
        offer_extended_at=hired_at - timedelta(days=3),
        disposition=CandidateDisposition.HIRED,
    )


def make_profile(rates: Dict[Stage, float], confidence: ConfidenceLevel = ConfidenceLevel.MED,
                 recruiter_id: Optional[str] = "r1", hm_id: Optional[str] = "h1") -> CapacityProfile:
    stages = {
        stage: StageCapacity(
            stage=stage,
            throughput_per_week=rate,
            n_weeks=8,
            n_transitions=12,
            confidence=confidence,
            source="individual",
        )
        for stage, rate in rates.items()
    }
    defaults = CohortDefaults(
        stage_rates={Stage.SCREEN: 8.0, Stage.HM_SCREEN: 4.0, Stage.ONSITE: 3.0, Stage.OFFER: 1.5},
        hm_feedback_hours=48.0,
        n_actors=3,
        n_weeks=8,
    )
    return CapacityProfile(
        recruiter_id=recruiter_id,
        hm_id=hm_id,
        stages=stages,
        cohort_defaults=defaults,
        overall_confidence=confidence,
        reasons=(),
        used_cohort_fallback=False,
    )


def make_workload(req_id: str, recruiter_id: str, score: float, segment: Segment = SALES_MID_HYBRID,
                  has_offer_out: bool = False, has_finalist: bool = False,
                  remaining_work: float = 1.0) -> ReqWithWorkload:
    return ReqWithWorkload(
        req_id=req_id,
        title=f"Role {req_id}",
        recruiter_id=recruiter_id,
        hiring_manager_id="h1",
        workload_score=score,
        components=WorkloadComponents(
            base_difficulty=score / remaining_work if remaining_work else score,
            remaining_work=remaining_work,
            friction_multiplier=1.0,
            aging_multiplier=1.0,
        ),
        segment=segment,
        niche_weight=1.0,
        has_offer_out=has_offer_out,
        has_finalist=has_finalist,
        req_age_days=30,
        active_candidates=1,
    )


def make_row(recruiter_id: str, demand_wu: float, capacity_wu: Optional[float]) -> RecruiterLoadRow:
    utilization = demand_wu / capacity_wu if capacity_wu else None
    return RecruiterLoadRow(
        recruiter_id=recruiter_id,
        recruiter_name=RECRUITER_NAMES.get(recruiter_id, recruiter_id),
        demand_wu=demand_wu,
        capacity_wu=capacity_wu,
        utilization=utilization,
        status=None,
        top_driver="No dominant driver",
        req_count=0,
        confidence=ConfidenceLevel.MED,
    )


def make_cell(recruiter_id: str, fit_score: float, segment: Segment = SALES_MID_HYBRID,
              sample_size: int = 4) -> FitMatrixCell:
    return FitMatrixCell(
        recruiter_id=recruiter_id,
        recruiter_name=RECRUITER_NAMES.get(recruiter_id, recruiter_id),
        segment=segment,
        fit_score=fit_score,
        confidence=ConfidenceLevel.LOW,
        sample_size=sample_size,
        metrics=(),
    )
