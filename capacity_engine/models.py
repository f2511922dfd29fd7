"""Data models for the Capacity & Fit Analytics Engine."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, Optional, Tuple

import numpy as np


class Stage(str, Enum):
    LEAD = "LEAD"
    APPLIED = "APPLIED"
    SCREEN = "SCREEN"
    HM_SCREEN = "HM_SCREEN"
    ONSITE = "ONSITE"
    FINAL = "FINAL"
    OFFER = "OFFER"
    HIRED = "HIRED"
    REJECTED = "REJECTED"
    WITHDREW = "WITHDREW"


class RequisitionStatus(str, Enum):
    OPEN = "Open"
    CLOSED = "Closed"
    ON_HOLD = "OnHold"
    CANCELED = "Canceled"


class CandidateDisposition(str, Enum):
    ACTIVE = "Active"
    REJECTED = "Rejected"
    WITHDRAWN = "Withdrawn"
    HIRED = "Hired"


class EventType(str, Enum):
    STAGE_CHANGE = "STAGE_CHANGE"
    INTERVIEW_COMPLETED = "INTERVIEW_COMPLETED"
    FEEDBACK_SUBMITTED = "FEEDBACK_SUBMITTED"
    OFFER_EXTENDED = "OFFER_EXTENDED"
    OFFER_ACCEPTED = "OFFER_ACCEPTED"
    OFFER_DECLINED = "OFFER_DECLINED"
    REJECTION_SENT = "REJECTION_SENT"
    CANDIDATE_WITHDREW = "CANDIDATE_WITHDREW"


class UserRole(str, Enum):
    RECRUITER = "Recruiter"
    HIRING_MANAGER = "HiringManager"
    SOURCER = "Sourcer"
    ADMIN = "Admin"


class LevelBand(str, Enum):
    JUNIOR = "Junior"
    MID = "Mid"
    SENIOR = "Senior"
    LEADERSHIP = "Leadership"


class ConfidenceLevel(str, Enum):
    INSUFFICIENT = "INSUFFICIENT"
    LOW = "LOW"
    MED = "MED"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_ORDER.index(self)


_CONFIDENCE_ORDER = (
    ConfidenceLevel.INSUFFICIENT,
    ConfidenceLevel.LOW,
    ConfidenceLevel.MED,
    ConfidenceLevel.HIGH,
)

# Stages whose throughput is limited by a person's time
CAPACITY_LIMITED_STAGES = (Stage.SCREEN, Stage.HM_SCREEN, Stage.ONSITE, Stage.OFFER)

STAGE_OWNERS = {
    Stage.SCREEN: "recruiter",
    Stage.HM_SCREEN: "hm",
    Stage.ONSITE: "shared",
    Stage.OFFER: "recruiter",
}

STAGE_LABELS = {
    Stage.SCREEN: "Screen",
    Stage.HM_SCREEN: "HM Interview",
    Stage.ONSITE: "Onsite",
    Stage.FINAL: "Final",
    Stage.OFFER: "Offer",
}

# Funnel order walked by the simulator; HIRED is the absorbing state
FUNNEL_ORDER = (Stage.SCREEN, Stage.HM_SCREEN, Stage.ONSITE, Stage.FINAL, Stage.OFFER, Stage.HIRED)


# =============================================================================
# INBOUND ENTITIES
# =============================================================================

@dataclass(frozen=True)
class Requisition:
    req_id: str
    recruiter_id: Optional[str]
    hiring_manager_id: Optional[str]
    job_family: Optional[str]
    level: Optional[str]
    location_type: Optional[str]
    opened_at: Optional[date]
    closed_at: Optional[date] = None
    status: RequisitionStatus = RequisitionStatus.OPEN
    title: str = ""
    location_city: Optional[str] = None

    @property
    def is_open(self) -> bool:
        if self.status == RequisitionStatus.OPEN:
            return True
        return self.closed_at is None and self.status not in (
            RequisitionStatus.CLOSED, RequisitionStatus.CANCELED
        )

    def age_days(self, as_of: date) -> Optional[int]:
        if self.opened_at is None:
            return None
        return max(0, (as_of - self.opened_at).days)


@dataclass(frozen=True)
class Candidate:
    candidate_id: str
    req_id: str
    current_stage: Stage
    applied_at: Optional[date] = None
    hired_at: Optional[date] = None
    offer_extended_at: Optional[date] = None
    disposition: CandidateDisposition = CandidateDisposition.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.disposition == CandidateDisposition.ACTIVE


@dataclass(frozen=True)
class Event:
    candidate_id: str
    req_id: str
    event_type: EventType
    timestamp: datetime
    from_stage: Optional[Stage] = None
    to_stage: Optional[Stage] = None
    actor_id: Optional[str] = None


@dataclass(frozen=True)
class User:
    user_id: str
    name: str
    role: UserRole


@dataclass(frozen=True)
class Segment:
    """Cohort-benchmarking unit; compared structurally, never by joined string."""

    job_family: str
    level_band: LevelBand
    location_type: str

    @property
    def label(self) -> str:
        return f"{self.job_family} / {self.level_band.value} / {self.location_type}"


@dataclass(frozen=True)
class Snapshot:
    requisitions: Tuple[Requisition, ...]
    candidates: Tuple[Candidate, ...]
    events: Tuple[Event, ...]
    users: Tuple[User, ...]
    recruiter_demand: Dict[str, float] = field(default_factory=dict)

    def user_name(self, user_id: Optional[str]) -> str:
        for user in self.users:
            if user.user_id == user_id:
                return user.name
        return user_id or "Unassigned"

    @property
    def open_requisitions(self) -> Tuple[Requisition, ...]:
        return tuple(r for r in self.requisitions if r.is_open)

    def candidates_for(self, req_id: str) -> Tuple[Candidate, ...]:
        return tuple(c for c in self.candidates if c.req_id == req_id)


# =============================================================================
# WORKLOAD & CAPACITY
# =============================================================================

@dataclass(frozen=True)
class WorkloadComponents:
    base_difficulty: float
    remaining_work: float
    friction_multiplier: float
    aging_multiplier: float

    @property
    def product(self) -> float:
        return self.base_difficulty * self.remaining_work * self.friction_multiplier * self.aging_multiplier


@dataclass(frozen=True)
class ReqWithWorkload:
    req_id: str
    title: str
    recruiter_id: Optional[str]
    hiring_manager_id: Optional[str]
    workload_score: float
    components: WorkloadComponents
    segment: Segment
    niche_weight: float
    has_offer_out: bool
    has_finalist: bool
    req_age_days: int
    active_candidates: int
    default_notes: Tuple[str, ...] = ()

    @property
    def used_defaults(self) -> bool:
        return bool(self.default_notes)


@dataclass(frozen=True)
class ConfidenceReason:
    kind: str  # sample_size | volatility | missing_data | recency | shrinkage
    message: str
    impact: str  # positive | neutral | negative


@dataclass(frozen=True)
class StageCapacity:
    stage: Stage
    throughput_per_week: float
    n_weeks: int
    n_transitions: int
    confidence: ConfidenceLevel
    source: str  # individual | cohort | global
    observed_throughput: Optional[float] = None

    @property
    def used_cohort_fallback(self) -> bool:
        return self.source != "individual"


@dataclass(frozen=True)
class RecruiterCapacity:
    recruiter_id: str
    recruiter_name: str
    capacity_wu: Optional[float]
    stable_weeks: int
    n_transitions: int
    median_weekly_load: Optional[float]
    source: str
    confidence: ConfidenceLevel
    reasons: Tuple[ConfidenceReason, ...] = ()

    @property
    def used_cohort_fallback(self) -> bool:
        return self.source != "individual"


@dataclass(frozen=True)
class CohortDefaults:
    stage_rates: Dict[Stage, float]
    hm_feedback_hours: float
    n_actors: int
    n_weeks: int


@dataclass(frozen=True)
class CapacityProfile:
    recruiter_id: Optional[str]
    hm_id: Optional[str]
    stages: Dict[Stage, StageCapacity]
    cohort_defaults: CohortDefaults
    overall_confidence: ConfidenceLevel
    reasons: Tuple[ConfidenceReason, ...]
    used_cohort_fallback: bool

    def service_rate(self, stage: Stage) -> float:
        capacity = self.stages.get(stage)
        if capacity is not None:
            return capacity.throughput_per_week
        return self.cohort_defaults.stage_rates[stage]

    def stage_confidence(self, stage: Stage) -> ConfidenceLevel:
        capacity = self.stages.get(stage)
        return capacity.confidence if capacity is not None else ConfidenceLevel.LOW


@dataclass(frozen=True)
class CapacityDriver:
    kind: str  # empty_pipeline | high_friction_hm | aging_reqs | niche_roles | understaffed_function
    description: str
    impact_wu: float
    req_ids: Tuple[str, ...]


@dataclass(frozen=True)
class RecruiterLoadRow:
    recruiter_id: str
    recruiter_name: str
    demand_wu: float
    capacity_wu: Optional[float]
    utilization: Optional[float]
    status: Optional[str]
    top_driver: str
    req_count: int
    confidence: ConfidenceLevel


@dataclass(frozen=True)
class TeamCapacitySummary:
    team_demand: float
    team_capacity: float
    capacity_gap: float
    capacity_gap_percent: Optional[float]
    status: str  # understaffed | overstaffed | balanced
    confidence: ConfidenceLevel
    top_drivers: Tuple[CapacityDriver, ...]
    # demand held by recruiters with unknown capacity; part of team_demand, not of the gap
    uncovered_demand: float = 0.0


# =============================================================================
# FIT
# =============================================================================

@dataclass(frozen=True)
class MetricResidual:
    metric: str
    observed: float
    expected: float
    raw_residual: float
    sample_size: int
    shrinkage_factor: float
    adjusted_residual: float
    weight: float
    contribution: float


@dataclass(frozen=True)
class FitMatrixCell:
    recruiter_id: str
    recruiter_name: str
    segment: Segment
    fit_score: float
    confidence: ConfidenceLevel
    sample_size: int
    metrics: Tuple[MetricResidual, ...]

    def metric(self, name: str) -> Optional[MetricResidual]:
        for residual in self.metrics:
            if residual.metric == name:
                return residual
        return None


# =============================================================================
# QUEUEING & FORECAST
# =============================================================================

@dataclass(frozen=True)
class StageQueueDiagnostic:
    stage: Stage
    stage_name: str
    demand: float
    service_rate: float
    queue_delay_days: float
    is_bottleneck: bool
    is_primary_bottleneck: bool
    owner: str  # recruiter | hm | shared | none
    confidence: ConfidenceLevel


@dataclass(frozen=True)
class AdjustedDuration:
    stage: Stage
    original_median_days: float
    queue_delay_days: float
    adjusted_median_days: float
    adjusted_mu: float


@dataclass(frozen=True)
class GlobalDemand:
    scope: str  # single_req | global
    req_id: str
    recruiter_id: Optional[str]
    hm_id: Optional[str]
    recruiter_demand: Dict[Stage, int]
    hm_demand: Dict[Stage, int]
    selected_req_pipeline: Dict[Stage, int]
    recruiter_open_reqs: Tuple[str, ...]
    hm_open_reqs: Tuple[str, ...]
    confidence: ConfidenceLevel
    reasons: Tuple[ConfidenceReason, ...]


@dataclass(frozen=True)
class CapacityRecommendation:
    kind: str  # increase_throughput | reassign_workload | improve_data
    description: str
    estimated_impact_days: int
    stage: Optional[Stage] = None
    owner: Optional[str] = None
    current_value: Optional[float] = None
    target_value: Optional[float] = None


@dataclass(frozen=True)
class CapacityPenaltyResult:
    stage_diagnostics: Tuple[StageQueueDiagnostic, ...]
    top_bottlenecks: Tuple[StageQueueDiagnostic, ...]
    primary_bottleneck: Optional[StageQueueDiagnostic]
    adjusted_durations: Dict[Stage, AdjustedDuration]
    total_queue_delay_days: float
    confidence: ConfidenceLevel
    global_demand: Optional[GlobalDemand] = None
    recommendations: Tuple[CapacityRecommendation, ...] = ()


@dataclass(frozen=True)
class SimulationParameters:
    pass_rates: Dict[Stage, float]
    durations: Dict[Stage, Tuple[float, float]]  # lognormal (mu, sigma) per stage
    sample_sizes: Dict[Stage, int]


@dataclass(frozen=True, eq=False)
class ForecastSummary:
    p10_date: date
    p50_date: date
    p90_date: date
    p10_days: float
    p50_days: float
    p90_days: float
    fill_rate: float
    simulated_days: np.ndarray
    probability_by_target: Optional[float] = None
    probability_interval: Optional[Tuple[float, float]] = None


@dataclass(frozen=True, eq=False)
class CapacityAwareForecast:
    req_id: str
    pipeline_only: ForecastSummary
    capacity_aware: ForecastSummary
    p50_delta_days: int
    bottlenecks: Tuple[StageQueueDiagnostic, ...]
    primary_bottleneck: Optional[StageQueueDiagnostic]
    global_demand: GlobalDemand
    confidence: ConfidenceLevel
    reasons: Tuple[ConfidenceReason, ...]
    recommendations: Tuple[CapacityRecommendation, ...]
    capacity_constrained: bool
    seed: int
    iterations: int


# =============================================================================
# REBALANCING & ENGINE OUTPUT
# =============================================================================

@dataclass(frozen=True)
class MoveSnapshot:
    utilization: Optional[float]
    queue_delay_days: float
    status: Optional[str]
    demand_by_stage: Dict[Stage, int]


@dataclass(frozen=True)
class SimulatedMoveImpact:
    req_id: str
    from_recruiter_id: str
    to_recruiter_id: str
    before_source: MoveSnapshot
    after_source: MoveSnapshot
    before_target: MoveSnapshot
    after_target: MoveSnapshot
    source_delay_reduction: float
    target_delay_increase: float
    net_delay_reduction: float
    balance_improvement: float


@dataclass(frozen=True)
class RebalanceRecommendation:
    rank: int
    req_id: str
    req_title: str
    segment: Segment
    from_recruiter_id: str
    from_recruiter_name: str
    to_recruiter_id: str
    to_recruiter_name: str
    demand_impact_wu: float
    destination_fit: Optional[float]
    fit_improvement: Optional[float]
    rationale: str
    confidence: ConfidenceLevel
    hedge_message: str
    impact: SimulatedMoveImpact


@dataclass(frozen=True)
class CapacityAnalysisResult:
    blocked: bool
    block_reason: Optional[str]
    team_summary: Optional[TeamCapacitySummary]
    recruiter_loads: Tuple[RecruiterLoadRow, ...]
    fit_matrix: Tuple[FitMatrixCell, ...]
    rebalance_recommendations: Tuple[RebalanceRecommendation, ...]
    req_workloads: Tuple[ReqWithWorkload, ...]
    recruiter_capacities: Tuple[RecruiterCapacity, ...]
