"""Requisition workload scoring in workload units (WU)."""

from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from capacity_engine.config import (
    DEFAULT_CONFIG,
    FRICTION_WEIGHT_MAX,
    FRICTION_WEIGHT_MIN,
    MIN_LOOPS_FOR_HM_WEIGHT,
    PIPELINE_PROGRESS_WEIGHTS,
    WU_PER_REQ,
    EngineConfig,
)
from capacity_engine.errors import ensure_finite
from capacity_engine.ladders import level_to_band
from capacity_engine.models import (
    Candidate,
    Event,
    EventType,
    ReqWithWorkload,
    Requisition,
    Segment,
    Snapshot,
    Stage,
    WorkloadComponents,
)

DEFAULT_JOB_FAMILY = "General"
DEFAULT_LOCATION_TYPE = "Hybrid"

_DECISION_EVENTS = (EventType.OFFER_EXTENDED, EventType.REJECTION_SENT)
_DECISION_STAGES = (Stage.OFFER, Stage.REJECTED)


def segment_for(req: Requisition) -> Segment:
    return Segment(
        job_family=req.job_family or DEFAULT_JOB_FAMILY,
        level_band=level_to_band(req.level),
        location_type=req.location_type or DEFAULT_LOCATION_TYPE,
    )


def calculate_base_difficulty(req: Requisition, config: EngineConfig = DEFAULT_CONFIG) -> float:
    """Level weight x market weight x niche weight, scaled to WU."""
    level_weight = config.level_weights.get(level_to_band(req.level).value, 1.0) if req.level else 1.0
    market_weight = config.market_weights.get(req.location_type or "", 1.0)
    if req.location_city:
        hard_markets = {city.lower() for city in config.hard_markets}
        if req.location_city.lower() in hard_markets:
            market_weight += config.hard_market_bonus
    niche_weight = config.niche_weights.get(req.job_family or "", 1.0)
    return WU_PER_REQ * level_weight * market_weight * niche_weight


def calculate_remaining_work(candidates: Sequence[Candidate]) -> float:
    """1.0 for an empty pipeline, shrinking as later stages fill up."""
    active = [c for c in candidates if c.is_active]
    if not active:
        return 1.0

    stages = {c.current_stage for c in active}
    progress = 0.0
    if stages & {Stage.LEAD, Stage.APPLIED}:
        progress += PIPELINE_PROGRESS_WEIGHTS["leads"]
    if stages & {Stage.SCREEN, Stage.HM_SCREEN}:
        progress += PIPELINE_PROGRESS_WEIGHTS["screened"]
    if Stage.ONSITE in stages:
        progress += PIPELINE_PROGRESS_WEIGHTS["interviewing"]
    if Stage.FINAL in stages:
        progress += PIPELINE_PROGRESS_WEIGHTS["finalist"]
    if Stage.OFFER in stages:
        progress += PIPELINE_PROGRESS_WEIGHTS["offer"]
    return max(0.0, 1.0 - progress)


def _is_decision(event: Event) -> bool:
    if event.event_type in _DECISION_EVENTS:
        return True
    return event.event_type == EventType.STAGE_CHANGE and event.to_stage in _DECISION_STAGES


def decision_latencies(events: Iterable[Event]) -> List[float]:
    """Hours from each completed interview to the next decision on the same candidate."""
    by_candidate: Dict[str, List[Event]] = {}
    for event in events:
        by_candidate.setdefault(event.candidate_id, []).append(event)

    latencies = []
    for history in by_candidate.values():
        history.sort(key=lambda e: e.timestamp)
        pending = None
        for event in history:
            if event.event_type == EventType.INTERVIEW_COMPLETED:
                pending = event.timestamp
            elif pending is not None and _is_decision(event):
                latencies.append((event.timestamp - pending).total_seconds() / 3600.0)
                pending = None
    return latencies


def calculate_hm_friction_weights(requisitions: Sequence[Requisition], events: Sequence[Event],
                                  config: EngineConfig = DEFAULT_CONFIG) -> Dict[str, float]:
    """Per-manager friction multiplier: own median decision latency over the median across managers."""
    hm_by_req = {r.req_id: r.hiring_manager_id for r in requisitions if r.hiring_manager_id}
    events_by_hm: Dict[str, List[Event]] = {}
    for event in events:
        hm_id = hm_by_req.get(event.req_id)
        if hm_id:
            events_by_hm.setdefault(hm_id, []).append(event)

    medians: Dict[str, float] = {}
    for hm_id, hm_events in events_by_hm.items():
        latencies = decision_latencies(hm_events)
        if len(latencies) >= MIN_LOOPS_FOR_HM_WEIGHT:
            medians[hm_id] = float(np.median(latencies))

    weights = {hm_id: 1.0 for hm_id in events_by_hm}
    if not medians:
        return weights

    overall = float(np.median(list(medians.values())))
    if overall <= 0:
        return weights
    for hm_id, median in medians.items():
        weights[hm_id] = float(np.clip(median / overall, FRICTION_WEIGHT_MIN, FRICTION_WEIGHT_MAX))
    return weights


def calculate_aging_multiplier(age_days: float, config: EngineConfig = DEFAULT_CONFIG) -> float:
    """1.0 until the aging threshold, then linear growth capped at the configured maximum."""
    if age_days <= config.aging_threshold_days:
        return 1.0
    excess = (age_days - config.aging_threshold_days) / config.aging_threshold_days
    return min(config.aging_cap, 1.0 + excess * config.aging_scale_factor)


def build_req_workload(req: Requisition, candidates: Sequence[Candidate],
                       friction_weight: Optional[float], as_of: date,
                       config: EngineConfig = DEFAULT_CONFIG) -> ReqWithWorkload:
    notes = []
    if req.opened_at is None:
        notes.append("opened date missing; aging multiplier defaulted to 1.0")
    if not req.level:
        notes.append("level missing; Mid band assumed")
    if not req.job_family:
        notes.append(f"job family missing; '{DEFAULT_JOB_FAMILY}' assumed")
    if not req.location_type:
        notes.append(f"location type missing; '{DEFAULT_LOCATION_TYPE}' assumed")
    if friction_weight is None:
        notes.append("no hiring manager history; friction multiplier defaulted to 1.0")
        friction_weight = 1.0

    req_candidates = [c for c in candidates if c.req_id == req.req_id]
    age_days = req.age_days(as_of) or 0
    components = WorkloadComponents(
        base_difficulty=calculate_base_difficulty(req, config),
        remaining_work=calculate_remaining_work(req_candidates),
        friction_multiplier=friction_weight,
        aging_multiplier=calculate_aging_multiplier(age_days, config),
    )
    active = [c for c in req_candidates if c.is_active]

    return ReqWithWorkload(
        req_id=req.req_id,
        title=req.title,
        recruiter_id=req.recruiter_id,
        hiring_manager_id=req.hiring_manager_id,
        workload_score=ensure_finite(components.product, "workload_score"),
        components=components,
        segment=segment_for(req),
        niche_weight=config.niche_weights.get(req.job_family or "", 1.0),
        has_offer_out=any(c.current_stage == Stage.OFFER for c in active),
        has_finalist=any(c.current_stage == Stage.FINAL for c in active),
        req_age_days=age_days,
        active_candidates=len(active),
        default_notes=tuple(notes),
    )


def build_all_req_workloads(snapshot: Snapshot, as_of: date,
                            config: EngineConfig = DEFAULT_CONFIG) -> List[ReqWithWorkload]:
    """Score every open requisition in the snapshot."""
    hm_weights = calculate_hm_friction_weights(snapshot.requisitions, snapshot.events, config)
    candidates_by_req: Dict[str, List[Candidate]] = {}
    for candidate in snapshot.candidates:
        candidates_by_req.setdefault(candidate.req_id, []).append(candidate)

    return [
        build_req_workload(
            req,
            candidates_by_req.get(req.req_id, []),
            hm_weights.get(req.hiring_manager_id) if req.hiring_manager_id else None,
            as_of,
            config,
        )
        for req in snapshot.open_requisitions
    ]


def calculate_demand(recruiter_id: str, workloads: Iterable[ReqWithWorkload]) -> float:
    return sum(w.workload_score for w in workloads if w.recruiter_id == recruiter_id)
