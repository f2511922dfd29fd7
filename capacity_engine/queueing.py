"""Single-server queue model of capacity-limited funnel stages."""

import math
from dataclasses import replace
from typing import Dict, Optional, Tuple

from capacity_engine.config import (
    BOTTLENECKS_TO_ADDRESS,
    DEFAULT_CONFIG,
    DEFAULT_STAGE_MEDIAN_DAYS,
    REASSIGN_IMPACT_SHARE,
    REASSIGN_MIN_OPEN_REQS,
    TARGET_STAGE_UTILIZATION,
    THROUGHPUT_IMPACT_SHARE,
    TOP_BOTTLENECKS,
    EngineConfig,
)
from capacity_engine.errors import ensure_finite
from capacity_engine.ladders import get_hedge_message, min_confidence
from capacity_engine.models import (
    CAPACITY_LIMITED_STAGES,
    STAGE_LABELS,
    STAGE_OWNERS,
    AdjustedDuration,
    CapacityPenaltyResult,
    CapacityProfile,
    CapacityRecommendation,
    ConfidenceLevel,
    ConfidenceReason,
    GlobalDemand,
    Snapshot,
    Stage,
    StageQueueDiagnostic,
)


def calculate_queue_delay(demand: float, service_rate: float,
                          queue_factor: float = DEFAULT_CONFIG.queue_factor,
                          max_days: float = DEFAULT_CONFIG.max_queue_delay_days) -> float:
    """Extra days waiting at a stage; zero unless demand outruns the service rate."""
    if service_rate <= 0 or demand <= service_rate:
        return 0.0
    raw = (demand - service_rate) / service_rate * 7 * queue_factor
    return min(raw, max_days)


def _count_by_stage(candidates, stages) -> Dict[Stage, int]:
    counts: Dict[Stage, int] = {}
    for c in candidates:
        if c.is_active and c.current_stage in stages:
            counts[c.current_stage] = counts.get(c.current_stage, 0) + 1
    return counts


def compute_global_demand(req_id: str, recruiter_id: Optional[str], hm_id: Optional[str],
                          snapshot: Snapshot) -> GlobalDemand:
    """Stage demand for a forecast; the whole open book only when both owners are known."""
    open_reqs = snapshot.open_requisitions
    recruiter_reqs = tuple(r.req_id for r in open_reqs if recruiter_id and r.recruiter_id == recruiter_id)
    hm_reqs = tuple(r.req_id for r in open_reqs if hm_id and r.hiring_manager_id == hm_id)

    selected = _count_by_stage(snapshot.candidates_for(req_id), tuple(Stage))
    reasons = []

    if recruiter_id and hm_id:
        scope = "global"
        confidence = ConfidenceLevel.HIGH
        recruiter_stages = tuple(s for s in CAPACITY_LIMITED_STAGES if STAGE_OWNERS[s] != "hm")
        hm_stages = tuple(s for s in CAPACITY_LIMITED_STAGES if STAGE_OWNERS[s] == "hm")
        recruiter_candidates = [c for c in snapshot.candidates if c.req_id in set(recruiter_reqs)]
        hm_candidates = [c for c in snapshot.candidates if c.req_id in set(hm_reqs)]
        recruiter_demand = _count_by_stage(recruiter_candidates, recruiter_stages)
        hm_demand = _count_by_stage(hm_candidates, hm_stages)
        if len(recruiter_reqs) > 1:
            reasons.append(ConfidenceReason(
                "sample_size", f"Using global workload: recruiter has {len(recruiter_reqs)} open reqs", "positive"
            ))
    else:
        scope = "single_req"
        confidence = ConfidenceLevel.LOW
        missing = [name for name, value in (("recruiter_id", recruiter_id), ("hm_id", hm_id)) if not value]
        reasons.append(ConfidenceReason(
            "missing_data", f"{' and '.join(missing)} missing; demand limited to this requisition", "negative"
        ))
        recruiter_demand = {s: n for s, n in selected.items() if s in CAPACITY_LIMITED_STAGES and STAGE_OWNERS[s] != "hm"}
        hm_demand = {s: n for s, n in selected.items() if s in CAPACITY_LIMITED_STAGES and STAGE_OWNERS[s] == "hm"}

    if sum(selected.values()) == 0:
        confidence = ConfidenceLevel.LOW
        reasons.append(ConfidenceReason("sample_size", "Selected req has 0 active candidates in pipeline", "negative"))

    return GlobalDemand(
        scope=scope,
        req_id=req_id,
        recruiter_id=recruiter_id,
        hm_id=hm_id,
        recruiter_demand=recruiter_demand,
        hm_demand=hm_demand,
        selected_req_pipeline=selected,
        recruiter_open_reqs=recruiter_reqs,
        hm_open_reqs=hm_reqs,
        confidence=confidence,
        reasons=tuple(reasons),
    )


def effective_demand(stage: Stage, demand: GlobalDemand) -> int:
    if STAGE_OWNERS.get(stage) == "hm":
        return demand.hm_demand.get(stage, 0)
    return demand.recruiter_demand.get(stage, 0)


def _stage_confidence(stage: Stage, profile: CapacityProfile, demand: GlobalDemand) -> ConfidenceLevel:
    owner = STAGE_OWNERS[stage]
    if owner == "recruiter" and not demand.recruiter_id:
        return ConfidenceLevel.LOW
    if owner == "hm" and not demand.hm_id:
        return ConfidenceLevel.LOW
    return profile.stage_confidence(stage)


def _adjusted_duration(stage: Stage, distribution: Optional[Tuple[float, float]],
                       delay: float) -> AdjustedDuration:
    median = math.exp(distribution[0]) if distribution else DEFAULT_STAGE_MEDIAN_DAYS
    adjusted = median + delay
    return AdjustedDuration(
        stage=stage,
        original_median_days=median,
        queue_delay_days=delay,
        adjusted_median_days=adjusted,
        adjusted_mu=math.log(max(1.0, adjusted)),
    )


def _recommendations(bottlenecks, demand: GlobalDemand,
                     profile: CapacityProfile) -> Tuple[CapacityRecommendation, ...]:
    hedge = get_hedge_message(profile.overall_confidence)
    recommendations = []

    for bottleneck in bottlenecks[:BOTTLENECKS_TO_ADDRESS]:
        target_rate = math.ceil(bottleneck.demand / TARGET_STAGE_UTILIZATION)
        if target_rate > bottleneck.service_rate:
            recommendations.append(CapacityRecommendation(
                kind="increase_throughput",
                description=f"{hedge}: Increase {bottleneck.stage_name} throughput to ~{target_rate}/week",
                estimated_impact_days=round(bottleneck.queue_delay_days * THROUGHPUT_IMPACT_SHARE),
                stage=bottleneck.stage,
                owner=bottleneck.owner,
                current_value=bottleneck.service_rate,
                target_value=float(target_rate),
            ))

        open_reqs = len(demand.hm_open_reqs if bottleneck.owner == "hm" else demand.recruiter_open_reqs)
        if open_reqs > REASSIGN_MIN_OPEN_REQS:
            per_req = bottleneck.demand / open_reqs
            to_move = math.ceil((bottleneck.demand - bottleneck.service_rate) / per_req)
            if 0 < to_move < open_reqs:
                who = "HM" if bottleneck.owner == "hm" else "Recruiter"
                recommendations.append(CapacityRecommendation(
                    kind="reassign_workload",
                    description=f"{hedge}: Reassign ~{to_move} req(s) to reduce {who} load",
                    estimated_impact_days=round(bottleneck.queue_delay_days * REASSIGN_IMPACT_SHARE),
                    stage=bottleneck.stage,
                    owner=bottleneck.owner,
                    current_value=float(open_reqs),
                    target_value=float(open_reqs - to_move),
                ))

    if demand.confidence == ConfidenceLevel.LOW:
        recommendations.append(CapacityRecommendation(
            kind="improve_data",
            description="Add recruiter_id and hm_id to improve forecast accuracy",
            estimated_impact_days=0,
        ))
    return tuple(recommendations)


def apply_capacity_penalty(stage_durations: Dict[Stage, Tuple[float, float]], demand: GlobalDemand,
                           profile: CapacityProfile,
                           config: EngineConfig = DEFAULT_CONFIG) -> CapacityPenaltyResult:
    """Diagnose each capacity-limited stage and inflate its duration by the queue delay."""
    diagnostics = []
    adjusted = {}
    for stage in CAPACITY_LIMITED_STAGES:
        stage_demand = effective_demand(stage, demand)
        rate = profile.service_rate(stage)
        delay = ensure_finite(
            calculate_queue_delay(stage_demand, rate, config.queue_factor, config.max_queue_delay_days),
            f"{stage.value}.queue_delay_days",
        )
        diagnostics.append(StageQueueDiagnostic(
            stage=stage,
            stage_name=STAGE_LABELS[stage],
            demand=stage_demand,
            service_rate=rate,
            queue_delay_days=delay,
            is_bottleneck=delay > 0,
            is_primary_bottleneck=False,
            owner=STAGE_OWNERS[stage] if delay > 0 else "none",
            confidence=_stage_confidence(stage, profile, demand),
        ))
        adjusted[stage] = _adjusted_duration(stage, stage_durations.get(stage), delay)

    bottlenecks = [d for d in diagnostics if d.is_bottleneck]
    primary = None
    if bottlenecks:
        # max() keeps the earliest stage on ties
        primary_stage = max(bottlenecks, key=lambda d: d.queue_delay_days).stage
        diagnostics = [
            replace(d, is_primary_bottleneck=d.stage == primary_stage)
            for d in diagnostics
        ]
        bottlenecks = [d for d in diagnostics if d.is_bottleneck]
        primary = next(d for d in diagnostics if d.is_primary_bottleneck)
    top = tuple(sorted(bottlenecks, key=lambda d: -d.queue_delay_days)[:TOP_BOTTLENECKS])

    confidence = min_confidence([d.confidence for d in diagnostics] + [demand.confidence])
    if profile.used_cohort_fallback:
        confidence = min_confidence([confidence, ConfidenceLevel.LOW])

    return CapacityPenaltyResult(
        stage_diagnostics=tuple(diagnostics),
        top_bottlenecks=top,
        primary_bottleneck=primary,
        adjusted_durations=adjusted,
        total_queue_delay_days=ensure_finite(sum(d.queue_delay_days for d in diagnostics), "total_queue_delay_days"),
        confidence=confidence,
        global_demand=demand,
        recommendations=_recommendations(top, demand, profile),
    )
