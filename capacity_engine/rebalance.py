"""Requisition reassignment search between over- and under-loaded recruiters."""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence

from capacity_engine.capacity import RECRUITER_STAGES, infer_capacity_profile
from capacity_engine.config import (
    DEFAULT_CONFIG,
    MIN_N_FOR_FIT_PAIR,
    UTILIZATION_OVERLOADED,
    EngineConfig,
)
from capacity_engine.errors import ensure_finite
from capacity_engine.fit import get_fit_cell
from capacity_engine.ladders import (
    calculate_confidence,
    get_fit_label,
    get_hedge_message,
    get_load_status,
    safe_rate,
)
from capacity_engine.models import (
    CapacityProfile,
    FitMatrixCell,
    MoveSnapshot,
    RebalanceRecommendation,
    RecruiterLoadRow,
    ReqWithWorkload,
    SimulatedMoveImpact,
    Snapshot,
    Stage,
)
from capacity_engine.queueing import calculate_queue_delay

logger = logging.getLogger(__name__)


@dataclass
class RecruiterState:
    """A recruiter's book as the search mutates it."""

    row: RecruiterLoadRow
    profile: CapacityProfile
    demand_wu: float
    stage_demand: Dict[Stage, int] = field(default_factory=dict)
    moves_away: int = 0
    moves_onto: int = 0

    @property
    def utilization(self) -> Optional[float]:
        return safe_rate(self.demand_wu, self.row.capacity_wu)


def stage_demand_for(req_ids: Sequence[str], snapshot: Snapshot) -> Dict[Stage, int]:
    """Active candidates waiting at each recruiter-served stage across the given reqs."""
    ids = set(req_ids)
    counts: Dict[Stage, int] = {}
    for c in snapshot.candidates:
        if c.req_id in ids and c.is_active and c.current_stage in RECRUITER_STAGES:
            counts[c.current_stage] = counts.get(c.current_stage, 0) + 1
    return counts


def _queue_delay(stage_demand: Dict[Stage, int], profile: CapacityProfile, config: EngineConfig) -> float:
    return sum(
        calculate_queue_delay(stage_demand.get(stage, 0), profile.service_rate(stage),
                              config.queue_factor, config.max_queue_delay_days)
        for stage in RECRUITER_STAGES
    )


def _snapshot(demand_wu: float, stage_demand: Dict[Stage, int], state: RecruiterState,
              config: EngineConfig) -> MoveSnapshot:
    utilization = safe_rate(demand_wu, state.row.capacity_wu)
    return MoveSnapshot(
        utilization=ensure_finite(utilization, "utilization"),
        queue_delay_days=ensure_finite(_queue_delay(stage_demand, state.profile, config), "queue_delay_days"),
        status=get_load_status(utilization) if utilization is not None else None,
        demand_by_stage=dict(stage_demand),
    )


def _shift(stage_demand: Dict[Stage, int], req_demand: Dict[Stage, int], sign: int) -> Dict[Stage, int]:
    shifted = dict(stage_demand)
    for stage, n in req_demand.items():
        shifted[stage] = max(0, shifted.get(stage, 0) + sign * n)
    return shifted


def simulate_move_impact(workload: ReqWithWorkload, req_demand: Dict[Stage, int],
                         source: RecruiterState, destination: RecruiterState,
                         config: EngineConfig = DEFAULT_CONFIG) -> SimulatedMoveImpact:
    """Before/after utilization and queue delay at both ends of a move."""
    before_source = _snapshot(source.demand_wu, source.stage_demand, source, config)
    before_target = _snapshot(destination.demand_wu, destination.stage_demand, destination, config)
    after_source = _snapshot(
        source.demand_wu - workload.workload_score, _shift(source.stage_demand, req_demand, -1), source, config
    )
    after_target = _snapshot(
        destination.demand_wu + workload.workload_score, _shift(destination.stage_demand, req_demand, 1),
        destination, config,
    )

    source_reduction = before_source.queue_delay_days - after_source.queue_delay_days
    target_increase = after_target.queue_delay_days - before_target.queue_delay_days
    balance = 0.0
    if None not in (before_source.utilization, before_target.utilization,
                    after_source.utilization, after_target.utilization):
        balance = (abs(before_source.utilization - before_target.utilization)
                   - abs(after_source.utilization - after_target.utilization))

    return SimulatedMoveImpact(
        req_id=workload.req_id,
        from_recruiter_id=source.row.recruiter_id,
        to_recruiter_id=destination.row.recruiter_id,
        before_source=before_source,
        after_source=after_source,
        before_target=before_target,
        after_target=after_target,
        source_delay_reduction=source_reduction,
        target_delay_increase=target_increase,
        net_delay_reduction=ensure_finite(source_reduction - target_increase, "net_delay_reduction"),
        balance_improvement=ensure_finite(balance, "balance_improvement"),
    )


def _rationale(source: RecruiterState, destination: RecruiterState, workload: ReqWithWorkload,
               impact: SimulatedMoveImpact, dest_cell: Optional[FitMatrixCell]) -> str:
    relief = impact.before_source.utilization - impact.after_source.utilization
    parts = [
        f"Reduces {source.row.recruiter_name}'s load by {round(relief * 100)}%",
        f"{destination.row.recruiter_name} has capacity ({round(impact.after_target.utilization * 100)}% after)",
    ]
    if dest_cell is not None:
        parts.append(f"{get_fit_label(dest_cell.fit_score)} for {workload.segment.label}")
    if impact.net_delay_reduction > 0:
        parts.append(f"Expected ~{impact.net_delay_reduction:.1f}d less queueing")
    return ". ".join(parts) + "."


def _eligible_moves(states: Dict[str, RecruiterState], workloads: Sequence[ReqWithWorkload],
                    cells: Sequence[FitMatrixCell], req_demand: Dict[str, Dict[Stage, int]],
                    moved: set, config: EngineConfig):
    for source in states.values():
        if source.utilization is None or source.utilization <= UTILIZATION_OVERLOADED:
            continue
        if source.moves_away >= config.max_moves_per_recruiter:
            continue
        for workload in workloads:
            if workload.recruiter_id != source.row.recruiter_id or workload.req_id in moved:
                continue
            if workload.has_offer_out or workload.has_finalist or workload.workload_score <= 0:
                continue
            for destination in states.values():
                if destination is source or destination.moves_onto >= config.max_moves_per_recruiter:
                    continue
                dest_cell = get_fit_cell(cells, destination.row.recruiter_id, workload.segment)
                if dest_cell is None and config.require_destination_fit:
                    continue
                if dest_cell is not None and dest_cell.fit_score < config.min_fit_for_assignment:
                    continue
                after = safe_rate(destination.demand_wu + workload.workload_score, destination.row.capacity_wu)
                if after is None or after > config.max_dest_utilization:
                    continue
                impact = simulate_move_impact(workload, req_demand[workload.req_id], source, destination, config)
                if impact.net_delay_reduction < 0 or impact.balance_improvement <= 0:
                    continue
                yield source, destination, workload, dest_cell, impact


def recommend_rebalance(rows: Sequence[RecruiterLoadRow], cells: Sequence[FitMatrixCell],
                        workloads: Sequence[ReqWithWorkload], snapshot: Snapshot, as_of: date,
                        config: EngineConfig = DEFAULT_CONFIG,
                        profiles: Optional[Dict[str, CapacityProfile]] = None) -> List[RebalanceRecommendation]:
    """Greedy move search; every accepted move updates the books before the next is chosen."""
    states: Dict[str, RecruiterState] = {}
    for row in rows:
        if row.utilization is None:
            continue
        profile = (profiles or {}).get(row.recruiter_id)
        if profile is None:
            profile = infer_capacity_profile(row.recruiter_id, None, snapshot, as_of, config)
        owned = [w.req_id for w in workloads if w.recruiter_id == row.recruiter_id]
        states[row.recruiter_id] = RecruiterState(
            row=row,
            profile=profile,
            demand_wu=row.demand_wu,
            stage_demand=stage_demand_for(owned, snapshot),
        )

    req_demand = {w.req_id: stage_demand_for([w.req_id], snapshot) for w in workloads}
    moved = set()
    recommendations = []

    while len(recommendations) < config.max_recommendations:
        options = sorted(
            _eligible_moves(states, workloads, cells, req_demand, moved, config),
            key=lambda o: (o[2].req_id, o[1].row.recruiter_id),
        )
        if not options:
            break
        # max() keeps the first of equal options, so ties go to the lowest ids
        source, destination, workload, dest_cell, impact = max(
            options,
            key=lambda o: (o[4].net_delay_reduction, o[4].balance_improvement,
                           o[3].fit_score if o[3] is not None else float("-inf")),
        )

        source_cell = get_fit_cell(cells, source.row.recruiter_id, workload.segment)
        combined_n = (source_cell.sample_size if source_cell else 0) + (dest_cell.sample_size if dest_cell else 0)
        confidence = calculate_confidence(combined_n, MIN_N_FOR_FIT_PAIR)
        fit_improvement = None
        if source_cell is not None and dest_cell is not None:
            fit_improvement = dest_cell.fit_score - source_cell.fit_score

        recommendations.append(RebalanceRecommendation(
            rank=len(recommendations) + 1,
            req_id=workload.req_id,
            req_title=workload.title,
            segment=workload.segment,
            from_recruiter_id=source.row.recruiter_id,
            from_recruiter_name=source.row.recruiter_name,
            to_recruiter_id=destination.row.recruiter_id,
            to_recruiter_name=destination.row.recruiter_name,
            demand_impact_wu=workload.workload_score,
            destination_fit=dest_cell.fit_score if dest_cell is not None else None,
            fit_improvement=fit_improvement,
            rationale=_rationale(source, destination, workload, impact, dest_cell),
            confidence=confidence,
            hedge_message=get_hedge_message(confidence),
            impact=impact,
        ))

        source.demand_wu -= workload.workload_score
        destination.demand_wu += workload.workload_score
        source.stage_demand = _shift(source.stage_demand, req_demand[workload.req_id], -1)
        destination.stage_demand = _shift(destination.stage_demand, req_demand[workload.req_id], 1)
        source.moves_away += 1
        destination.moves_onto += 1
        moved.add(workload.req_id)

    logger.info("Rebalance search produced %d recommendation(s)", len(recommendations))
    return recommendations
