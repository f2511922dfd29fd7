"""Per-recruiter utilization and team-level capacity gap diagnosis."""

from typing import Dict, List, Optional, Sequence

from capacity_engine.config import (
    DEFAULT_CONFIG,
    EMPTY_PIPELINE_IMPACT_SHARE,
    EMPTY_PIPELINE_REMAINING_WORK,
    HIGH_FRICTION_MULTIPLIER,
    MIN_RECRUITERS_FOR_TEAM,
    TEAM_GAP_TOLERANCE_PERCENT,
    TOP_DRIVERS,
    UTILIZATION_OVERLOADED,
    EngineConfig,
)
from capacity_engine.errors import ensure_finite
from capacity_engine.ladders import calculate_confidence, get_load_status, safe_rate
from capacity_engine.models import (
    CapacityDriver,
    ConfidenceLevel,
    RecruiterCapacity,
    RecruiterLoadRow,
    ReqWithWorkload,
    TeamCapacitySummary,
)

NO_DRIVER = "No dominant driver"


def identify_capacity_drivers(workloads: Sequence[ReqWithWorkload], rows: Sequence[RecruiterLoadRow],
                              config: EngineConfig = DEFAULT_CONFIG,
                              limit: Optional[int] = TOP_DRIVERS) -> List[CapacityDriver]:
    """Rank what is inflating demand, in WU, with the requisitions responsible."""
    drivers = []

    empty = [w for w in workloads if w.components.remaining_work > EMPTY_PIPELINE_REMAINING_WORK]
    if empty:
        drivers.append(CapacityDriver(
            kind="empty_pipeline",
            description=f"{len(empty)} req(s) with empty or thin pipelines",
            impact_wu=sum(w.workload_score * EMPTY_PIPELINE_IMPACT_SHARE for w in empty),
            req_ids=tuple(w.req_id for w in empty),
        ))

    friction = [w for w in workloads if w.components.friction_multiplier > HIGH_FRICTION_MULTIPLIER]
    if friction:
        managers = {w.hiring_manager_id for w in friction}
        drivers.append(CapacityDriver(
            kind="high_friction_hm",
            description=f"{len(friction)} req(s) with slow-feedback hiring managers ({len(managers)} HM)",
            impact_wu=sum(w.workload_score * (w.components.friction_multiplier - 1) for w in friction),
            req_ids=tuple(w.req_id for w in friction),
        ))

    aging = [w for w in workloads if w.req_age_days >= config.aging_threshold_days]
    if aging:
        drivers.append(CapacityDriver(
            kind="aging_reqs",
            description=f"{len(aging)} req(s) open {config.aging_threshold_days}+ days",
            impact_wu=sum(w.workload_score * (w.components.aging_multiplier - 1) for w in aging),
            req_ids=tuple(w.req_id for w in aging),
        ))

    niche = [w for w in workloads if w.niche_weight > 1.0]
    if niche:
        families = sorted({w.segment.job_family for w in niche})
        drivers.append(CapacityDriver(
            kind="niche_roles",
            description=f"{len(niche)} niche req(s) in {', '.join(families)}",
            impact_wu=sum(w.workload_score * (w.niche_weight - 1) for w in niche),
            req_ids=tuple(w.req_id for w in niche),
        ))

    utilization = {r.recruiter_id: r.utilization for r in rows if r.utilization is not None}
    by_family: Dict[str, List[ReqWithWorkload]] = {}
    for w in workloads:
        u = utilization.get(w.recruiter_id)
        if u is not None and u > UTILIZATION_OVERLOADED:
            by_family.setdefault(w.segment.job_family, []).append(w)
    for family, reqs in sorted(by_family.items()):
        # Share of each req's demand above what its recruiter can carry
        excess = sum(w.workload_score * (1 - 1 / utilization[w.recruiter_id]) for w in reqs)
        drivers.append(CapacityDriver(
            kind="understaffed_function",
            description=f"{family} reqs sit with overloaded recruiters",
            impact_wu=excess,
            req_ids=tuple(w.req_id for w in reqs),
        ))

    drivers = [d for d in drivers if d.impact_wu > 0]
    for driver in drivers:
        ensure_finite(driver.impact_wu, f"{driver.kind}.impact_wu")
    drivers.sort(key=lambda d: -d.impact_wu)
    return drivers[:limit] if limit is not None else drivers


def build_recruiter_load_rows(workloads: Sequence[ReqWithWorkload],
                              capacities: Sequence[RecruiterCapacity],
                              external_demand: Optional[Dict[str, float]] = None,
                              config: EngineConfig = DEFAULT_CONFIG) -> List[RecruiterLoadRow]:
    """One row per recruiter, most utilized first; unavailable utilization sorts last."""
    external_demand = external_demand or {}
    by_recruiter: Dict[str, List[ReqWithWorkload]] = {}
    for w in workloads:
        if w.recruiter_id:
            by_recruiter.setdefault(w.recruiter_id, []).append(w)

    capacity_by_id = {c.recruiter_id: c for c in capacities}
    recruiter_ids = sorted(set(by_recruiter) | set(capacity_by_id) | set(external_demand))

    rows = []
    for recruiter_id in recruiter_ids:
        reqs = by_recruiter.get(recruiter_id, [])
        capacity = capacity_by_id.get(recruiter_id)
        demand = external_demand.get(recruiter_id, sum(w.workload_score for w in reqs))
        capacity_wu = capacity.capacity_wu if capacity is not None else None
        utilization = safe_rate(demand, capacity_wu) if capacity_wu else None

        drivers = identify_capacity_drivers(reqs, [], config, limit=1)
        rows.append(RecruiterLoadRow(
            recruiter_id=recruiter_id,
            recruiter_name=capacity.recruiter_name if capacity is not None else recruiter_id,
            demand_wu=ensure_finite(demand, "demand_wu"),
            capacity_wu=capacity_wu,
            utilization=ensure_finite(utilization, "utilization"),
            status=get_load_status(utilization) if utilization is not None else None,
            top_driver=drivers[0].description if drivers else NO_DRIVER,
            req_count=len(reqs),
            confidence=capacity.confidence if capacity is not None else ConfidenceLevel.INSUFFICIENT,
        ))

    rows.sort(key=lambda r: (r.utilization is None, -(r.utilization or 0.0), r.recruiter_id))
    return rows


def build_team_summary(rows: Sequence[RecruiterLoadRow], workloads: Sequence[ReqWithWorkload],
                       config: EngineConfig = DEFAULT_CONFIG) -> TeamCapacitySummary:
    team_demand = sum(r.demand_wu for r in rows)
    usable = [r for r in rows if r.capacity_wu]
    team_capacity = sum(r.capacity_wu for r in usable)
    covered_demand = sum(r.demand_wu for r in usable)
    gap = covered_demand - team_capacity

    gap_percent = safe_rate(gap * 100, team_capacity)
    if gap_percent is not None and gap_percent > TEAM_GAP_TOLERANCE_PERCENT:
        status = "understaffed"
    elif gap_percent is not None and gap_percent < -TEAM_GAP_TOLERANCE_PERCENT:
        status = "overstaffed"
    else:
        status = "balanced"

    return TeamCapacitySummary(
        team_demand=ensure_finite(team_demand, "team_demand"),
        team_capacity=ensure_finite(team_capacity, "team_capacity"),
        capacity_gap=ensure_finite(gap, "capacity_gap"),
        capacity_gap_percent=ensure_finite(gap_percent, "capacity_gap_percent"),
        status=status,
        confidence=calculate_confidence(len(usable), MIN_RECRUITERS_FOR_TEAM),
        top_drivers=tuple(identify_capacity_drivers(workloads, rows, config)),
        uncovered_demand=ensure_finite(team_demand - covered_demand, "uncovered_demand"),
    )
