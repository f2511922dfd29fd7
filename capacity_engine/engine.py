"""Top-level entry points: full capacity analysis, per-req forecasts and explain payloads."""

import logging
from datetime import date
from typing import Dict, List, Optional

from capacity_engine.capacity import estimate_recruiter_capacities, infer_capacity_profile
from capacity_engine.config import (
    DEFAULT_CONFIG,
    MIN_RECRUITER_ID_COVERAGE,
    MIN_RECRUITERS_FOR_TEAM,
    MIN_REQS_FOR_ANALYSIS,
    EngineConfig,
)
from capacity_engine.data_loader import validate_snapshot
from capacity_engine.errors import SnapshotError
from capacity_engine.fit import build_fit_matrix, get_fit_cell
from capacity_engine.forecasting import estimate_simulation_parameters, run_capacity_aware_forecast
from capacity_engine.gap_analysis import (
    build_recruiter_load_rows,
    build_team_summary,
    identify_capacity_drivers,
)
from capacity_engine.ladders import get_fit_label, get_hedge_message
from capacity_engine.models import (
    CapacityAnalysisResult,
    CapacityAwareForecast,
    Segment,
    Snapshot,
)
from capacity_engine.rebalance import recommend_rebalance
from capacity_engine.workload import build_all_req_workloads

logger = logging.getLogger(__name__)


def check_blocking_conditions(snapshot: Snapshot) -> Optional[str]:
    """Reason the dataset is too small to analyze, or None when it is usable."""
    reasons = []
    recruiters = {r.recruiter_id for r in snapshot.requisitions if r.recruiter_id}
    if len(recruiters) < MIN_RECRUITERS_FOR_TEAM:
        reasons.append(
            f"Need at least {MIN_RECRUITERS_FOR_TEAM} recruiters with assigned requisitions (found {len(recruiters)})"
        )

    total = len(snapshot.requisitions)
    if total < MIN_REQS_FOR_ANALYSIS:
        reasons.append(f"Need at least {MIN_REQS_FOR_ANALYSIS} requisitions (found {total})")

    assigned = sum(1 for r in snapshot.requisitions if r.recruiter_id)
    coverage = assigned / total if total else 0.0
    if coverage < MIN_RECRUITER_ID_COVERAGE:
        reasons.append(
            f"Only {coverage:.0%} of requisitions have a recruiter assigned "
            f"(need {MIN_RECRUITER_ID_COVERAGE:.0%})"
        )

    return "; ".join(reasons) if reasons else None


def analyze_capacity(snapshot: Snapshot, as_of: date,
                     config: EngineConfig = DEFAULT_CONFIG) -> CapacityAnalysisResult:
    """Workload, capacity, fit and rebalancing for the whole team as of a given date."""
    ok, message = validate_snapshot(snapshot)
    if not ok:
        logger.warning("Snapshot has data quality problems: %s", message)

    block_reason = check_blocking_conditions(snapshot)
    if block_reason is not None:
        logger.info("Capacity analysis blocked: %s", block_reason)
        return CapacityAnalysisResult(
            blocked=True,
            block_reason=block_reason,
            team_summary=None,
            recruiter_loads=(),
            fit_matrix=(),
            rebalance_recommendations=(),
            req_workloads=(),
            recruiter_capacities=(),
        )

    workloads = build_all_req_workloads(snapshot, as_of, config)
    capacities = estimate_recruiter_capacities(snapshot, as_of, config)
    rows = build_recruiter_load_rows(workloads, capacities, snapshot.recruiter_demand, config)
    team = build_team_summary(rows, workloads, config)
    cells = build_fit_matrix(snapshot, config)
    recommendations = recommend_rebalance(rows, cells, workloads, snapshot, as_of, config)

    logger.info(
        "Capacity analysis: %d reqs, %d recruiters, %d fit cells, %d moves, team %s",
        len(workloads), len(rows), len(cells), len(recommendations), team.status,
    )
    return CapacityAnalysisResult(
        blocked=False,
        block_reason=None,
        team_summary=team,
        recruiter_loads=tuple(rows),
        fit_matrix=tuple(cells),
        rebalance_recommendations=tuple(recommendations),
        req_workloads=tuple(workloads),
        recruiter_capacities=tuple(capacities),
    )


def forecast_requisition(req_id: str, snapshot: Snapshot, as_of: date,
                         config: EngineConfig = DEFAULT_CONFIG, seed: Optional[int] = None,
                         target_date: Optional[date] = None, workers: int = 1) -> CapacityAwareForecast:
    req = next((r for r in snapshot.requisitions if r.req_id == req_id), None)
    if req is None:
        raise SnapshotError(f"Unknown requisition {req_id}")

    profile = infer_capacity_profile(req.recruiter_id, req.hiring_manager_id, snapshot, as_of, config)
    params = estimate_simulation_parameters(snapshot)
    return run_capacity_aware_forecast(req, snapshot, as_of, profile, params, config, seed, target_date, workers)


def explain_overload(recruiter_id: str, result: CapacityAnalysisResult) -> Optional[Dict]:
    """Demand breakdown and capacity derivation behind one recruiter's utilization."""
    row = next((r for r in result.recruiter_loads if r.recruiter_id == recruiter_id), None)
    if row is None:
        return None
    capacity = next((c for c in result.recruiter_capacities if c.recruiter_id == recruiter_id), None)
    reqs = sorted(
        (w for w in result.req_workloads if w.recruiter_id == recruiter_id),
        key=lambda w: -w.workload_score,
    )

    demand: List[Dict] = [
        {
            'req_id': w.req_id,
            'title': w.title,
            'workload_score': w.workload_score,
            'base_difficulty': w.components.base_difficulty,
            'remaining_work': w.components.remaining_work,
            'friction_multiplier': w.components.friction_multiplier,
            'aging_multiplier': w.components.aging_multiplier,
            'default_notes': list(w.default_notes),
        }
        for w in reqs
    ]
    derivation = None
    if capacity is not None:
        derivation = {
            'capacity_wu': capacity.capacity_wu,
            'source': capacity.source,
            'stable_weeks': capacity.stable_weeks,
            'median_weekly_load': capacity.median_weekly_load,
            'confidence': capacity.confidence.value,
            'reasons': [f"{r.kind}: {r.message}" for r in capacity.reasons],
        }

    return {
        'recruiter_id': row.recruiter_id,
        'recruiter_name': row.recruiter_name,
        'demand_wu': row.demand_wu,
        'capacity_wu': row.capacity_wu,
        'utilization': row.utilization,
        'status': row.status,
        'demand_breakdown': demand,
        'capacity_derivation': derivation,
        'drivers': [
            {'kind': d.kind, 'description': d.description, 'impact_wu': d.impact_wu, 'req_ids': list(d.req_ids)}
            for d in identify_capacity_drivers(reqs, [row], limit=None)
        ],
        'caveat': get_hedge_message(row.confidence),
    }


def explain_fit(recruiter_id: str, segment: Segment, result: CapacityAnalysisResult) -> Optional[Dict]:
    """Metric-by-metric breakdown of a fit cell; None when the cell was omitted."""
    cell = get_fit_cell(result.fit_matrix, recruiter_id, segment)
    if cell is None:
        return None
    return {
        'recruiter_id': cell.recruiter_id,
        'recruiter_name': cell.recruiter_name,
        'segment': cell.segment.label,
        'fit_score': cell.fit_score,
        'label': get_fit_label(cell.fit_score),
        'confidence': cell.confidence.value,
        'sample_size': cell.sample_size,
        'metrics': [
            {
                'metric': m.metric,
                'observed': m.observed,
                'expected': m.expected,
                'raw_residual': m.raw_residual,
                'sample_size': m.sample_size,
                'shrinkage_factor': m.shrinkage_factor,
                'adjusted_residual': m.adjusted_residual,
                'weight': m.weight,
                'contribution': m.contribution,
            }
            for m in cell.metrics
        ],
        'caveat': get_hedge_message(cell.confidence),
    }
