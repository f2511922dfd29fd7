"""Monte Carlo fill-date forecasting, pipeline-only versus capacity-aware."""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy import stats as stats_module

from capacity_engine.config import (
    CAPACITY_CONSTRAINED_DELAY_DAYS,
    CAPACITY_CONSTRAINED_P50_DAYS,
    DEFAULT_CONFIG,
    DEFAULT_PASS_RATES,
    DEFAULT_STAGE_DURATIONS,
    MIN_TRANSITIONS_FOR_THROUGHPUT,
    NO_FILL_HORIZON_DAYS,
    PASS_RATE_PRIOR_WEIGHT,
    EngineConfig,
)
from capacity_engine.errors import ensure_all_finite, ensure_finite
from capacity_engine.ladders import min_confidence, safe_rate, shrink_rate
from capacity_engine.models import (
    FUNNEL_ORDER,
    CapacityAwareForecast,
    CapacityPenaltyResult,
    CapacityProfile,
    EventType,
    ForecastSummary,
    Requisition,
    SimulationParameters,
    Snapshot,
    Stage,
)
from capacity_engine.queueing import apply_capacity_penalty, compute_global_demand

logger = logging.getLogger(__name__)

# Stages a candidate still has to clear before a hire
SIMULATED_STAGES = FUNNEL_ORDER[:-1]
_ENTRY_INDEX = {Stage.LEAD: 0, Stage.APPLIED: 0}
_ENTRY_INDEX.update({stage: i for i, stage in enumerate(SIMULATED_STAGES)})

MIN_SIGMA = 0.1


def calculate_confidence_interval(successes: int, trials: int,
                                  confidence: float = 0.95) -> Tuple[float, float]:
    """Calculate Wilson score confidence interval for a proportion."""
    if trials == 0:
        return (0.0, 1.0)

    p = successes / trials
    z = stats_module.norm.ppf((1 + confidence) / 2)

    denominator = 1 + z**2 / trials
    center = (p + z**2 / (2 * trials)) / denominator
    margin = z * np.sqrt((p * (1 - p) + z**2 / (4 * trials)) / trials) / denominator

    return (float(max(0, center - margin)), float(min(1, center + margin)))


def estimate_simulation_parameters(snapshot: Snapshot,
                                   req_ids: Optional[Sequence[str]] = None) -> SimulationParameters:
    """Stage pass rates and lognormal stage durations learned from stage-change history."""
    scope = set(req_ids) if req_ids is not None else None
    entries: Dict[str, Dict[Stage, object]] = {}
    for event in snapshot.events:
        if event.event_type != EventType.STAGE_CHANGE or event.to_stage is None:
            continue
        if scope is not None and event.req_id not in scope:
            continue
        history = entries.setdefault(event.candidate_id, {})
        if event.to_stage not in history or event.timestamp < history[event.to_stage]:
            history[event.to_stage] = event.timestamp

    order = {stage: i for i, stage in enumerate(FUNNEL_ORDER)}
    pass_rates = {}
    durations = {}
    sample_sizes = {}
    for i, stage in enumerate(SIMULATED_STAGES):
        entered = 0
        passed = 0
        days = []
        for history in entries.values():
            if stage not in history:
                continue
            entered += 1
            later = [(order[s], ts) for s, ts in history.items() if s in order and order[s] > i]
            if later:
                passed += 1
                next_ts = min(later)[1]
                elapsed = (next_ts - history[stage]).total_seconds() / 86400.0
                if elapsed > 0:
                    days.append(elapsed)

        prior = DEFAULT_PASS_RATES[stage.value]
        rate = shrink_rate(safe_rate(passed, entered), prior, entered, PASS_RATE_PRIOR_WEIGHT)
        pass_rates[stage] = ensure_finite(min(1.0, max(0.0, rate)), f"{stage.value}.pass_rate")

        if len(days) >= MIN_TRANSITIONS_FOR_THROUGHPUT:
            logs = np.log(days)
            durations[stage] = (float(np.mean(logs)), max(MIN_SIGMA, float(np.std(logs))))
        else:
            durations[stage] = DEFAULT_STAGE_DURATIONS[stage.value]
        sample_sizes[stage] = entered

    return SimulationParameters(pass_rates=pass_rates, durations=durations, sample_sizes=sample_sizes)


def _simulate_batch(seed_seq: np.random.SeedSequence, n_trials: int, start_indices: np.ndarray,
                    pass_rates: np.ndarray, mus: np.ndarray, adjusted_mus: np.ndarray,
                    sigmas: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Days to first hire per trial, with and without queue delay, from the same draws."""
    rng = np.random.default_rng(seed_seq)
    n_candidates = len(start_indices)
    n_stages = len(mus)
    if n_candidates == 0:
        horizon = np.full(n_trials, float(NO_FILL_HORIZON_DAYS))
        return horizon, horizon.copy()

    z = rng.standard_normal((n_trials, n_candidates, n_stages))
    u = rng.random((n_trials, n_candidates, n_stages))
    remaining = np.arange(n_stages)[None, :] >= start_indices[:, None]

    hired = np.all((u < pass_rates) | ~remaining, axis=2)

    results = []
    for stage_mus in (mus, adjusted_mus):
        durations = np.exp(stage_mus + sigmas * z) * remaining
        elapsed = durations.sum(axis=2)
        first_hire = np.where(hired, elapsed, np.inf).min(axis=1)
        results.append(np.minimum(first_hire, NO_FILL_HORIZON_DAYS))
    return results[0], results[1]


def simulate_fill_days(start_stages: Sequence[Stage], params: SimulationParameters,
                       penalty: Optional[CapacityPenaltyResult], n_trials: int, seed: int,
                       n_batches: int = 1, workers: int = 1) -> Tuple[np.ndarray, np.ndarray]:
    """Run the trials in independently seeded batches and merge them in batch order.

    Returns sorted (pipeline_only, capacity_aware) day arrays. Both come from
    the same random draws, so any gap between them is the queue delay alone.
    """
    start_indices = np.array([_ENTRY_INDEX[s] for s in start_stages], dtype=int)
    pass_rates = np.array([params.pass_rates[s] for s in SIMULATED_STAGES])
    mus = np.array([params.durations[s][0] for s in SIMULATED_STAGES])
    sigmas = np.array([params.durations[s][1] for s in SIMULATED_STAGES])
    adjusted_mus = mus.copy()
    if penalty is not None:
        for i, stage in enumerate(SIMULATED_STAGES):
            adjusted = penalty.adjusted_durations.get(stage)
            if adjusted is not None and adjusted.queue_delay_days > 0:
                adjusted_mus[i] = max(mus[i], adjusted.adjusted_mu)

    n_batches = max(1, min(n_batches, n_trials))
    sizes = [len(chunk) for chunk in np.array_split(np.arange(n_trials), n_batches)]
    children = np.random.SeedSequence(seed).spawn(n_batches)
    args = [(child, size, start_indices, pass_rates, mus, adjusted_mus, sigmas)
            for child, size in zip(children, sizes)]

    if workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            batches = list(pool.map(lambda a: _simulate_batch(*a), args))
    else:
        batches = [_simulate_batch(*a) for a in args]

    pipeline = np.sort(np.concatenate([b[0] for b in batches]))
    capacity = np.sort(np.concatenate([b[1] for b in batches]))
    return pipeline, capacity


def summarize_fill_days(days: np.ndarray, as_of: date,
                        target_date: Optional[date] = None) -> ForecastSummary:
    ensure_all_finite(days, "simulated_days")
    p10, p50, p90 = (float(v) for v in np.percentile(days, [10, 50, 90]))

    probability = None
    interval = None
    if target_date is not None:
        horizon = (target_date - as_of).days
        on_time = int(np.sum(days <= horizon))
        probability = on_time / len(days)
        interval = calculate_confidence_interval(on_time, len(days))

    return ForecastSummary(
        p10_date=as_of + timedelta(days=round(p10)),
        p50_date=as_of + timedelta(days=round(p50)),
        p90_date=as_of + timedelta(days=round(p90)),
        p10_days=p10,
        p50_days=p50,
        p90_days=p90,
        fill_rate=float(np.mean(days < NO_FILL_HORIZON_DAYS)),
        simulated_days=days,
        probability_by_target=probability,
        probability_interval=interval,
    )


def run_capacity_aware_forecast(req: Requisition, snapshot: Snapshot, as_of: date,
                                profile: CapacityProfile,
                                params: Optional[SimulationParameters] = None,
                                config: EngineConfig = DEFAULT_CONFIG,
                                seed: Optional[int] = None,
                                target_date: Optional[date] = None,
                                workers: int = 1) -> CapacityAwareForecast:
    """Pipeline-only and capacity-aware P10/P50/P90 fill dates for one requisition."""
    seed = config.seed if seed is None else seed
    if params is None:
        params = estimate_simulation_parameters(snapshot)

    demand = compute_global_demand(req.req_id, req.recruiter_id, req.hiring_manager_id, snapshot)
    penalty = apply_capacity_penalty(params.durations, demand, profile, config)

    start_stages: List[Stage] = [
        c.current_stage for c in snapshot.candidates_for(req.req_id)
        if c.is_active and c.current_stage in _ENTRY_INDEX
    ]
    pipeline_days, capacity_days = simulate_fill_days(
        start_stages, params, penalty, config.simulation_runs, seed, config.simulation_batches, workers
    )
    pipeline_only = summarize_fill_days(pipeline_days, as_of, target_date)
    capacity_aware = summarize_fill_days(capacity_days, as_of, target_date)

    p50_delta = max(0, round(capacity_aware.p50_days - pipeline_only.p50_days))
    constrained = (
        p50_delta >= CAPACITY_CONSTRAINED_P50_DAYS
        or penalty.total_queue_delay_days >= CAPACITY_CONSTRAINED_DELAY_DAYS
    )

    logger.info(
        "Forecast for %s: P50 %s pipeline-only, %s capacity-aware (%d trials, seed %d)",
        req.req_id, pipeline_only.p50_date, capacity_aware.p50_date, config.simulation_runs, seed,
    )
    return CapacityAwareForecast(
        req_id=req.req_id,
        pipeline_only=pipeline_only,
        capacity_aware=capacity_aware,
        p50_delta_days=p50_delta,
        bottlenecks=penalty.top_bottlenecks,
        primary_bottleneck=penalty.primary_bottleneck,
        global_demand=demand,
        confidence=min_confidence([penalty.confidence, profile.overall_confidence]),
        reasons=profile.reasons + demand.reasons,
        recommendations=penalty.recommendations,
        capacity_constrained=constrained,
        seed=seed,
        iterations=config.simulation_runs,
    )
