"""Segment-level recruiter fit scoring with shrinkage-adjusted residuals.

For every (recruiter, segment) pair with at least one requisition, four
metrics are observed and compared to the segment's cohort median:

    hires_per_wu          hires / workload units carried   (n = requisitions)
    ttf_days              median applied-to-hire days      (n = timed hires)
    offer_accept_rate     hires / offers extended          (n = offers extended)
    candidate_throughput  candidates advanced per week     (n = candidates advanced)

Each raw residual is shrunk by n / (n + k). Days-to-fill enters the weighted
sum negated because lower is better. A pair is left out of the matrix
entirely when any metric's sample is below the floor or any observed value is
unavailable.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from capacity_engine.config import (
    BENCHMARK_DEFAULTS,
    DEFAULT_CONFIG,
    MAX_TTF_DAYS,
    METRIC_WEIGHTS,
    EngineConfig,
)
from capacity_engine.errors import ensure_finite
from capacity_engine.ladders import (
    calculate_confidence,
    median_or_none,
    min_confidence,
    safe_rate,
    shrink_residual,
    shrinkage_factor,
)
from capacity_engine.models import (
    EventType,
    FitMatrixCell,
    MetricResidual,
    Segment,
    Snapshot,
)
from capacity_engine.workload import calculate_base_difficulty, segment_for

METRICS = ("hires_per_wu", "ttf_days", "offer_accept_rate", "candidate_throughput")
INVERTED_METRICS = ("ttf_days",)


@dataclass(frozen=True)
class SegmentObservation:
    recruiter_id: str
    segment: Segment
    values: Dict[str, Optional[float]]
    sample_sizes: Dict[str, int]


def observe_segment(recruiter_id: str, segment: Segment, snapshot: Snapshot,
                    config: EngineConfig = DEFAULT_CONFIG) -> Optional[SegmentObservation]:
    """Raw metric values for one recruiter within one segment; None if they own no reqs there."""
    reqs = [
        r for r in snapshot.requisitions
        if r.recruiter_id == recruiter_id and segment_for(r) == segment
    ]
    if not reqs:
        return None

    req_ids = {r.req_id for r in reqs}
    candidates = [c for c in snapshot.candidates if c.req_id in req_ids]
    workload_units = sum(calculate_base_difficulty(r, config) for r in reqs)

    hires = [c for c in candidates if c.hired_at is not None]
    ttf_days = []
    for c in hires:
        if c.applied_at is None:
            continue
        days = (c.hired_at - c.applied_at).days
        if 0 < days < MAX_TTF_DAYS:
            ttf_days.append(days)

    offers = [c for c in candidates if c.offer_extended_at is not None]
    accepted = [c for c in offers if c.hired_at is not None]

    advance_events = [
        e for e in snapshot.events
        if e.req_id in req_ids and e.event_type == EventType.STAGE_CHANGE
    ]
    advanced = {e.candidate_id for e in advance_events}
    active_weeks = {e.timestamp.isocalendar()[:2] for e in advance_events}

    return SegmentObservation(
        recruiter_id=recruiter_id,
        segment=segment,
        values={
            "hires_per_wu": safe_rate(len(hires), workload_units),
            "ttf_days": float(np.median(ttf_days)) if ttf_days else None,
            "offer_accept_rate": safe_rate(len(accepted), len(offers)),
            "candidate_throughput": safe_rate(len(advanced), len(active_weeks)),
        },
        sample_sizes={
            "hires_per_wu": len(reqs),
            "ttf_days": len(ttf_days),
            "offer_accept_rate": len(offers),
            "candidate_throughput": len(advanced),
        },
    )


def calculate_benchmarks(observations: Sequence[SegmentObservation]) -> Dict[str, float]:
    """Cohort median per metric, or the fixed default when no peer has a value."""
    benchmarks = {}
    for metric in METRICS:
        median = median_or_none(o.values[metric] for o in observations)
        benchmarks[metric] = median if median is not None else BENCHMARK_DEFAULTS[metric]
    return benchmarks


def build_metric_residual(metric: str, observed: float, expected: float, n: int,
                          k: float = DEFAULT_CONFIG.shrinkage_k) -> MetricResidual:
    raw = observed - expected
    adjusted = shrink_residual(raw, n, k)
    weight = METRIC_WEIGHTS[metric]
    signed = -adjusted if metric in INVERTED_METRICS else adjusted
    return MetricResidual(
        metric=metric,
        observed=ensure_finite(observed, f"{metric}.observed"),
        expected=ensure_finite(expected, f"{metric}.expected"),
        raw_residual=ensure_finite(raw, f"{metric}.raw_residual"),
        sample_size=n,
        shrinkage_factor=shrinkage_factor(n, k),
        adjusted_residual=ensure_finite(adjusted, f"{metric}.adjusted_residual"),
        weight=weight,
        contribution=ensure_finite(signed * weight, f"{metric}.contribution"),
    )


def calculate_fit_score(residuals: Sequence[MetricResidual], min_n: int) -> Optional[float]:
    """Weighted average of adjusted residuals; None if any metric is under-sampled."""
    if not residuals or any(r.sample_size < min_n for r in residuals):
        return None
    total_weight = sum(r.weight for r in residuals)
    if total_weight <= 0:
        return None
    return sum(r.contribution for r in residuals) / total_weight


def build_fit_matrix(snapshot: Snapshot, config: EngineConfig = DEFAULT_CONFIG) -> List[FitMatrixCell]:
    recruiter_ids = sorted({r.recruiter_id for r in snapshot.requisitions if r.recruiter_id})
    segments = sorted(
        {segment_for(r) for r in snapshot.requisitions if r.recruiter_id},
        key=lambda s: (s.job_family, s.level_band.value, s.location_type),
    )

    cells = []
    for segment in segments:
        observations = [
            obs for obs in (observe_segment(rid, segment, snapshot, config) for rid in recruiter_ids)
            if obs is not None
        ]
        benchmarks = calculate_benchmarks(observations)

        for obs in observations:
            if any(obs.values[m] is None for m in METRICS):
                continue
            residuals = [
                build_metric_residual(m, obs.values[m], benchmarks[m], obs.sample_sizes[m], config.shrinkage_k)
                for m in METRICS
            ]
            score = calculate_fit_score(residuals, config.min_n_for_fit_cell)
            if score is None:
                continue
            cells.append(FitMatrixCell(
                recruiter_id=obs.recruiter_id,
                recruiter_name=snapshot.user_name(obs.recruiter_id),
                segment=segment,
                fit_score=ensure_finite(score, "fit_score"),
                confidence=min_confidence(
                    calculate_confidence(r.sample_size, config.min_n_for_fit_cell) for r in residuals
                ),
                sample_size=obs.sample_sizes["hires_per_wu"],
                metrics=tuple(residuals),
            ))
    return cells


def get_fit_cell(cells: Sequence[FitMatrixCell], recruiter_id: str,
                 segment: Segment) -> Optional[FitMatrixCell]:
    for cell in cells:
        if cell.recruiter_id == recruiter_id and cell.segment == segment:
            return cell
    return None


def get_fit_score(cells: Sequence[FitMatrixCell], recruiter_id: str, segment: Segment) -> Optional[float]:
    cell = get_fit_cell(cells, recruiter_id, segment)
    return cell.fit_score if cell is not None else None
