"""Sustainable capacity estimation from historical activity.

Two estimates come out of the same trailing window of events:

* per-stage throughput (transitions per week) for each actor, used by the
  queueing forecaster;
* sustainable recruiter capacity in workload units, used by the gap analyzer.

Both resolve through the same ordered fallback chain: the actor's own history,
then the peer cohort median, then a fixed global prior. Anything but the
individual tier is graded LOW.
"""

import logging
from datetime import date, timedelta
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats as stats_module

from capacity_engine.config import (
    DEFAULT_CONFIG,
    GLOBAL_STAGE_PRIORS,
    HM_FEEDBACK_HOURS_PRIOR,
    MIN_OPEN_REQS_STABLE_WEEK,
    MIN_TRANSITIONS_FOR_THROUGHPUT,
    MIN_WEEKS_FOR_CAPACITY,
    RECENCY_WEEKS,
    VOLATILITY_CV_THRESHOLD,
    EngineConfig,
)
from capacity_engine.errors import ensure_finite
from capacity_engine.ladders import grade_capacity, median_or_none, min_confidence
from capacity_engine.models import (
    CAPACITY_LIMITED_STAGES,
    CapacityProfile,
    CohortDefaults,
    ConfidenceLevel,
    ConfidenceReason,
    EventType,
    RecruiterCapacity,
    Requisition,
    Snapshot,
    Stage,
    StageCapacity,
)
from capacity_engine.workload import calculate_base_difficulty, decision_latencies

logger = logging.getLogger(__name__)

_FRAME_COLUMNS = ["req_id", "actor", "event_type", "to_stage", "timestamp"]

RECRUITER_STAGES = (Stage.SCREEN, Stage.ONSITE, Stage.OFFER)
HM_STAGES = (Stage.HM_SCREEN,)


class _Observation(NamedTuple):
    rate: Optional[float]
    n_weeks: int
    n_transitions: int
    weekly: Tuple[float, ...]


class _Tier(NamedTuple):
    source: str
    estimate: Callable[[], Optional[float]]


def _resolve(tiers: Sequence[_Tier]) -> Tuple[str, float]:
    """Walk the tiers in order and return the first usable estimate."""
    for tier in tiers:
        value = tier.estimate()
        if value is not None and value > 0:
            return tier.source, value
    return "none", 0.0


def _window(as_of: date, config: EngineConfig) -> Tuple[pd.Timestamp, pd.Timestamp]:
    end = pd.Timestamp(as_of) + pd.Timedelta(days=1)
    return end - pd.Timedelta(weeks=config.trailing_weeks), end


def _resolve_actor(actor_id: Optional[str], to_stage: Optional[Stage],
                   req: Optional[Requisition]) -> Optional[str]:
    if actor_id:
        return actor_id
    if req is None:
        return None
    if to_stage == Stage.HM_SCREEN:
        return req.hiring_manager_id
    return req.recruiter_id


def build_event_frame(snapshot: Snapshot, as_of: date,
                      config: EngineConfig = DEFAULT_CONFIG) -> pd.DataFrame:
    """Events inside the trailing window, one row each, bucketed by calendar week."""
    reqs = {r.req_id: r for r in snapshot.requisitions}
    rows = [
        {
            "req_id": e.req_id,
            "actor": _resolve_actor(e.actor_id, e.to_stage, reqs.get(e.req_id)),
            "event_type": e.event_type.value,
            "to_stage": e.to_stage.value if e.to_stage is not None else None,
            "timestamp": e.timestamp,
        }
        for e in snapshot.events
    ]
    frame = pd.DataFrame(rows, columns=_FRAME_COLUMNS)
    frame["timestamp"] = pd.to_datetime(frame["timestamp"], utc=True).dt.tz_localize(None)
    start, end = _window(as_of, config)
    frame = frame[(frame["timestamp"] >= start) & (frame["timestamp"] < end)].copy()
    frame["week"] = frame["timestamp"].dt.to_period("W-SUN").dt.start_time
    return frame


def _observe_stage(frame: pd.DataFrame, actor_id: str, stage: Stage) -> _Observation:
    actor_rows = frame[frame["actor"] == actor_id]
    weeks = sorted(actor_rows["week"].unique())
    if not weeks:
        return _Observation(None, 0, 0, ())

    transitions = actor_rows[
        (actor_rows["event_type"] == EventType.STAGE_CHANGE.value)
        & (actor_rows["to_stage"] == stage.value)
    ]
    weekly = transitions.groupby("week").size().reindex(weeks, fill_value=0).astype(float)
    n_transitions = int(weekly.sum())
    rate = None
    if len(weeks) >= MIN_WEEKS_FOR_CAPACITY and n_transitions >= MIN_TRANSITIONS_FOR_THROUGHPUT:
        rate = float(np.median(weekly.values))
    return _Observation(rate, len(weeks), n_transitions, tuple(weekly.values))


def _cohort_stage_rates(frame: pd.DataFrame) -> Dict[Stage, Dict[str, _Observation]]:
    actors = sorted(a for a in frame["actor"].dropna().unique())
    return {
        stage: {actor: _observe_stage(frame, actor, stage) for actor in actors}
        for stage in CAPACITY_LIMITED_STAGES
    }


def _peer_median(observations: Dict[str, _Observation], exclude: Optional[str]) -> Optional[float]:
    return median_or_none(
        obs.rate for actor, obs in observations.items()
        if actor != exclude and obs.rate is not None and obs.rate > 0
    )


def _volatility_reason(weekly: Sequence[float], subject: str) -> Optional[ConfidenceReason]:
    values = list(weekly)
    if len(values) < 2 or np.mean(values) <= 0:
        return None
    cv = float(stats_module.variation(values))
    if cv > VOLATILITY_CV_THRESHOLD:
        return ConfidenceReason(
            kind="volatility",
            message=f"{subject} varies widely week to week (CV {cv:.2f})",
            impact="negative",
        )
    return None


def estimate_stage_capacities(actor_id: Optional[str], snapshot: Snapshot, as_of: date,
                              stages: Sequence[Stage] = CAPACITY_LIMITED_STAGES,
                              config: EngineConfig = DEFAULT_CONFIG,
                              frame: Optional[pd.DataFrame] = None) -> Dict[Stage, StageCapacity]:
    """Throughput per week for each stage an actor serves, resolved through the fallback chain."""
    if frame is None:
        frame = build_event_frame(snapshot, as_of, config)
    cohort = _cohort_stage_rates(frame)

    capacities = {}
    for stage in stages:
        own = cohort[stage].get(actor_id) if actor_id else None
        if own is None:
            own = _Observation(None, 0, 0, ())

        tiers = (
            _Tier("individual", lambda own=own: own.rate),
            _Tier("cohort", lambda stage=stage: _peer_median(cohort[stage], actor_id)),
            _Tier("global", lambda stage=stage: GLOBAL_STAGE_PRIORS[stage.value]),
        )
        source, rate = _resolve(tiers)
        if source == "individual":
            confidence = grade_capacity(own.n_weeks, own.n_transitions)
        else:
            logger.debug("Stage %s for %s resolved from %s tier", stage.value, actor_id, source)
            confidence = ConfidenceLevel.LOW

        observed = None
        if own.n_weeks:
            observed = own.n_transitions / own.n_weeks
        capacities[stage] = StageCapacity(
            stage=stage,
            throughput_per_week=ensure_finite(rate, "throughput_per_week"),
            n_weeks=own.n_weeks,
            n_transitions=own.n_transitions,
            confidence=confidence,
            source=source,
            observed_throughput=ensure_finite(observed, "observed_throughput"),
        )
    return capacities


def calculate_cohort_defaults(snapshot: Snapshot, as_of: date, config: EngineConfig = DEFAULT_CONFIG,
                              frame: Optional[pd.DataFrame] = None) -> CohortDefaults:
    if frame is None:
        frame = build_event_frame(snapshot, as_of, config)
    cohort = _cohort_stage_rates(frame)

    stage_rates = {}
    for stage in CAPACITY_LIMITED_STAGES:
        peer = _peer_median(cohort[stage], None)
        stage_rates[stage] = peer if peer is not None else GLOBAL_STAGE_PRIORS[stage.value]

    # frame rows keep the positional index of snapshot.events
    window_events = [snapshot.events[i] for i in frame.index]
    latencies = decision_latencies(window_events)
    feedback_hours = HM_FEEDBACK_HOURS_PRIOR
    if len(latencies) >= MIN_TRANSITIONS_FOR_THROUGHPUT:
        feedback_hours = float(np.median(latencies))

    return CohortDefaults(
        stage_rates=stage_rates,
        hm_feedback_hours=feedback_hours,
        n_actors=int(frame["actor"].dropna().nunique()),
        n_weeks=int(frame["week"].nunique()),
    )


def _stage_reasons(subject: str, capacities: Dict[Stage, StageCapacity],
                   frame: pd.DataFrame, actor_id: Optional[str]) -> List[ConfidenceReason]:
    reasons = []
    if not capacities:
        return reasons
    n_weeks = max(c.n_weeks for c in capacities.values())
    if n_weeks >= MIN_WEEKS_FOR_CAPACITY * 2:
        reasons.append(ConfidenceReason("sample_size", f"{n_weeks} weeks of {subject} history analyzed", "positive"))
    elif n_weeks >= MIN_WEEKS_FOR_CAPACITY:
        reasons.append(ConfidenceReason("sample_size", f"{n_weeks} weeks of {subject} history (moderate sample)", "neutral"))
    else:
        reasons.append(ConfidenceReason("sample_size", f"Only {n_weeks} weeks of {subject} history (limited)", "negative"))

    sparse = [c.stage.value for c in capacities.values() if c.n_transitions < MIN_TRANSITIONS_FOR_THROUGHPUT]
    if sparse:
        reasons.append(ConfidenceReason(
            "missing_data", f"Few {subject} transitions observed for {', '.join(sparse)}", "negative"
        ))
    if any(c.used_cohort_fallback for c in capacities.values()):
        reasons.append(ConfidenceReason("shrinkage", f"{subject.capitalize()} estimates rely on cohort priors", "negative"))

    if actor_id:
        for capacity in capacities.values():
            if capacity.source != "individual":
                continue
            weekly = _observe_stage(frame, actor_id, capacity.stage).weekly
            reason = _volatility_reason(weekly, f"{subject.capitalize()} {capacity.stage.value} throughput")
            if reason is not None:
                reasons.append(reason)
    return reasons


def infer_capacity_profile(recruiter_id: Optional[str], hm_id: Optional[str], snapshot: Snapshot,
                           as_of: date, config: EngineConfig = DEFAULT_CONFIG) -> CapacityProfile:
    """Stage capacities for one recruiter / hiring manager pairing."""
    frame = build_event_frame(snapshot, as_of, config)
    cohort_defaults = calculate_cohort_defaults(snapshot, as_of, config, frame)

    recruiter_stages = estimate_stage_capacities(recruiter_id, snapshot, as_of, RECRUITER_STAGES, config, frame)
    hm_stages = estimate_stage_capacities(hm_id, snapshot, as_of, HM_STAGES, config, frame)
    stages = {**recruiter_stages, **hm_stages}

    reasons = _stage_reasons("recruiter", recruiter_stages, frame, recruiter_id)
    reasons += _stage_reasons("hiring manager", hm_stages, frame, hm_id)
    used_fallback = any(c.used_cohort_fallback for c in stages.values())
    if used_fallback:
        reasons.append(ConfidenceReason(
            "missing_data", "Using cohort defaults for some capacity estimates", "negative"
        ))

    return CapacityProfile(
        recruiter_id=recruiter_id,
        hm_id=hm_id,
        stages=stages,
        cohort_defaults=cohort_defaults,
        overall_confidence=min_confidence(c.confidence for c in stages.values()),
        reasons=tuple(reasons),
        used_cohort_fallback=used_fallback,
    )


# =============================================================================
# SUSTAINABLE RECRUITER CAPACITY (WU)
# =============================================================================

class _WeekLoad(NamedTuple):
    week_start: date
    open_reqs: int
    load_wu: float
    progressions: int
    hires: int

    @property
    def is_stable(self) -> bool:
        return self.open_reqs >= MIN_OPEN_REQS_STABLE_WEEK and self.progressions >= 1 and self.hires == 0


def _weekly_loads(recruiter_id: str, snapshot: Snapshot, frame: pd.DataFrame, as_of: date,
                  config: EngineConfig) -> List[_WeekLoad]:
    reqs = [r for r in snapshot.requisitions if r.recruiter_id == recruiter_id]
    req_ids = {r.req_id for r in reqs}
    difficulty = {r.req_id: calculate_base_difficulty(r, config) for r in reqs}

    owned = frame[frame["req_id"].isin(req_ids)]
    progressions = owned[owned["event_type"] == EventType.STAGE_CHANGE.value].groupby("week").size()
    hire_rows = owned[
        (owned["event_type"] == EventType.OFFER_ACCEPTED.value)
        | (owned["to_stage"] == Stage.HIRED.value)
    ]
    hires = hire_rows.groupby("week").size()

    current_week = as_of - timedelta(days=as_of.weekday())
    weeks = []
    for i in range(config.trailing_weeks):
        week_start = current_week - timedelta(weeks=i)
        week_end = week_start + timedelta(days=6)
        open_reqs = [
            r for r in reqs
            if (r.opened_at is None or r.opened_at <= week_end)
            and (r.closed_at is None or r.closed_at >= week_start)
        ]
        key = pd.Timestamp(week_start)
        weeks.append(_WeekLoad(
            week_start=week_start,
            open_reqs=len(open_reqs),
            load_wu=sum(difficulty[r.req_id] for r in open_reqs),
            progressions=int(progressions.get(key, 0)),
            hires=int(hires.get(key, 0)),
        ))
    return weeks


def _recruiter_reasons(stable: List[_WeekLoad], source: str, as_of: date) -> List[ConfidenceReason]:
    reasons = []
    if not stable:
        reasons.append(ConfidenceReason("missing_data", "No stable weeks observed in the trailing window", "negative"))
    elif len(stable) >= MIN_WEEKS_FOR_CAPACITY * 2:
        reasons.append(ConfidenceReason("sample_size", f"{len(stable)} stable weeks observed", "positive"))
    elif len(stable) >= MIN_WEEKS_FOR_CAPACITY:
        reasons.append(ConfidenceReason("sample_size", f"{len(stable)} stable weeks (moderate sample)", "neutral"))
    else:
        reasons.append(ConfidenceReason("sample_size", f"Only {len(stable)} stable weeks (limited)", "negative"))

    if stable:
        latest = max(w.week_start for w in stable)
        if (as_of - latest).days > RECENCY_WEEKS * 7:
            reasons.append(ConfidenceReason(
                "recency", f"Most recent stable week was {(as_of - latest).days // 7} weeks ago", "negative"
            ))
        volatility = _volatility_reason([w.load_wu for w in stable], "Weekly load")
        if volatility is not None:
            reasons.append(volatility)

    if source == "cohort":
        reasons.append(ConfidenceReason("shrinkage", "Capacity taken from the team median", "negative"))
    elif source == "global":
        reasons.append(ConfidenceReason("shrinkage", "Capacity taken from the global default", "negative"))
    return reasons


def estimate_recruiter_capacities(snapshot: Snapshot, as_of: date,
                                  config: EngineConfig = DEFAULT_CONFIG) -> List[RecruiterCapacity]:
    """Sustainable capacity per recruiter: the median load over their stable weeks."""
    frame = build_event_frame(snapshot, as_of, config)
    recruiter_ids = sorted({r.recruiter_id for r in snapshot.requisitions if r.recruiter_id})

    stable_by_recruiter = {}
    individual = {}
    for recruiter_id in recruiter_ids:
        stable = [w for w in _weekly_loads(recruiter_id, snapshot, frame, as_of, config) if w.is_stable]
        stable_by_recruiter[recruiter_id] = stable
        n_transitions = sum(w.progressions for w in stable)
        if len(stable) >= MIN_WEEKS_FOR_CAPACITY and n_transitions >= MIN_TRANSITIONS_FOR_THROUGHPUT:
            individual[recruiter_id] = float(np.median([w.load_wu for w in stable]))

    team_median = median_or_none(individual.values())

    capacities = []
    for recruiter_id in recruiter_ids:
        stable = stable_by_recruiter[recruiter_id]
        tiers = (
            _Tier("individual", lambda rid=recruiter_id: individual.get(rid)),
            _Tier("cohort", lambda: team_median),
            _Tier("global", lambda: config.default_capacity_wu),
        )
        source, capacity = _resolve(tiers)
        n_transitions = sum(w.progressions for w in stable)
        if source == "individual":
            confidence = grade_capacity(len(stable), n_transitions)
        else:
            confidence = ConfidenceLevel.LOW

        capacities.append(RecruiterCapacity(
            recruiter_id=recruiter_id,
            recruiter_name=snapshot.user_name(recruiter_id),
            capacity_wu=ensure_finite(capacity, "capacity_wu") if source != "none" else None,
            stable_weeks=len(stable),
            n_transitions=n_transitions,
            median_weekly_load=median_or_none([w.load_wu for w in stable]),
            source=source,
            confidence=confidence,
            reasons=tuple(_recruiter_reasons(stable, source, as_of)),
        ))

    logger.info(
        "Estimated capacity for %d recruiters (%d individual, team median %s)",
        len(capacities), len(individual), team_median,
    )
    return capacities
