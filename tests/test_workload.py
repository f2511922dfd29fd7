"""Requisition workload scoring."""

from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest

from capacity_engine.config import EngineConfig
from capacity_engine.data_loader import build_snapshot
from capacity_engine.models import CandidateDisposition, EventType, RequisitionStatus, Stage
from capacity_engine.workload import (
    build_all_req_workloads,
    build_req_workload,
    calculate_aging_multiplier,
    calculate_base_difficulty,
    calculate_demand,
    calculate_hm_friction_weights,
    calculate_remaining_work,
)
from tests.factories import AS_OF, make_candidate, make_event, make_req


# ── Base difficulty ──


def test_base_difficulty_multiplies_weights() -> None:
    """Senior Security role in a hard onsite market."""
    req = make_req("q1", job_family="Security", level="L5", location_type="Onsite", location_city="seattle")
    assert calculate_base_difficulty(req) == pytest.approx(10 * 1.2 * (1.1 + 0.2) * 1.3)


def test_base_difficulty_defaults_to_one_per_factor() -> None:
    req = make_req("q1", job_family=None, level=None, location_type=None)
    assert calculate_base_difficulty(req) == pytest.approx(10.0)


# ── Remaining work ──


def test_remaining_work_empty_pipeline_is_full() -> None:
    assert calculate_remaining_work([]) == 1.0


def test_remaining_work_ignores_inactive_candidates() -> None:
    rejected = make_candidate("c1", "q1", Stage.OFFER, disposition=CandidateDisposition.REJECTED)
    assert calculate_remaining_work([rejected]) == 1.0


def test_remaining_work_shrinks_with_later_stages() -> None:
    screen = [make_candidate("c1", "q1", Stage.SCREEN)]
    onsite = screen + [make_candidate("c2", "q1", Stage.ONSITE)]
    full = onsite + [
        make_candidate("c3", "q1", Stage.APPLIED),
        make_candidate("c4", "q1", Stage.FINAL),
        make_candidate("c5", "q1", Stage.OFFER),
    ]
    assert calculate_remaining_work(screen) == pytest.approx(0.8)
    assert calculate_remaining_work(onsite) == pytest.approx(0.5)
    assert calculate_remaining_work(full) == pytest.approx(0.0)


# ── Aging ──


@pytest.mark.parametrize(
    "age, expected",
    [(0, 1.0), (90, 1.0), (180, 1.3), (270, 1.6), (1000, 1.6)],
)
def test_aging_multiplier(age: int, expected: float) -> None:
    """Flat to 90 days, then linear, capped at 1.6."""
    assert calculate_aging_multiplier(age) == pytest.approx(expected)


def test_aging_multiplier_respects_config() -> None:
    config = EngineConfig(aging_threshold_days=30, aging_cap=1.2)
    assert calculate_aging_multiplier(60, config) == pytest.approx(1.2)


# ── HM friction ──


def _loops(hm_req: str, prefix: str, hours: float, n: int = 3):
    events = []
    start = datetime(2024, 3, 4, 9)
    for i in range(n):
        cid = f"{prefix}{i}"
        done = start + timedelta(days=i)
        events.append(make_event(cid, hm_req, done, EventType.INTERVIEW_COMPLETED, to_stage=None))
        events.append(make_event(cid, hm_req, done + timedelta(hours=hours), EventType.OFFER_EXTENDED, to_stage=None))
    return events


def test_hm_friction_weights_clamped_relative_to_median() -> None:
    """Slow managers cap at 1.3, fast ones floor at 0.8, thin history stays 1.0."""
    reqs = [
        make_req("q1", hiring_manager_id="slow"),
        make_req("q2", hiring_manager_id="fast"),
        make_req("q3", hiring_manager_id="typical"),
        make_req("q4", hiring_manager_id="new"),
    ]
    events = (
        _loops("q1", "s", 96)
        + _loops("q2", "f", 24)
        + _loops("q3", "t", 48)
        + _loops("q4", "n", 500, n=2)
    )
    weights = calculate_hm_friction_weights(reqs, events)
    assert weights["slow"] == pytest.approx(1.3)
    assert weights["fast"] == pytest.approx(0.8)
    assert weights["typical"] == pytest.approx(1.0)
    assert weights["new"] == 1.0


def test_stage_change_to_rejected_counts_as_decision() -> None:
    reqs = [make_req("q1", hiring_manager_id="h1")]
    events = []
    for i in range(3):
        done = datetime(2024, 3, 4, 9) + timedelta(days=i)
        events.append(make_event(f"c{i}", "q1", done, EventType.INTERVIEW_COMPLETED, to_stage=None))
        events.append(make_event(f"c{i}", "q1", done + timedelta(hours=30), to_stage=Stage.REJECTED))
    assert calculate_hm_friction_weights(reqs, events) == {"h1": 1.0}


# ── Req workload ──


def test_workload_score_is_product_of_components() -> None:
    req = make_req("q1", level="Senior", opened_at=AS_OF - timedelta(days=180))
    candidates = [make_candidate("c1", "q1", Stage.SCREEN), make_candidate("c2", "q2", Stage.OFFER)]
    workload = build_req_workload(req, candidates, 1.2, AS_OF)

    assert workload.components.base_difficulty == pytest.approx(12.0)
    assert workload.components.remaining_work == pytest.approx(0.8)
    assert workload.components.aging_multiplier == pytest.approx(1.3)
    assert workload.workload_score == pytest.approx(workload.components.product)
    assert workload.workload_score == pytest.approx(12.0 * 0.8 * 1.2 * 1.3)
    assert workload.active_candidates == 1
    assert not workload.has_offer_out
    assert not workload.used_defaults


def test_workload_records_defaults_for_missing_fields() -> None:
    req = make_req("q1", level=None, job_family=None, location_type=None, opened_at=None)
    workload = build_req_workload(req, [], None, AS_OF)

    assert workload.used_defaults
    assert len(workload.default_notes) == 5
    assert workload.components.aging_multiplier == 1.0
    assert workload.components.friction_multiplier == 1.0
    assert workload.segment.job_family == "General"
    assert workload.segment.location_type == "Hybrid"


def test_workload_flags_offer_out_and_finalist() -> None:
    req = make_req("q1")
    candidates = [make_candidate("c1", "q1", Stage.OFFER), make_candidate("c2", "q1", Stage.FINAL)]
    workload = build_req_workload(req, candidates, 1.0, AS_OF)
    assert workload.has_offer_out
    assert workload.has_finalist


def test_build_all_req_workloads_scores_every_open_req(team_snapshot) -> None:
    workloads = build_all_req_workloads(team_snapshot, AS_OF)
    assert len(workloads) == 12
    assert all(w.workload_score >= 0 for w in workloads)
    assert calculate_demand("r1", workloads) == pytest.approx(
        sum(w.workload_score for w in workloads if w.recruiter_id == "r1")
    )


def test_build_all_req_workloads_excludes_closed_reqs() -> None:
    snapshot = build_snapshot(
        [make_req("q1"), make_req("q2", status=RequisitionStatus.CLOSED, closed_at=date(2024, 5, 1))],
        [], [], [],
    )
    assert [w.req_id for w in build_all_req_workloads(snapshot, AS_OF)] == ["q1"]
