"""Requisition reassignment search."""

from __future__ import annotations

import pytest

from capacity_engine.config import EngineConfig
from capacity_engine.data_loader import build_snapshot
from capacity_engine.models import ConfidenceLevel, Stage
from capacity_engine.rebalance import (
    RecruiterState,
    recommend_rebalance,
    simulate_move_impact,
    stage_demand_for,
)
from tests.factories import (
    AS_OF,
    make_candidate,
    make_cell,
    make_profile,
    make_req,
    make_row,
    make_workload,
)

_RATES = {Stage.SCREEN: 8.0, Stage.HM_SCREEN: 4.0, Stage.ONSITE: 3.0, Stage.OFFER: 1.5}


def _profiles(*recruiter_ids):
    return {rid: make_profile(_RATES, recruiter_id=rid) for rid in recruiter_ids}


def _book(n_reqs: int, score: float, offer_out=()):
    return [
        make_workload(f"q{i:02d}", "r1", score, has_offer_out=f"q{i:02d}" in offer_out)
        for i in range(1, n_reqs + 1)
    ]


def _empty_snapshot(workloads):
    return build_snapshot([make_req(w.req_id, recruiter_id=w.recruiter_id) for w in workloads], [], [], [])


# ── Move impact ──


def test_move_impact_moves_queue_delay_with_the_req() -> None:
    workload = make_workload("q1", "r1", 20.0)
    source = RecruiterState(
        row=make_row("r1", 120.0, 100.0),
        profile=make_profile({Stage.SCREEN: 1.0}),
        demand_wu=120.0,
        stage_demand={Stage.SCREEN: 3},
    )
    destination = RecruiterState(
        row=make_row("r2", 40.0, 100.0),
        profile=make_profile({Stage.SCREEN: 5.0}),
        demand_wu=40.0,
    )
    impact = simulate_move_impact(workload, {Stage.SCREEN: 2}, source, destination)

    assert impact.before_source.queue_delay_days == pytest.approx(14.0)
    assert impact.after_source.queue_delay_days == 0.0
    assert impact.after_target.queue_delay_days == 0.0
    assert impact.net_delay_reduction == pytest.approx(14.0)
    assert impact.after_source.utilization == pytest.approx(1.0)
    assert impact.after_target.utilization == pytest.approx(0.6)
    assert impact.balance_improvement == pytest.approx(0.8 - 0.4)
    assert impact.before_source.status == "overloaded"
    assert impact.after_target.demand_by_stage == {Stage.SCREEN: 2}


def test_stage_demand_counts_active_recruiter_stages_only() -> None:
    snapshot = build_snapshot(
        [make_req("q1")],
        [
            make_candidate("c1", "q1", Stage.SCREEN),
            make_candidate("c2", "q1", Stage.HM_SCREEN),
            make_candidate("c3", "q1", Stage.OFFER),
        ],
        [], [],
    )
    assert stage_demand_for(["q1"], snapshot) == {Stage.SCREEN: 1, Stage.OFFER: 1}


# ── Search ──


def test_best_fit_destination_wins_and_offer_out_req_stays() -> None:
    workloads = _book(10, 20.0, offer_out=("q01",))
    rows = [make_row("r1", 200.0, 100.0), make_row("r2", 0.0, 100.0), make_row("r3", 0.0, 100.0)]
    cells = [make_cell("r1", 0.0), make_cell("r2", 0.2), make_cell("r3", 0.3)]
    recs = recommend_rebalance(rows, cells, workloads, _empty_snapshot(workloads), AS_OF,
                               profiles=_profiles("r1", "r2", "r3"))

    assert recs[0].rank == 1
    assert recs[0].req_id == "q02"
    assert recs[0].to_recruiter_id == "r3"
    assert recs[0].destination_fit == pytest.approx(0.3)
    assert recs[0].fit_improvement == pytest.approx(0.3)
    assert recs[0].confidence == ConfidenceLevel.MED
    assert recs[0].hedge_message == "Based on similar cohorts"
    assert "Alice Chen" in recs[0].rationale
    assert all(r.req_id != "q01" for r in recs)
    assert len({r.req_id for r in recs}) == len(recs)


def test_moves_capped_per_recruiter() -> None:
    workloads = _book(10, 20.0)
    rows = [make_row("r1", 200.0, 100.0), make_row("r2", 0.0, 100.0), make_row("r3", 0.0, 100.0)]
    cells = [make_cell("r2", 0.2), make_cell("r3", 0.3)]
    snapshot = _empty_snapshot(workloads)
    profiles = _profiles("r1", "r2", "r3")

    recs = recommend_rebalance(rows, cells, workloads, snapshot, AS_OF, profiles=profiles)
    assert len(recs) == 2
    assert all(r.from_recruiter_id == "r1" for r in recs)

    config = EngineConfig(max_moves_per_recruiter=3)
    assert len(recommend_rebalance(rows, cells, workloads, snapshot, AS_OF, config, profiles)) == 3


def test_destination_ceiling_blocks_moves() -> None:
    """A move that would push the destination past 1.05 is never proposed."""
    workloads = _book(7, 20.0)
    rows = [make_row("r1", 140.0, 100.0), make_row("r2", 90.0, 100.0)]
    cells = [make_cell("r2", 0.5)]
    recs = recommend_rebalance(rows, cells, workloads, _empty_snapshot(workloads), AS_OF,
                               profiles=_profiles("r1", "r2"))
    assert recs == []


def test_destination_without_fit_cell_skipped_unless_allowed() -> None:
    workloads = _book(5, 30.0)
    rows = [make_row("r1", 150.0, 100.0), make_row("r2", 0.0, 100.0)]
    snapshot = _empty_snapshot(workloads)
    profiles = _profiles("r1", "r2")

    assert recommend_rebalance(rows, [], workloads, snapshot, AS_OF, profiles=profiles) == []

    relaxed = EngineConfig(require_destination_fit=False)
    recs = recommend_rebalance(rows, [], workloads, snapshot, AS_OF, relaxed, profiles)
    assert recs
    assert recs[0].destination_fit is None
    assert recs[0].confidence == ConfidenceLevel.INSUFFICIENT


def test_poor_fit_destination_rejected() -> None:
    workloads = _book(5, 30.0)
    rows = [make_row("r1", 150.0, 100.0), make_row("r2", 0.0, 100.0)]
    cells = [make_cell("r2", -0.5)]
    recs = recommend_rebalance(rows, cells, workloads, _empty_snapshot(workloads), AS_OF,
                               profiles=_profiles("r1", "r2"))
    assert recs == []


def test_no_moves_when_nobody_overloaded() -> None:
    workloads = _book(5, 20.0)
    rows = [make_row("r1", 100.0, 100.0), make_row("r2", 0.0, 100.0)]
    cells = [make_cell("r2", 0.5)]
    recs = recommend_rebalance(rows, cells, workloads, _empty_snapshot(workloads), AS_OF,
                               profiles=_profiles("r1", "r2"))
    assert recs == []
