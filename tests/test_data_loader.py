"""Snapshot construction and validation."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from capacity_engine.data_loader import build_snapshot, snapshot_from_records, validate_snapshot
from capacity_engine.errors import SnapshotError
from capacity_engine.models import RequisitionStatus, Stage
from tests.factories import make_candidate, make_event, make_req, make_user


def test_build_snapshot_rejects_missing_collection() -> None:
    """None in place of a collection is a caller error."""
    with pytest.raises(SnapshotError, match="candidates"):
        build_snapshot([make_req("q1")], None, [], [])


def test_build_snapshot_rejects_duplicate_req_ids() -> None:
    with pytest.raises(SnapshotError, match="Duplicate"):
        build_snapshot([make_req("q1"), make_req("q1")], [], [], [])


def test_build_snapshot_rejects_wrong_record_type() -> None:
    with pytest.raises(SnapshotError, match="Requisition"):
        build_snapshot([{"req_id": "q1"}], [], [], [])


def test_build_snapshot_copies_recruiter_demand() -> None:
    """External demand is carried but detached from the caller's dict."""
    demand = {"r1": 42.0}
    snapshot = build_snapshot([make_req("q1")], [], [], [], demand)
    demand["r1"] = 0.0
    assert snapshot.recruiter_demand == {"r1": 42.0}


def test_snapshot_from_records_parses_dates_and_enums() -> None:
    snapshot = snapshot_from_records(
        requisitions=[{
            "req_id": "q1",
            "recruiter_id": "r1",
            "hiring_manager_id": "h1",
            "job_family": "Engineering",
            "level": "L5",
            "location_type": "Remote",
            "opened_at": "2024-02-01T09:30:00",
            "status": "Open",
        }],
        candidates=[{"candidate_id": "c1", "req_id": "q1", "current_stage": "ONSITE", "applied_at": "2024-02-10"}],
        events=[{"candidate_id": "c1", "req_id": "q1", "timestamp": "2024-02-12T10:00:00", "to_stage": "ONSITE"}],
        users=[{"user_id": "r1", "name": "Alice Chen", "role": "Recruiter"}],
    )
    req = snapshot.requisitions[0]
    assert req.opened_at == date(2024, 2, 1)
    assert req.status == RequisitionStatus.OPEN
    assert snapshot.candidates[0].current_stage == Stage.ONSITE
    assert snapshot.events[0].timestamp == datetime(2024, 2, 12, 10, 0)
    assert snapshot.user_name("r1") == "Alice Chen"


def test_snapshot_from_records_wraps_malformed_input() -> None:
    """Unknown stage values surface as SnapshotError."""
    with pytest.raises(SnapshotError, match="Malformed"):
        snapshot_from_records(
            requisitions=[{"req_id": "q1"}],
            candidates=[{"candidate_id": "c1", "req_id": "q1", "current_stage": "NOT_A_STAGE"}],
            events=[],
            users=[],
        )


def test_offset_timestamps_stored_as_naive_utc() -> None:
    snapshot = snapshot_from_records(
        [{"req_id": "q1"}], [],
        [{"candidate_id": "c1", "req_id": "q1", "timestamp": "2024-05-01T12:00:00+02:00", "to_stage": "SCREEN"}],
        [],
    )
    assert snapshot.events[0].timestamp == datetime(2024, 5, 1, 10, 0)
    assert snapshot.events[0].timestamp.tzinfo is None


def test_build_snapshot_normalizes_aware_events() -> None:
    eastern = timezone(timedelta(hours=-5))
    events = [
        make_event("c1", "q1", datetime(2024, 5, 1, 20, 0, tzinfo=eastern)),
        make_event("c2", "q1", datetime(2024, 5, 2, 9, 0)),
    ]
    snapshot = build_snapshot([make_req("q1")], [], events, [])
    assert [e.timestamp for e in snapshot.events] == [datetime(2024, 5, 2, 1, 0), datetime(2024, 5, 2, 9, 0)]


def test_validate_snapshot_reports_orphans() -> None:
    snapshot = build_snapshot(
        [make_req("q1", recruiter_id="r9")],
        [make_candidate("c1", "q404")],
        [],
        [make_user("r1")],
    )
    ok, message = validate_snapshot(snapshot)
    assert not ok
    assert "unknown requisitions" in message
    assert "r9" in message


def test_validate_snapshot_success_message(team_snapshot) -> None:
    ok, message = validate_snapshot(team_snapshot)
    assert ok
    assert message == "Loaded 12 requisitions and 24 candidates"
