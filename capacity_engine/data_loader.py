"""Snapshot construction and validation for the Capacity & Fit Analytics Engine."""

from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from capacity_engine.errors import SnapshotError
from capacity_engine.models import (
    Candidate,
    CandidateDisposition,
    Event,
    EventType,
    Requisition,
    RequisitionStatus,
    Snapshot,
    Stage,
    User,
    UserRole,
)


def _as_tuple(records: Optional[Iterable], expected_type: type, name: str) -> tuple:
    if records is None:
        raise SnapshotError(f"{name} must be a collection, got None")
    items = tuple(records)
    for item in items:
        if not isinstance(item, expected_type):
            raise SnapshotError(
                f"{name} must contain {expected_type.__name__} records, got {type(item).__name__}"
            )
    return items


def build_snapshot(requisitions: Iterable[Requisition], candidates: Iterable[Candidate],
                   events: Iterable[Event], users: Iterable[User],
                   recruiter_demand: Optional[Dict[str, float]] = None) -> Snapshot:
    """Freeze the inbound collections into a Snapshot, rejecting structurally invalid input."""
    reqs = _as_tuple(requisitions, Requisition, "requisitions")
    seen = set()
    for req in reqs:
        if req.req_id in seen:
            raise SnapshotError(f"Duplicate requisition id {req.req_id}")
        seen.add(req.req_id)

    return Snapshot(
        requisitions=reqs,
        candidates=_as_tuple(candidates, Candidate, "candidates"),
        events=tuple(_naive_utc(e) for e in _as_tuple(events, Event, "events")),
        users=_as_tuple(users, User, "users"),
        recruiter_demand=dict(recruiter_demand or {}),
    )


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _naive_utc(event: Event) -> Event:
    # offset-aware timestamps are stored as naive UTC so windows compare cleanly
    if getattr(event.timestamp, "tzinfo", None) is None:
        return event
    return replace(event, timestamp=_to_naive_utc(event.timestamp))


def _parse_date(value) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value)[:10], '%Y-%m-%d').date()


def _parse_timestamp(value) -> datetime:
    if isinstance(value, datetime):
        return _to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return _to_naive_utc(datetime.fromisoformat(str(value)))


def _parse_stage(value) -> Optional[Stage]:
    if value is None or value == "":
        return None
    return Stage(value)


def snapshot_from_records(requisitions: List[Dict], candidates: List[Dict],
                          events: List[Dict], users: List[Dict],
                          recruiter_demand: Optional[Dict[str, float]] = None) -> Snapshot:
    """Build a Snapshot from already-normalized dict records (ISO date strings accepted)."""
    for name, records in (("requisitions", requisitions), ("candidates", candidates),
                          ("events", events), ("users", users)):
        if records is None:
            raise SnapshotError(f"{name} must be a collection, got None")

    try:
        reqs = [
            Requisition(
                req_id=r['req_id'],
                recruiter_id=r.get('recruiter_id'),
                hiring_manager_id=r.get('hiring_manager_id'),
                job_family=r.get('job_family'),
                level=r.get('level'),
                location_type=r.get('location_type'),
                opened_at=_parse_date(r.get('opened_at')),
                closed_at=_parse_date(r.get('closed_at')),
                status=RequisitionStatus(r.get('status', RequisitionStatus.OPEN.value)),
                title=r.get('title', ""),
                location_city=r.get('location_city'),
            )
            for r in requisitions
        ]
        cands = [
            Candidate(
                candidate_id=c['candidate_id'],
                req_id=c['req_id'],
                current_stage=Stage(c['current_stage']),
                applied_at=_parse_date(c.get('applied_at')),
                hired_at=_parse_date(c.get('hired_at')),
                offer_extended_at=_parse_date(c.get('offer_extended_at')),
                disposition=CandidateDisposition(c.get('disposition', CandidateDisposition.ACTIVE.value)),
            )
            for c in candidates
        ]
        evts = [
            Event(
                candidate_id=e['candidate_id'],
                req_id=e['req_id'],
                event_type=EventType(e.get('event_type', EventType.STAGE_CHANGE.value)),
                timestamp=_parse_timestamp(e['timestamp']),
                from_stage=_parse_stage(e.get('from_stage')),
                to_stage=_parse_stage(e.get('to_stage')),
                actor_id=e.get('actor_id'),
            )
            for e in events
        ]
        people = [
            User(user_id=u['user_id'], name=u.get('name', u['user_id']), role=UserRole(u['role']))
            for u in users
        ]
    except (KeyError, ValueError, TypeError) as exc:
        raise SnapshotError(f"Malformed record: {exc}") from exc

    return build_snapshot(reqs, cands, evts, people, recruiter_demand)


def validate_snapshot(snapshot: Snapshot) -> Tuple[bool, str]:
    """Check referential consistency; problems here are data quality, not fatal."""
    errors = []
    req_ids = {r.req_id for r in snapshot.requisitions}

    orphan_candidates = [c.candidate_id for c in snapshot.candidates if c.req_id not in req_ids]
    if orphan_candidates:
        errors.append(f"{len(orphan_candidates)} candidate(s) reference unknown requisitions")

    orphan_events = sum(1 for e in snapshot.events if e.req_id not in req_ids)
    if orphan_events:
        errors.append(f"{orphan_events} event(s) reference unknown requisitions")

    user_ids = {u.user_id for u in snapshot.users}
    unknown_recruiters = sorted({
        r.recruiter_id for r in snapshot.requisitions
        if r.recruiter_id and r.recruiter_id not in user_ids
    })
    if unknown_recruiters:
        errors.append(f"Recruiters missing from users: {', '.join(unknown_recruiters)}")

    if not snapshot.requisitions:
        errors.append("No requisitions found in snapshot")

    if errors:
        return False, "\n".join(errors)
    return True, f"Loaded {len(snapshot.requisitions)} requisitions and {len(snapshot.candidates)} candidates"
