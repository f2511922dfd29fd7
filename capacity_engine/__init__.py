"""Capacity & Fit Analytics Engine."""

from capacity_engine.config import DEFAULT_CONFIG, EngineConfig
from capacity_engine.data_loader import build_snapshot, snapshot_from_records, validate_snapshot
from capacity_engine.engine import (
    analyze_capacity,
    check_blocking_conditions,
    explain_fit,
    explain_overload,
    forecast_requisition,
)
from capacity_engine.errors import NumericIntegrityError, SnapshotError

__all__ = [
    "DEFAULT_CONFIG",
    "EngineConfig",
    "NumericIntegrityError",
    "SnapshotError",
    "analyze_capacity",
    "build_snapshot",
    "check_blocking_conditions",
    "explain_fit",
    "explain_overload",
    "forecast_requisition",
    "snapshot_from_records",
    "validate_snapshot",
]
