"""
Pytest configuration and fixtures.
"""

from __future__ import annotations

import pytest

from capacity_engine.config import EngineConfig
from capacity_engine.models import Snapshot
from tests.factories import make_team_snapshot


@pytest.fixture
def team_snapshot() -> Snapshot:
    """Three recruiters with ten weeks of steady screening history."""
    return make_team_snapshot()


@pytest.fixture
def fast_config() -> EngineConfig:
    """Engine config with a small Monte Carlo run for quick tests."""
    return EngineConfig(simulation_runs=400, simulation_batches=4)
