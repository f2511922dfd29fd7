"""Configuration constants for the Capacity & Fit Analytics Engine."""

from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple

# Workload scoring
WU_PER_REQ = 10.0
AGING_THRESHOLD_DAYS = 90
AGING_SCALE_FACTOR = 0.3
AGING_CAP = 1.6
FRICTION_WEIGHT_MIN = 0.8
FRICTION_WEIGHT_MAX = 1.3
MIN_LOOPS_FOR_HM_WEIGHT = 3

LEVEL_WEIGHTS = {
    "Junior": 0.8,
    "Mid": 1.0,
    "Senior": 1.2,
    "Leadership": 1.5,
}

MARKET_WEIGHTS = {
    "Remote": 0.9,
    "Hybrid": 1.0,
    "Onsite": 1.1,
}
HARD_MARKET_BONUS = 0.2
HARD_MARKETS = ("San Francisco", "New York", "Seattle", "London", "Zurich")

NICHE_WEIGHTS = {
    "Engineering": 1.1,
    "Data Science": 1.2,
    "Security": 1.3,
    "Legal": 1.2,
}

# Stage coverage weights for remaining work
PIPELINE_PROGRESS_WEIGHTS = {
    "leads": 0.1,
    "screened": 0.2,
    "interviewing": 0.3,
    "finalist": 0.3,
    "offer": 0.1,
}

# Capacity estimation
TRAILING_WEEKS = 26
MIN_WEEKS_FOR_CAPACITY = 4
MIN_TRANSITIONS_FOR_THROUGHPUT = 5
HIGH_CONFIDENCE_WEEKS = 8
HIGH_CONFIDENCE_TRANSITIONS = 15
MIN_OPEN_REQS_STABLE_WEEK = 3
VOLATILITY_CV_THRESHOLD = 1.0
RECENCY_WEEKS = 4
DEFAULT_CAPACITY_WU = 100.0

GLOBAL_STAGE_PRIORS = {
    "SCREEN": 8.0,
    "HM_SCREEN": 4.0,
    "ONSITE": 3.0,
    "OFFER": 1.5,
}
HM_FEEDBACK_HOURS_PRIOR = 48.0

# Utilization ladder
UTILIZATION_CRITICAL = 1.2
UTILIZATION_OVERLOADED = 1.1
UTILIZATION_BALANCED = 0.9
UTILIZATION_AVAILABLE = 0.7

# Team summary
MIN_RECRUITERS_FOR_TEAM = 3
MIN_REQS_FOR_ANALYSIS = 10
MIN_RECRUITER_ID_COVERAGE = 0.5
TEAM_GAP_TOLERANCE_PERCENT = 10.0
TOP_DRIVERS = 3
EMPTY_PIPELINE_REMAINING_WORK = 0.8
EMPTY_PIPELINE_IMPACT_SHARE = 0.3
HIGH_FRICTION_MULTIPLIER = 1.1

# Fit scoring
SHRINKAGE_K = 5.0
MIN_N_FOR_FIT_CELL = 3
MIN_N_FOR_FIT_PAIR = 5
FIT_STRONG = 0.3
FIT_GOOD = 0.1
FIT_NEUTRAL = -0.1
FIT_WEAK = -0.3
MAX_TTF_DAYS = 365

METRIC_WEIGHTS = {
    "hires_per_wu": 0.40,
    "ttf_days": 0.25,
    "offer_accept_rate": 0.20,
    "candidate_throughput": 0.15,
}

BENCHMARK_DEFAULTS = {
    "hires_per_wu": 0.1,
    "ttf_days": 45.0,
    "offer_accept_rate": 0.8,
    "candidate_throughput": 5.0,
}

# Queueing
MAX_QUEUE_DELAY_DAYS = 21.0
DEFAULT_QUEUE_FACTOR = 1.0
TARGET_STAGE_UTILIZATION = 0.9
CAPACITY_CONSTRAINED_P50_DAYS = 3
CAPACITY_CONSTRAINED_DELAY_DAYS = 5.0
TOP_BOTTLENECKS = 3
BOTTLENECKS_TO_ADDRESS = 2
THROUGHPUT_IMPACT_SHARE = 0.7
REASSIGN_IMPACT_SHARE = 0.5
REASSIGN_MIN_OPEN_REQS = 3
DEFAULT_STAGE_MEDIAN_DAYS = 7.0

# Monte Carlo
SIMULATION_RUNS = 2000
SIMULATION_BATCHES = 8
DEFAULT_SEED = 42
NO_FILL_HORIZON_DAYS = 365

DEFAULT_STAGE_DURATIONS = {
    "SCREEN": (1.1, 0.5),
    "HM_SCREEN": (1.4, 0.5),
    "ONSITE": (1.6, 0.5),
    "FINAL": (1.3, 0.5),
    "OFFER": (1.4, 0.5),
}

DEFAULT_PASS_RATES = {
    "SCREEN": 0.5,
    "HM_SCREEN": 0.6,
    "ONSITE": 0.7,
    "FINAL": 0.8,
    "OFFER": 0.85,
}
PASS_RATE_PRIOR_WEIGHT = 5.0

# Rebalancing
MAX_DEST_UTILIZATION_AFTER_MOVE = 1.05
MAX_MOVES_PER_RECRUITER = 2
MIN_FIT_FOR_ASSIGNMENT = -0.2
MAX_RECOMMENDATIONS = 5


@dataclass(frozen=True)
class EngineConfig:
    """Tunable engine parameters. Defaults mirror the module constants."""

    aging_threshold_days: int = AGING_THRESHOLD_DAYS
    aging_scale_factor: float = AGING_SCALE_FACTOR
    aging_cap: float = AGING_CAP
    level_weights: Dict[str, float] = field(default_factory=lambda: dict(LEVEL_WEIGHTS))
    market_weights: Dict[str, float] = field(default_factory=lambda: dict(MARKET_WEIGHTS))
    niche_weights: Dict[str, float] = field(default_factory=lambda: dict(NICHE_WEIGHTS))
    hard_markets: Tuple[str, ...] = HARD_MARKETS
    hard_market_bonus: float = HARD_MARKET_BONUS

    trailing_weeks: int = TRAILING_WEEKS
    default_capacity_wu: Optional[float] = DEFAULT_CAPACITY_WU

    shrinkage_k: float = SHRINKAGE_K
    min_n_for_fit_cell: int = MIN_N_FOR_FIT_CELL

    max_queue_delay_days: float = MAX_QUEUE_DELAY_DAYS
    queue_factor: float = DEFAULT_QUEUE_FACTOR

    simulation_runs: int = SIMULATION_RUNS
    simulation_batches: int = SIMULATION_BATCHES
    seed: int = DEFAULT_SEED

    max_dest_utilization: float = MAX_DEST_UTILIZATION_AFTER_MOVE
    max_moves_per_recruiter: int = MAX_MOVES_PER_RECRUITER
    min_fit_for_assignment: float = MIN_FIT_FOR_ASSIGNMENT
    require_destination_fit: bool = True
    max_recommendations: int = MAX_RECOMMENDATIONS

    def with_overrides(self, **overrides) -> "EngineConfig":
        return replace(self, **overrides)


DEFAULT_CONFIG = EngineConfig()
