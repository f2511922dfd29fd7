"""Threshold ladders and small statistical helpers shared by every scorer."""

import re
from typing import Iterable, Optional

import numpy as np

from capacity_engine.config import (
    FIT_GOOD,
    FIT_NEUTRAL,
    FIT_STRONG,
    FIT_WEAK,
    HIGH_CONFIDENCE_TRANSITIONS,
    HIGH_CONFIDENCE_WEEKS,
    MIN_TRANSITIONS_FOR_THROUGHPUT,
    MIN_WEEKS_FOR_CAPACITY,
    UTILIZATION_AVAILABLE,
    UTILIZATION_BALANCED,
    UTILIZATION_CRITICAL,
    UTILIZATION_OVERLOADED,
)
from capacity_engine.models import ConfidenceLevel, LevelBand

LOAD_STATUSES = ("critical", "overloaded", "balanced", "available", "underutilized")
FIT_LABELS = ("Strong Fit", "Good Fit", "Neutral", "Weak Fit", "Poor Fit")


def calculate_confidence(n: float, threshold: float) -> ConfidenceLevel:
    """Grade a sample size against a threshold: below it, 1.5x and 2x mark LOW/MED/HIGH."""
    if n < threshold:
        return ConfidenceLevel.INSUFFICIENT
    if n < threshold * 1.5:
        return ConfidenceLevel.LOW
    if n < threshold * 2:
        return ConfidenceLevel.MED
    return ConfidenceLevel.HIGH


def grade_capacity(n_weeks: int, n_transitions: int) -> ConfidenceLevel:
    if n_weeks >= HIGH_CONFIDENCE_WEEKS and n_transitions >= HIGH_CONFIDENCE_TRANSITIONS:
        return ConfidenceLevel.HIGH
    if n_weeks >= MIN_WEEKS_FOR_CAPACITY and n_transitions >= MIN_TRANSITIONS_FOR_THROUGHPUT:
        return ConfidenceLevel.MED
    return ConfidenceLevel.LOW


def min_confidence(levels: Iterable[ConfidenceLevel]) -> ConfidenceLevel:
    levels = list(levels)
    if not levels:
        return ConfidenceLevel.LOW
    return min(levels, key=lambda level: level.rank)


def get_load_status(utilization: float) -> str:
    if utilization > UTILIZATION_CRITICAL:
        return "critical"
    if utilization > UTILIZATION_OVERLOADED:
        return "overloaded"
    if utilization > UTILIZATION_BALANCED:
        return "balanced"
    if utilization > UTILIZATION_AVAILABLE:
        return "available"
    return "underutilized"


def get_fit_label(score: float) -> str:
    if score > FIT_STRONG:
        return "Strong Fit"
    if score > FIT_GOOD:
        return "Good Fit"
    if score > FIT_NEUTRAL:
        return "Neutral"
    if score > FIT_WEAK:
        return "Weak Fit"
    return "Poor Fit"


def get_hedge_message(confidence: ConfidenceLevel) -> str:
    if confidence == ConfidenceLevel.HIGH:
        return "Based on observed patterns"
    if confidence == ConfidenceLevel.MED:
        return "Based on similar cohorts"
    return "Estimated (limited data)"


def safe_rate(numerator: float, denominator: float) -> Optional[float]:
    """Ratio, or None when the denominator leaves it undefined."""
    if denominator is None or denominator <= 0:
        return None
    return numerator / denominator


def shrink_residual(raw: float, n: float, k: float) -> float:
    """Pull a residual toward zero by n / (n + k)."""
    if n <= 0:
        return 0.0
    return (n / (n + k)) * raw


def shrinkage_factor(n: float, k: float) -> float:
    if n <= 0:
        return 0.0
    return n / (n + k)


def shrink_rate(observed: Optional[float], prior: float, n: float, prior_weight: float) -> float:
    """Empirical-Bayes blend of an observed rate with its prior."""
    if observed is None or n <= 0:
        return prior
    return (n * observed + prior_weight * prior) / (n + prior_weight)


def median_or_none(values: Iterable[float]) -> Optional[float]:
    values = [v for v in values if v is not None]
    if not values:
        return None
    return float(np.median(values))


_LEVEL_PATTERNS = (
    (re.compile(r"^(L|IC)?[12]$|JUNIOR|ENTRY|ASSOCIATE"), LevelBand.JUNIOR),
    (re.compile(r"^(L|IC)?[34]$|MID|INTERMEDIATE"), LevelBand.MID),
    (re.compile(r"^(L|IC)?[56]$|SENIOR|STAFF|PRINCIPAL"), LevelBand.SENIOR),
    (re.compile(r"^(L|IC)?[789]$|DIRECTOR|VP|HEAD|LEAD|MANAGER|CHIEF"), LevelBand.LEADERSHIP),
)


def level_to_band(level: Optional[str]) -> LevelBand:
    """Map a free-text level ("L5", "Senior Engineer", "IC3") onto a coarse band."""
    if not level:
        return LevelBand.MID
    normalized = re.sub(r"[^A-Z0-9]", "", level.upper())
    for pattern, band in _LEVEL_PATTERNS:
        if pattern.search(normalized):
            return band
    return LevelBand.MID
