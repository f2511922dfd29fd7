"""Exceptions raised at the engine boundary."""

import math
from typing import Iterable, Optional


class SnapshotError(ValueError):
    """Structurally invalid input handed to the engine by a collaborator."""


class NumericIntegrityError(ArithmeticError):
    """A NaN or infinite value was about to leave the engine."""


def ensure_finite(value: Optional[float], name: str) -> Optional[float]:
    """Pass `value` through unchanged, raising if it is NaN or infinite."""
    if value is None:
        return None
    if not math.isfinite(value):
        raise NumericIntegrityError(f"{name} is not finite: {value!r}")
    return value


def ensure_all_finite(values: Iterable[float], name: str) -> None:
    for value in values:
        ensure_finite(value, name)
