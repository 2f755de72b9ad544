"""
Distance and ratio primitives over landmark points
"""
from typing import Iterable, Sequence

import numpy as np

EPSILON = 1e-6


def distance(p1: Sequence[float], p2: Sequence[float]) -> float:
    """Euclidean distance in the image plane (x, y only)."""
    return float(np.hypot(p1[0] - p2[0], p1[1] - p2[1]))


def distance_3d(p1: Sequence[float], p2: Sequence[float]) -> float:
    """Euclidean distance using z when present."""
    a = np.asarray(p1, dtype=np.float64)
    b = np.asarray(p2, dtype=np.float64)
    return float(np.linalg.norm(a - b))


def midpoint(p1: Sequence[float], p2: Sequence[float]) -> np.ndarray:
    return (np.asarray(p1, dtype=np.float64) + np.asarray(p2, dtype=np.float64)) / 2.0


def safe_ratio(numerator: float, denominator: float, default: float = 0.0) -> float:
    """numerator / denominator, or ``default`` when the denominator is ~0."""
    if abs(denominator) < EPSILON:
        return default
    return float(numerator / denominator)


def mean(values: Iterable[float]) -> float:
    values = list(values)
    return float(np.mean(values)) if values else 0.0


def variance(values: Iterable[float]) -> float:
    """Population variance; 0.0 for an empty sequence."""
    values = list(values)
    return float(np.var(values)) if values else 0.0


def std_dev(values: Iterable[float]) -> float:
    values = list(values)
    return float(np.std(values)) if values else 0.0


def round_half_up(value: float) -> int:
    return int(np.floor(value + 0.5))


def to_percent(score: float) -> int:
    """Convert a [0, 1] score to an integer percentage, rounding halves up."""
    return round_half_up(score * 100.0)
