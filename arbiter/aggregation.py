"""Reduce decision vectors within a model and across the panel."""
from __future__ import annotations

from fractions import Fraction
from typing import List, Sequence
import math


def _as_fraction(value: float | int | Fraction) -> Fraction:
    if isinstance(value, (int, Fraction)):
        return Fraction(value)
    # repr keeps 0.1 as 1/10 rather than its binary expansion
    return Fraction(repr(float(value)))


def round_preserving_total(values: Sequence[Fraction]) -> List[int]:
    """Largest-remainder rounding.

    Every coordinate ends up at the floor or ceiling of its exact value and
    the result sums to the floor of the exact total.
    """
    floors = [math.floor(value) for value in values]
    shortfall = math.floor(sum(values, Fraction(0))) - sum(floors)
    if shortfall <= 0:
        return floors
    order = sorted(range(len(values)), key=lambda i: (-(values[i] - floors[i]), i))
    for index in order[:shortfall]:
        floors[index] += 1
    return floors


def _check_shape(vectors: Sequence[Sequence[int]]) -> int:
    if not vectors:
        raise ValueError("at least one vector is required")
    width = len(vectors[0])
    if any(len(vector) != width for vector in vectors):
        raise ValueError("vectors must share one length")
    return width


def average_vectors(vectors: Sequence[Sequence[int]]) -> List[int]:
    """Dimension-wise mean of one model's repeated calls."""
    width = _check_shape(vectors)
    if len(vectors) == 1:
        return list(vectors[0])
    count = len(vectors)
    exact = [Fraction(sum(vector[j] for vector in vectors), count) for j in range(width)]
    return round_preserving_total(exact)


def weighted_mean(vectors: Sequence[Sequence[int]], weights: Sequence[float]) -> List[int]:
    """Weighted mean across models, normalised by the weight actually present."""
    width = _check_shape(vectors)
    if len(weights) != len(vectors):
        raise ValueError("one weight is required per vector")
    fractions = [_as_fraction(weight) for weight in weights]
    total = sum(fractions, Fraction(0))
    if total <= 0:
        raise ValueError("total weight must be positive")
    exact = [
        sum((vector[j] * weight for vector, weight in zip(vectors, fractions)), Fraction(0)) / total
        for j in range(width)
    ]
    return round_preserving_total(exact)
