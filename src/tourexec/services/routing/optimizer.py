"""Heuristic visit-sequence optimization over an OSRM travel matrix.

The remaining stops of a tour form an open path: it starts at a fixed origin
(the agent's current location, matrix index 0), visits every stop once and
ends at a fixed end point (the last matrix index) when one is given.

Two heuristics are combined:

    - ``nearest_neighbor`` builds a route by repeatedly driving to the
      closest unvisited stop.
    - ``two_opt`` reverses segments of a route while that lowers the total
      duration, bounded by an evaluation budget so a proposal stays
      interactive.

Costs are measured on durations (primary); distances are reported alongside.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from .models import TravelMatrix

# Improvements smaller than this (seconds) are treated as ties
EPSILON = 1e-6


@dataclass(slots=True)
class SequenceResult:
    order: List[int]
    duration_s: float
    distance_m: float
    evaluations: int


def path_cost(
    order: Sequence[int],
    weights: Sequence[Sequence[float]],
    *,
    origin: int = 0,
    end: Optional[int] = None,
) -> float:
    """Total weight of ``origin -> order... -> end``."""
    if not order:
        return weights[origin][end] if end is not None else 0.0
    total = weights[origin][order[0]]
    for current, following in zip(order, order[1:]):
        total += weights[current][following]
    if end is not None:
        total += weights[order[-1]][end]
    return total


def nearest_neighbor(
    weights: Sequence[Sequence[float]],
    stops: Sequence[int],
    *,
    origin: int = 0,
) -> List[int]:
    """Construct a route by always moving to the closest remaining stop.

    Ties go to the stop listed first in ``stops``, which keeps the result
    stable with respect to the current plan.
    """
    rank = {stop: index for index, stop in enumerate(stops)}
    unvisited = set(stops)
    route: List[int] = []
    current = origin
    while unvisited:
        next_stop = min(unvisited, key=lambda stop: (weights[current][stop], rank[stop]))
        route.append(next_stop)
        unvisited.remove(next_stop)
        current = next_stop
    return route


def two_opt(
    route: Sequence[int],
    weights: Sequence[Sequence[float]],
    *,
    origin: int = 0,
    end: Optional[int] = None,
    max_evaluations: int = 2000,
) -> tuple[List[int], int]:
    """Improve ``route`` by segment reversal; return the route and evaluations used.

    Only strict improvements are accepted, so an already optimal route comes
    back unchanged.
    """
    best = list(route)
    best_cost = path_cost(best, weights, origin=origin, end=end)
    evaluations = 0
    n = len(best)
    improved = True
    while improved and evaluations < max_evaluations:
        improved = False
        for i in range(n - 1):
            for j in range(i + 1, n):
                if evaluations >= max_evaluations:
                    return best, evaluations
                evaluations += 1
                candidate = best[:i] + best[i : j + 1][::-1] + best[j + 1 :]
                candidate_cost = path_cost(candidate, weights, origin=origin, end=end)
                if candidate_cost < best_cost - EPSILON:
                    best, best_cost = candidate, candidate_cost
                    improved = True
    return best, evaluations


def optimize_sequence(
    matrix: TravelMatrix,
    current_order: Sequence[int],
    *,
    origin: int = 0,
    end: Optional[int] = None,
    max_evaluations: int = 2000,
) -> SequenceResult:
    """Return the best open-path order found for ``current_order``'s stops.

    Both the nearest-neighbour construction and the current order are
    improved with 2-opt. The winner has the lower total duration; on a tie
    the order closer to ``current_order`` wins.
    """
    rank = {stop: index for index, stop in enumerate(current_order)}
    budget = max_evaluations

    improved_current, used = two_opt(
        current_order, matrix.durations, origin=origin, end=end, max_evaluations=budget // 2
    )
    budget -= used
    constructed = nearest_neighbor(matrix.durations, current_order, origin=origin)
    improved_constructed, used_constructed = two_opt(
        constructed, matrix.durations, origin=origin, end=end, max_evaluations=budget
    )
    used += used_constructed

    def sort_key(order: List[int]) -> tuple[float, tuple[int, ...]]:
        duration = path_cost(order, matrix.durations, origin=origin, end=end)
        return (round(duration, 6), tuple(rank[stop] for stop in order))

    best = min(list(current_order), improved_current, improved_constructed, key=sort_key)
    return SequenceResult(
        order=best,
        duration_s=path_cost(best, matrix.durations, origin=origin, end=end),
        distance_m=path_cost(best, matrix.distances, origin=origin, end=end),
        evaluations=used,
    )
