"""Routing domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(slots=True)
class RouteSegment:
    from_point: tuple[float, float]
    to_point: tuple[float, float]
    distance_m: float
    duration_s: float
    geometry: Optional[List[tuple[float, float]]] = None


@dataclass(slots=True)
class RouteSummary:
    total_distance_m: float
    total_duration_s: float
    segments: List[RouteSegment]
    geometry: List[tuple[float, float]] = field(default_factory=list)


@dataclass(slots=True)
class TravelMatrix:
    """Pairwise durations (seconds) and distances (metres), row = origin."""

    durations: List[List[float]]
    distances: List[List[float]]

    def __len__(self) -> int:
        return len(self.durations)

    def leg(self, origin: int, destination: int) -> tuple[float, float]:
        return self.distances[origin][destination], self.durations[origin][destination]
