from typing import Callable, Sequence

import pytest

from tourexec.exceptions import RoutingUnavailable
from tourexec.models.domain import LatLng, Tour, Visit
from tourexec.services.routing.models import RouteSegment, RouteSummary, TravelMatrix


class LineRouting:
    """Fake routing provider: every point lies on one straight road (x = longitude)."""

    def __init__(self, seconds_per_unit: float = 120.0, metres_per_unit: float = 1000.0) -> None:
        self.seconds_per_unit = seconds_per_unit
        self.metres_per_unit = metres_per_unit
        self.calls: list[tuple[str, list[tuple[float, float]]]] = []

    def table(self, coordinates: Sequence[tuple[float, float]]) -> TravelMatrix:
        self.calls.append(("table", list(coordinates)))
        xs = [lng for _, lng in coordinates]
        return TravelMatrix(
            durations=[[abs(a - b) * self.seconds_per_unit for b in xs] for a in xs],
            distances=[[abs(a - b) * self.metres_per_unit for b in xs] for a in xs],
        )

    def route(self, coordinates: Sequence[tuple[float, float]]) -> RouteSummary:
        self.calls.append(("route", list(coordinates)))
        segments = [
            RouteSegment(
                from_point=start,
                to_point=end,
                distance_m=abs(start[1] - end[1]) * self.metres_per_unit,
                duration_s=abs(start[1] - end[1]) * self.seconds_per_unit,
            )
            for start, end in zip(coordinates, coordinates[1:])
        ]
        return RouteSummary(
            total_distance_m=sum(segment.distance_m for segment in segments),
            total_duration_s=sum(segment.duration_s for segment in segments),
            segments=segments,
            geometry=list(coordinates),
        )


class BrokenRouting:
    def table(self, coordinates):
        raise RoutingUnavailable("OSRM request timed out.")

    def route(self, coordinates):
        raise RoutingUnavailable("OSRM request timed out.")


@pytest.fixture
def line_routing() -> LineRouting:
    return LineRouting()


@pytest.fixture
def broken_routing() -> BrokenRouting:
    return BrokenRouting()


@pytest.fixture
def make_tour() -> Callable[..., Tour]:
    """Build tour ``T1`` with visits V1..Vn placed at the given road positions."""

    def factory(xs: Sequence[float] = (1.0, 2.0, 3.0), end_x: float = 10.0, duration_min: float = 30.0) -> Tour:
        visits = [
            Visit(
                visit_id=f"V{index}",
                tour_id="T1",
                client_id=f"C{index}",
                location=LatLng(0.0, float(x)),
                position=index - 1,
                estimated_duration_min=duration_min,
            )
            for index, x in enumerate(xs, start=1)
        ]
        return Tour(
            tour_id="T1",
            name="Monday north",
            start_point=LatLng(0.0, 0.0),
            end_point=LatLng(0.0, end_x),
            visits=visits,
        )

    return factory
