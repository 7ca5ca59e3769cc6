"""Domain models for tours, visits and absence records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from ..exceptions import TourNotFound


class VisitStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABSENT = "absent"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (VisitStatus.COMPLETED, VisitStatus.SKIPPED)


class AbsentStrategy(str, Enum):
    AFTER_NEXT = "after_next"
    ON_RETURN = "on_return"
    ANOTHER_DAY = "another_day"


class TourStatus(str, Enum):
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


@dataclass(slots=True, frozen=True)
class LatLng:
    """A WGS84 coordinate."""

    lat: float
    lng: float

    def as_tuple(self) -> tuple[float, float]:
        return (self.lat, self.lng)


@dataclass(slots=True)
class AbsenceRecord:
    strategy: AbsentStrategy
    note: Optional[str]
    recorded_at: datetime


@dataclass(slots=True)
class Visit:
    """One planned stop at a client location within a tour."""

    visit_id: str
    tour_id: str
    client_id: str
    location: LatLng
    position: int
    client_name: Optional[str] = None
    status: VisitStatus = VisitStatus.PENDING
    estimated_duration_min: float = 30.0
    distance_from_previous_m: Optional[float] = None
    duration_from_previous_s: Optional[float] = None
    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None
    outcome: dict[str, Any] = field(default_factory=dict)
    absence: Optional[AbsenceRecord] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_returning(self) -> bool:
        """True for an absentee repositioned into today's sequence and not yet revisited."""
        return self.status is VisitStatus.PENDING and self.absence is not None


@dataclass(slots=True)
class Tour:
    """An agent's ordered set of visits for one working session."""

    tour_id: str
    name: str
    start_point: LatLng
    visits: list[Visit]
    agent_id: Optional[str] = None
    tour_date: Optional[date] = None
    end_point: Optional[LatLng] = None
    status: TourStatus = TourStatus.PLANNED
    closed_at: Optional[datetime] = None
    total_distance_m: Optional[float] = None
    total_duration_s: Optional[float] = None
    geometry: list[tuple[float, float]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.end_point is None:
            self.end_point = self.start_point
        self.visits.sort(key=lambda visit: visit.position)
        renumber(self)

    @property
    def is_closed(self) -> bool:
        return self.status is TourStatus.CLOSED

    def visit(self, visit_id: str) -> Visit:
        for visit in self.visits:
            if visit.visit_id == visit_id:
                return visit
        raise TourNotFound(f"Visit '{visit_id}' is not part of tour '{self.tour_id}'.")

    def order(self) -> list[str]:
        return [visit.visit_id for visit in self.visits]


def renumber(tour: Tour) -> None:
    """Rewrite ``position`` so it matches each visit's index in the sequence."""
    for index, visit in enumerate(tour.visits):
        visit.position = index
