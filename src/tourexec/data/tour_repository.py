"""Data access helpers for loading planned tours."""

from __future__ import annotations

import functools
import json
import logging
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ValidationError

from ..config import settings
from ..exceptions import TourNotFound
from ..models.domain import LatLng, Tour, Visit
from ..schemas.tours import TourCreateRequest

logger = logging.getLogger(__name__)


def build_tour(payload: TourCreateRequest) -> Tour:
    """Turn a validated planning payload into a fresh (all pending) tour."""
    visits = [
        Visit(
            visit_id=item.visit_id,
            tour_id=payload.tour_id,
            client_id=item.client_id,
            client_name=item.client_name,
            location=LatLng(item.location.lat, item.location.lng),
            position=position,
            estimated_duration_min=(
                item.estimated_duration_min
                if item.estimated_duration_min is not None
                else float(settings.default_visit_duration_minutes)
            ),
            distance_from_previous_m=item.distance_from_previous_m,
            duration_from_previous_s=item.duration_from_previous_s,
        )
        for position, item in enumerate(payload.visits)
    ]
    return Tour(
        tour_id=payload.tour_id,
        name=payload.name,
        agent_id=payload.agent_id,
        tour_date=payload.tour_date,
        start_point=LatLng(payload.start_point.lat, payload.start_point.lng),
        end_point=LatLng(payload.end_point.lat, payload.end_point.lng) if payload.end_point else None,
        visits=visits,
    )


@functools.lru_cache(maxsize=1)
def load_planned_tours(source: Optional[Path] = None) -> tuple[TourCreateRequest, ...]:
    """Load planned tours from ``*.json`` files in the configured tours directory."""

    directory = source or settings.tours_dir
    if not directory.exists():
        logger.info(f"Tours directory not found, starting empty: {directory}")
        return tuple()

    planned: list[TourCreateRequest] = []
    for path in sorted(directory.glob("*.json")):
        try:
            with path.open("r", encoding="utf-8") as handle:
                planned.append(TourCreateRequest.model_validate(json.load(handle)))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise ValueError(f"Planned tour file '{path}' is invalid: {exc}") from exc
    return tuple(planned)


class TourRepository:
    """In-process registry of tours being executed, keyed by tour id."""

    def __init__(self, tours: Iterable[Tour] = ()) -> None:
        self._tours: dict[str, Tour] = {}
        for tour in tours:
            self.add(tour)

    def add(self, tour: Tour) -> Tour:
        if tour.tour_id in self._tours:
            raise ValueError(f"Tour '{tour.tour_id}' is already registered.")
        self._tours[tour.tour_id] = tour
        return tour

    def get(self, tour_id: str) -> Tour:
        try:
            return self._tours[tour_id]
        except KeyError:
            raise TourNotFound(f"Tour '{tour_id}' not found.") from None

    def replace(self, tour: Tour) -> None:
        self._tours[tour.tour_id] = tour

    def list_tours(self) -> list[Tour]:
        return list(self._tours.values())

    @classmethod
    def from_planned(cls, source: Optional[Path] = None) -> "TourRepository":
        return cls(build_tour(item) for item in load_planned_tours(source))
