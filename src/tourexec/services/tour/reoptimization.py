"""Re-sequencing of the remaining visits and route-leg refresh.

A re-optimization is a two-step protocol: ``propose_reoptimization`` fetches
one travel matrix and computes a candidate order without touching the tour;
``apply_reoptimization`` commits it on explicit acceptance. Declining is
simply not applying.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Sequence

from ...config import settings
from ...exceptions import InvalidTransition
from ...models.domain import AbsentStrategy, LatLng, Tour, Visit, VisitStatus
from ...persistence.intents import IntentKind, TourIntent
from ..routing.models import RouteSummary, TravelMatrix
from ..routing.optimizer import optimize_sequence, path_cost
from .absent import resolve_absence
from .state_machine import ensure_open, in_progress_visit, remaining_visits, reorder_remaining

logger = logging.getLogger(__name__)


class RoutingClient(Protocol):
    def table(self, coordinates: Sequence[tuple[float, float]]) -> TravelMatrix:
        ...

    def route(self, coordinates: Sequence[tuple[float, float]]) -> RouteSummary:
        ...


@dataclass(slots=True)
class ReoptimizationProposal:
    proposal_id: str
    tour_id: str
    origin: LatLng
    base_order: List[str]
    candidate_order: List[str]
    current_duration_s: float
    current_distance_m: float
    candidate_duration_s: float
    candidate_distance_m: float
    # visit_id -> (distance_m, duration_s) along the candidate order
    legs: Dict[str, tuple[float, float]]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def improved(self) -> bool:
        return self.candidate_order != self.base_order

    @property
    def estimated_savings_s(self) -> float:
        return self.current_duration_s - self.candidate_duration_s

    @property
    def estimated_savings_m(self) -> float:
        return self.current_distance_m - self.candidate_distance_m


def reorderable_visits(tour: Tour) -> List[Visit]:
    """Pending visits in sequence order; an in-progress visit stays pinned."""
    return [visit for visit in remaining_visits(tour) if visit.status is VisitStatus.PENDING]


def default_origin(tour: Tour) -> LatLng:
    """Best guess of the agent's position when the device did not report one."""
    active = in_progress_visit(tour)
    if active is not None:
        return active.location
    finished = [
        visit for visit in tour.visits if visit.status is VisitStatus.COMPLETED and visit.actual_end is not None
    ]
    if finished:
        return max(finished, key=lambda visit: visit.actual_end).location
    return tour.start_point


def _coordinates(origin: LatLng, visits: Sequence[Visit], end_point: LatLng) -> list[tuple[float, float]]:
    return [origin.as_tuple(), *(visit.location.as_tuple() for visit in visits), end_point.as_tuple()]


def _legs(matrix: TravelMatrix, order: Sequence[int], visits: Sequence[Visit]) -> Dict[str, tuple[float, float]]:
    legs: Dict[str, tuple[float, float]] = {}
    previous = 0
    for index in order:
        legs[visits[index - 1].visit_id] = matrix.leg(previous, index)
        previous = index
    return legs


def propose_reoptimization(
    tour: Tour,
    current_location: Optional[LatLng],
    client: RoutingClient,
    *,
    max_iterations: Optional[int] = None,
    min_savings_s: Optional[float] = None,
) -> ReoptimizationProposal:
    """Compute a candidate order for the pending visits; the tour is not modified.

    Raises ``RoutingUnavailable`` when the matrix cannot be fetched.
    """
    ensure_open(tour)
    if len(remaining_visits(tour)) < 2:
        raise InvalidTransition("At least two remaining visits are needed to reorder the tour.")
    # With the in-progress visit pinned, a single pending visit yields a no-op proposal
    pending = reorderable_visits(tour)
    origin = current_location or default_origin(tour)
    max_iterations = settings.reoptimization_max_iterations if max_iterations is None else max_iterations
    min_savings_s = settings.reoptimization_min_savings_seconds if min_savings_s is None else min_savings_s

    matrix = client.table(_coordinates(origin, pending, tour.end_point))
    stops = list(range(1, len(pending) + 1))
    end = len(pending) + 1
    current_duration = path_cost(stops, matrix.durations, end=end)
    current_distance = path_cost(stops, matrix.distances, end=end)

    order = stops
    evaluations = 0
    if len(stops) > 1:
        result = optimize_sequence(matrix, stops, end=end, max_evaluations=max_iterations)
        evaluations = result.evaluations
        if current_duration - result.duration_s >= max(min_savings_s, 0.0):
            order = result.order

    proposal = ReoptimizationProposal(
        proposal_id=uuid.uuid4().hex,
        tour_id=tour.tour_id,
        origin=origin,
        base_order=[visit.visit_id for visit in pending],
        candidate_order=[pending[index - 1].visit_id for index in order],
        current_duration_s=current_duration,
        current_distance_m=current_distance,
        candidate_duration_s=path_cost(order, matrix.durations, end=end),
        candidate_distance_m=path_cost(order, matrix.distances, end=end),
        legs=_legs(matrix, order, pending),
    )
    logger.info(
        f"Tour {tour.tour_id}: proposal {proposal.proposal_id} over {len(pending)} visits, "
        f"savings {proposal.estimated_savings_s:.0f}s ({evaluations} 2-opt evaluations)"
    )
    return proposal


def apply_reoptimization(tour: Tour, proposal: ReoptimizationProposal) -> List[TourIntent]:
    """Commit an accepted proposal.

    The proposal must have been computed against the tour's current pending
    order; anything else is rejected so a re-route is never committed twice
    or on top of a newer change.
    """
    ensure_open(tour)
    if proposal.tour_id != tour.tour_id:
        raise InvalidTransition("Proposal belongs to another tour.")
    pending = reorderable_visits(tour)
    if [visit.visit_id for visit in pending] != proposal.base_order:
        raise InvalidTransition("Proposal is stale; the remaining sequence changed since it was computed.")

    by_id = {visit.visit_id: visit for visit in pending}
    pinned = [visit for visit in remaining_visits(tour) if visit.status is not VisitStatus.PENDING]
    reordered = reorder_remaining(tour, [*pinned, *(by_id[visit_id] for visit_id in proposal.candidate_order)])
    for visit_id, (distance_m, duration_s) in proposal.legs.items():
        by_id[visit_id].distance_from_previous_m = distance_m
        by_id[visit_id].duration_from_previous_s = duration_s

    logger.info(f"Tour {tour.tour_id}: proposal {proposal.proposal_id} applied (reordered={reordered})")
    intents: List[TourIntent] = []
    if reordered:
        intents.append(
            TourIntent(
                kind=IntentKind.SEQUENCE_REORDERED,
                tour_id=tour.tour_id,
                payload={"order": tour.order(), "reason": "reoptimization", "proposal_id": proposal.proposal_id},
            )
        )
    intents.append(_route_intent(tour, [by_id[visit_id] for visit_id in proposal.candidate_order]))
    return intents


def refresh_route(tour: Tour, origin: Optional[LatLng], client: RoutingClient) -> List[TourIntent]:
    """Recompute legs and geometry of the remaining sequence in its current order."""
    ensure_open(tour)
    remaining = remaining_visits(tour)
    if not remaining:
        return []
    origin = origin or default_origin(tour)
    summary = client.route(_coordinates(origin, remaining, tour.end_point))
    for visit, segment in zip(remaining, summary.segments):
        visit.distance_from_previous_m = segment.distance_m
        visit.duration_from_previous_s = segment.duration_s
    tour.total_distance_m = summary.total_distance_m
    tour.total_duration_s = summary.total_duration_s
    tour.geometry = list(summary.geometry)
    logger.info(
        f"Tour {tour.tour_id}: route refreshed, {summary.total_distance_m:.0f}m / {summary.total_duration_s:.0f}s remaining"
    )
    return [_route_intent(tour, remaining)]


def _route_intent(tour: Tour, visits: Sequence[Visit]) -> TourIntent:
    return TourIntent(
        kind=IntentKind.ROUTE_UPDATED,
        tour_id=tour.tour_id,
        payload={
            "legs": {
                visit.visit_id: {
                    "distance_from_previous_m": visit.distance_from_previous_m,
                    "duration_from_previous_s": visit.duration_from_previous_s,
                }
                for visit in visits
            },
            "total_distance_m": tour.total_distance_m,
            "total_duration_s": tour.total_duration_s,
        },
    )


def estimate_absent_detours(
    tour: Tour,
    visit_id: str,
    origin: Optional[LatLng],
    client: RoutingClient,
) -> Dict[AbsentStrategy, float]:
    """Extra travel minutes each same-day strategy would add for an absent visit."""
    ensure_open(tour)
    visit = tour.visit(visit_id)
    remaining = remaining_visits(tour)
    if visit_id not in {item.visit_id for item in remaining}:
        raise InvalidTransition(f"Visit '{visit_id}' is not in the remaining sequence.")
    origin = origin or default_origin(tour)
    matrix = client.table(_coordinates(origin, remaining, tour.end_point))
    index_of = {item.visit_id: position + 1 for position, item in enumerate(remaining)}
    end = len(remaining) + 1
    baseline = path_cost(list(range(1, end)), matrix.durations, end=end)

    extras: Dict[AbsentStrategy, float] = {}
    for strategy in (AbsentStrategy.AFTER_NEXT, AbsentStrategy.ON_RETURN):
        resolution = resolve_absence(remaining, visit, strategy)
        order = [index_of[item.visit_id] for item in resolution.remaining]
        extras[strategy] = (path_cost(order, matrix.durations, end=end) - baseline) / 60.0
    return extras
