"""Visit lifecycle transitions for a single tour.

    pending -> in_progress -> completed
                           -> absent -> pending (repositioned) | skipped (another day)

``completed`` and ``skipped`` are terminal. The current visit is the
lowest-position visit that is not terminal. Every transition validates its
preconditions before touching the tour and returns the intents the storage
collaborator has to persist.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence

from ...exceptions import InvalidTransition, TourClosed
from ...models.domain import AbsenceRecord, AbsentStrategy, Tour, TourStatus, Visit, VisitStatus, renumber
from ...persistence.intents import IntentKind, TourIntent
from .absent import resolve_absence

logger = logging.getLogger(__name__)


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def ensure_open(tour: Tour) -> None:
    if tour.is_closed:
        raise TourClosed(f"Tour '{tour.tour_id}' is closed; no further changes are accepted.")


def remaining_visits(tour: Tour) -> List[Visit]:
    """Non-terminal visits in sequence order."""
    return [visit for visit in tour.visits if not visit.is_terminal]


def current_visit(tour: Tour) -> Optional[Visit]:
    return next((visit for visit in tour.visits if not visit.is_terminal), None)


def in_progress_visit(tour: Tour) -> Optional[Visit]:
    return next((visit for visit in tour.visits if visit.status is VisitStatus.IN_PROGRESS), None)


def reorder_remaining(tour: Tour, ordered: Sequence[Visit]) -> bool:
    """Write ``ordered`` into the tour's non-terminal slots; return True if the order changed.

    Terminal visits keep their positions. ``ordered`` must be a permutation
    of the current remaining visits.
    """
    slots = [index for index, visit in enumerate(tour.visits) if not visit.is_terminal]
    current_ids = sorted(tour.visits[index].visit_id for index in slots)
    if sorted(visit.visit_id for visit in ordered) != current_ids:
        raise InvalidTransition("A reorder must permute the remaining visits exactly.")
    before = tour.order()
    for slot, visit in zip(slots, ordered):
        tour.visits[slot] = visit
    renumber(tour)
    return tour.order() != before


def start_visit(tour: Tour, visit_id: str, *, now: Optional[datetime] = None) -> List[TourIntent]:
    ensure_open(tour)
    visit = tour.visit(visit_id)
    active = in_progress_visit(tour)
    if active is not None:
        raise InvalidTransition(f"Visit '{active.visit_id}' is already in progress.")
    current = current_visit(tour)
    if current is None or current.visit_id != visit_id:
        raise InvalidTransition(f"Visit '{visit_id}' is not the current visit.")
    if visit.status is not VisitStatus.PENDING:
        raise InvalidTransition(f"Visit '{visit_id}' is {visit.status.value}, expected pending.")

    visit.status = VisitStatus.IN_PROGRESS
    visit.actual_start = _now(now)
    if tour.status is TourStatus.PLANNED:
        tour.status = TourStatus.IN_PROGRESS
    logger.info(f"Tour {tour.tour_id}: visit {visit_id} started")
    return [
        TourIntent(
            kind=IntentKind.VISIT_STARTED,
            tour_id=tour.tour_id,
            visit_id=visit_id,
            payload={"actual_start": visit.actual_start.isoformat(), "tour_status": tour.status.value},
            recorded_at=visit.actual_start,
        )
    ]


def complete_visit(
    tour: Tour,
    visit_id: str,
    outcome: Optional[dict[str, Any]] = None,
    *,
    now: Optional[datetime] = None,
) -> List[TourIntent]:
    ensure_open(tour)
    visit = tour.visit(visit_id)
    if visit.status is not VisitStatus.IN_PROGRESS:
        raise InvalidTransition(f"Visit '{visit_id}' is {visit.status.value}, expected in_progress.")

    visit.status = VisitStatus.COMPLETED
    visit.actual_end = _now(now)
    if outcome:
        visit.outcome.update(outcome)
    logger.info(f"Tour {tour.tour_id}: visit {visit_id} completed")
    return [
        TourIntent(
            kind=IntentKind.VISIT_COMPLETED,
            tour_id=tour.tour_id,
            visit_id=visit_id,
            payload={"actual_end": visit.actual_end.isoformat(), "outcome": dict(visit.outcome)},
            recorded_at=visit.actual_end,
        )
    ]


def mark_absent(
    tour: Tour,
    visit_id: str,
    strategy: AbsentStrategy,
    note: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> List[TourIntent]:
    ensure_open(tour)
    visit = tour.visit(visit_id)
    if visit.status not in (VisitStatus.PENDING, VisitStatus.IN_PROGRESS):
        raise InvalidTransition(
            f"Visit '{visit_id}' is {visit.status.value}; only pending or in-progress visits can be marked absent."
        )
    strategy = AbsentStrategy(strategy)
    recorded_at = _now(now)

    # Resolve against the pre-absence sequence so the anchor search sees it unchanged
    before = remaining_visits(tour)
    resolution = resolve_absence(before, visit, strategy)

    visit.absence = AbsenceRecord(strategy=strategy, note=(note or "").strip() or None, recorded_at=recorded_at)
    visit.status = resolution.status
    reorder_remaining(tour, resolution.remaining)
    # A deferred visit leaves the active sequence without moving any slot
    reordered = [item.visit_id for item in remaining_visits(tour)] != [item.visit_id for item in before]

    logger.info(
        f"Tour {tour.tour_id}: visit {visit_id} absent ({strategy.value}) -> {visit.status.value}"
    )
    intents = [
        TourIntent(
            kind=IntentKind.VISIT_ABSENT,
            tour_id=tour.tour_id,
            visit_id=visit_id,
            payload={
                "strategy": strategy.value,
                "note": visit.absence.note,
                "status": visit.status.value,
                "position": visit.position,
            },
            recorded_at=recorded_at,
        )
    ]
    if reordered:
        intents.append(
            TourIntent(
                kind=IntentKind.SEQUENCE_REORDERED,
                tour_id=tour.tour_id,
                payload={"order": tour.order(), "reason": f"absent:{strategy.value}"},
                recorded_at=recorded_at,
            )
        )
    return intents
