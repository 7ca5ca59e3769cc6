"""Progress and ETA figures derived from a tour's visit list."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Optional

from ...config import settings
from ...models.domain import Tour, VisitStatus


@dataclass(slots=True)
class TourProgress:
    total: int
    completed: int
    absent: int
    pending: int
    returning: int
    progress_percent: float
    current_visit_id: Optional[str]
    remaining_distance_m: float
    remaining_duration_s: float
    estimated_end_time: datetime
    can_complete: bool
    visits_that_fit: int


def _work_end(now: datetime, work_end_time: time) -> datetime:
    return now.replace(
        hour=work_end_time.hour,
        minute=work_end_time.minute,
        second=work_end_time.second,
        microsecond=0,
    )


def compute_progress(
    tour: Tour,
    now: Optional[datetime] = None,
    work_end_time: Optional[time] = None,
) -> TourProgress:
    """Summarize ``tour`` as of ``now``. Pure: recompute after every mutation."""
    now = now or datetime.now(timezone.utc)
    visits = tour.visits
    total = len(visits)
    completed = sum(1 for visit in visits if visit.status is VisitStatus.COMPLETED)
    absent = sum(1 for visit in visits if visit.status in (VisitStatus.ABSENT, VisitStatus.SKIPPED))
    pending = sum(1 for visit in visits if visit.status in (VisitStatus.PENDING, VisitStatus.IN_PROGRESS))
    returning = sum(1 for visit in visits if visit.is_returning)

    remaining = [visit for visit in visits if not visit.is_terminal]
    remaining_distance = sum(visit.distance_from_previous_m or 0.0 for visit in remaining)
    remaining_duration = sum(
        (visit.duration_from_previous_s or 0.0) + visit.estimated_duration_min * 60.0 for visit in remaining
    )

    # Same-day capacity check against the end of the working day
    available_s = (_work_end(now, work_end_time or settings.work_end_time) - now).total_seconds()
    visits_that_fit = 0
    used_s = 0.0
    for visit in remaining:
        needed = (visit.duration_from_previous_s or 0.0) + visit.estimated_duration_min * 60.0
        if used_s + needed > available_s:
            break
        used_s += needed
        visits_that_fit += 1

    return TourProgress(
        total=total,
        completed=completed,
        absent=absent,
        pending=pending,
        returning=returning,
        progress_percent=(completed / total * 100.0) if total else 0.0,
        current_visit_id=remaining[0].visit_id if remaining else None,
        remaining_distance_m=remaining_distance,
        remaining_duration_s=remaining_duration,
        estimated_end_time=now + timedelta(seconds=remaining_duration),
        can_complete=remaining_duration <= available_s,
        visits_that_fit=visits_that_fit,
    )
