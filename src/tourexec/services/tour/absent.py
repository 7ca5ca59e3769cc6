"""Absent-client disposition: where an absent visit re-enters the sequence.

The resolver is a pure reordering step over the remaining (non-terminal)
visits. It never talks to the routing provider; legs are recomputed
separately once the new order is known.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from ...exceptions import InvalidTransition
from ...models.domain import AbsentStrategy, Visit, VisitStatus


@dataclass(slots=True)
class AbsenceResolution:
    remaining: List[Visit]
    status: VisitStatus
    # Index of the absent visit inside ``remaining``; None once deferred
    index: Optional[int]


def _is_anchor(visit: Visit) -> bool:
    """Only fresh pending visits anchor an ``after_next`` reinsertion."""
    return visit.status is VisitStatus.PENDING and not visit.is_returning


def resolve_absence(
    remaining: Sequence[Visit],
    visit: Visit,
    strategy: AbsentStrategy,
) -> AbsenceResolution:
    ids = [item.visit_id for item in remaining]
    if visit.visit_id not in ids:
        raise InvalidTransition(f"Visit '{visit.visit_id}' is not in the remaining sequence.")
    index = ids.index(visit.visit_id)
    others = [item for item in remaining if item.visit_id != visit.visit_id]

    if strategy is AbsentStrategy.ANOTHER_DAY:
        return AbsenceResolution(remaining=others, status=VisitStatus.SKIPPED, index=None)

    if strategy is AbsentStrategy.ON_RETURN:
        return AbsenceResolution(remaining=[*others, visit], status=VisitStatus.PENDING, index=len(others))

    anchor = next(
        (position for position in range(index, len(others)) if _is_anchor(others[position])),
        None,
    )
    if anchor is None:
        return AbsenceResolution(remaining=[*others, visit], status=VisitStatus.PENDING, index=len(others))

    target = anchor + 1
    # FIFO: queue behind absentees already waiting after the same visit
    while (
        target < len(others)
        and others[target].is_returning
        and others[target].absence.strategy is AbsentStrategy.AFTER_NEXT
    ):
        target += 1
    reordered = [*others[:target], visit, *others[target:]]
    return AbsenceResolution(remaining=reordered, status=VisitStatus.PENDING, index=target)
