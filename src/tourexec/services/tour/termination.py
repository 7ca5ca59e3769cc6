"""Two-step close-out of a tour.

Closing requires showing the summary first, then having the operator re-type
a randomly drawn word. The word is a friction control against closing a tour
with unresolved visits by accident, not a secret.
"""

from __future__ import annotations

import logging
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from ...config import settings
from ...exceptions import ConfirmationMismatch, InvalidTransition
from ...models.domain import Tour, TourStatus
from ...persistence.intents import IntentKind, TourIntent
from .progress import compute_progress
from .state_machine import ensure_open

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CloseGate:
    gate_id: str
    tour_id: str
    token: str
    completed: int
    absent: int
    pending: int
    opened_at: datetime
    used: bool = field(default=False)

    @property
    def has_pending_work(self) -> bool:
        return self.pending > 0


def draw_confirmation_word(
    words: Optional[Sequence[str]] = None,
    rng: Optional[random.Random] = None,
) -> str:
    choices = list(words or settings.confirmation_words)
    return (rng or random).choice(choices).upper()


def open_close_gate(
    tour: Tour,
    *,
    rng: Optional[random.Random] = None,
    now: Optional[datetime] = None,
) -> CloseGate:
    ensure_open(tour)
    now = now or datetime.now(timezone.utc)
    progress = compute_progress(tour, now=now)
    return CloseGate(
        gate_id=uuid.uuid4().hex,
        tour_id=tour.tour_id,
        token=draw_confirmation_word(rng=rng),
        completed=progress.completed,
        absent=progress.absent,
        pending=progress.pending,
        opened_at=now,
    )


def confirm_close(
    tour: Tour,
    gate: CloseGate,
    typed: str,
    *,
    now: Optional[datetime] = None,
) -> List[TourIntent]:
    """Close the tour if ``typed`` matches; the caller marks the gate used once the close is stored."""
    ensure_open(tour)
    if gate.tour_id != tour.tour_id:
        raise InvalidTransition("Confirmation gate belongs to another tour.")
    if gate.used:
        raise InvalidTransition("Confirmation gate has already been used; request a new one.")
    if (typed or "").strip().upper() != gate.token.upper():
        logger.warning(f"Tour {tour.tour_id}: close rejected, confirmation word mismatch")
        raise ConfirmationMismatch("Confirmation word does not match.")

    closed_at = now or datetime.now(timezone.utc)
    tour.status = TourStatus.CLOSED
    tour.closed_at = closed_at
    logger.info(
        f"Tour {tour.tour_id}: closed with {gate.completed} completed, {gate.absent} absent, {gate.pending} pending"
    )
    return [
        TourIntent(
            kind=IntentKind.TOUR_CLOSED,
            tour_id=tour.tour_id,
            payload={
                "closed_at": closed_at.isoformat(),
                "completed": gate.completed,
                "absent": gate.absent,
                "pending": gate.pending,
            },
            recorded_at=closed_at,
        )
    ]
