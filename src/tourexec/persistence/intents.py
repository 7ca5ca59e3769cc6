"""Storage-bound records of applied tour transitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol, Sequence


class IntentKind(str, Enum):
    VISIT_STARTED = "visit_started"
    VISIT_COMPLETED = "visit_completed"
    VISIT_ABSENT = "visit_absent"
    SEQUENCE_REORDERED = "sequence_reordered"
    ROUTE_UPDATED = "route_updated"
    TOUR_CLOSED = "tour_closed"


@dataclass(slots=True, frozen=True)
class TourIntent:
    kind: IntentKind
    tour_id: str
    visit_id: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_record(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "tour_id": self.tour_id,
            "visit_id": self.visit_id,
            "payload": self.payload,
            "recorded_at": self.recorded_at.isoformat(),
        }


class IntentSink(Protocol):
    """Storage collaborator: must make ``intents`` durable before returning."""

    def apply(self, intents: Sequence[TourIntent]) -> None:
        ...


class MemoryIntentSink:
    """Keeps intents in a list; used for tests and the ``memory`` sink setting."""

    def __init__(self) -> None:
        self.intents: list[TourIntent] = []

    def apply(self, intents: Sequence[TourIntent]) -> None:
        self.intents.extend(intents)

    def kinds(self) -> list[IntentKind]:
        return [intent.kind for intent in self.intents]
