"""Supabase persistence for tour intents."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from ..db.supabase import get_supabase_client
from .intents import IntentKind, TourIntent

logger = logging.getLogger(__name__)


def _visit_update(intent: TourIntent) -> dict[str, Any] | None:
    payload = intent.payload
    if intent.kind is IntentKind.VISIT_STARTED:
        return {"status": "in_progress", "actual_start": payload["actual_start"]}
    if intent.kind is IntentKind.VISIT_COMPLETED:
        return {"status": "completed", "actual_end": payload["actual_end"], "outcome": payload.get("outcome") or {}}
    if intent.kind is IntentKind.VISIT_ABSENT:
        return {
            "status": payload["status"],
            "absent_strategy": payload["strategy"],
            "notes": payload.get("note"),
            "position": payload.get("position"),
        }
    return None


class SupabaseIntentSink:
    """Writes intents to the ``tour_events`` table and mirrors them on ``visits``/``tours``.

    Errors propagate: an intent is only applied once every write succeeded.
    """

    def __init__(self, client: Any | None = None) -> None:
        self.client = client or get_supabase_client()
        if self.client is None:
            raise ValueError("Supabase is not configured. Set TOUREXEC_SUPABASE_URL and TOUREXEC_SUPABASE_KEY.")

    def apply(self, intents: Sequence[TourIntent]) -> None:
        if not intents:
            return
        try:
            self.client.table("tour_events").insert([intent.to_record() for intent in intents]).execute()
            for intent in intents:
                self._mirror(intent)
        except Exception as exc:
            logger.error(f"Failed to persist {len(intents)} tour intents: {exc}")
            raise

    def _mirror(self, intent: TourIntent) -> None:
        visit_update = _visit_update(intent)
        if visit_update is not None:
            self.client.table("visits").update(visit_update).eq("id", intent.visit_id).execute()
        elif intent.kind is IntentKind.SEQUENCE_REORDERED:
            for position, visit_id in enumerate(intent.payload["order"]):
                self.client.table("visits").update({"position": position}).eq("id", visit_id).execute()
        elif intent.kind is IntentKind.ROUTE_UPDATED:
            for visit_id, leg in intent.payload.get("legs", {}).items():
                self.client.table("visits").update(leg).eq("id", visit_id).execute()
        elif intent.kind is IntentKind.TOUR_CLOSED:
            self.client.table("tours").update(
                {"status": "closed", "closed_at": intent.payload["closed_at"]}
            ).eq("id", intent.tour_id).execute()


def check_database() -> dict[str, Any]:
    """Report whether Supabase is configured and the events table is reachable."""
    client = get_supabase_client()
    if client is None:
        return {
            "configured": False,
            "message": "Supabase not configured. Set TOUREXEC_SUPABASE_URL and TOUREXEC_SUPABASE_KEY.",
        }
    try:
        client.table("tour_events").select("tour_id", count="exact").limit(1).execute()
        return {"configured": True, "connected": True, "message": "Database connected."}
    except Exception as exc:
        return {"configured": True, "connected": False, "error": str(exc), "message": f"Database connection error: {exc}"}
