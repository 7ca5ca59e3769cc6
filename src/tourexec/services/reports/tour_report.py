"""Serializers for the end-of-tour report."""

from __future__ import annotations

import csv
import io
import logging
from datetime import datetime
from typing import Any, Optional

from ...models.domain import Tour
from ...persistence.filesystem import FileStorage
from ..tour.progress import compute_progress

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def tour_report_to_json(tour: Tour, now: Optional[datetime] = None) -> dict:
    progress = compute_progress(tour, now=now)
    return {
        "tour_id": tour.tour_id,
        "name": tour.name,
        "agent_id": tour.agent_id,
        "tour_date": tour.tour_date.isoformat() if tour.tour_date else None,
        "status": tour.status.value,
        "closed_at": _iso(tour.closed_at),
        "summary": {
            "total": progress.total,
            "completed": progress.completed,
            "absent": progress.absent,
            "pending": progress.pending,
            "progress_percent": progress.progress_percent,
            "total_distance_m": tour.total_distance_m,
            "total_duration_s": tour.total_duration_s,
        },
        "visits": [
            {
                "position": visit.position,
                "visit_id": visit.visit_id,
                "client_id": visit.client_id,
                "client_name": visit.client_name,
                "status": visit.status.value,
                "actual_start": _iso(visit.actual_start),
                "actual_end": _iso(visit.actual_end),
                "absent_strategy": visit.absence.strategy.value if visit.absence else None,
                "absent_note": visit.absence.note if visit.absence else None,
                "outcome": visit.outcome,
            }
            for visit in tour.visits
        ],
    }


def tour_report_to_csv(tour: Tour) -> str:
    buffer = io.StringIO()
    fieldnames = [
        "tour_id",
        "position",
        "visit_id",
        "client_id",
        "client_name",
        "status",
        "actual_start",
        "actual_end",
        "absent_strategy",
        "distance_from_previous_m",
        "duration_from_previous_s",
    ]
    writer = csv.DictWriter(buffer, fieldnames=fieldnames)
    writer.writeheader()
    for visit in tour.visits:
        writer.writerow(
            {
                "tour_id": tour.tour_id,
                "position": visit.position,
                "visit_id": visit.visit_id,
                "client_id": visit.client_id,
                "client_name": visit.client_name or "",
                "status": visit.status.value,
                "actual_start": _iso(visit.actual_start) or "",
                "actual_end": _iso(visit.actual_end) or "",
                "absent_strategy": visit.absence.strategy.value if visit.absence else "",
                "distance_from_previous_m": visit.distance_from_previous_m if visit.distance_from_previous_m is not None else "",
                "duration_from_previous_s": visit.duration_from_previous_s if visit.duration_from_previous_s is not None else "",
            }
        )
    return buffer.getvalue()


def write_tour_report(tour: Tour, storage: Optional[FileStorage] = None) -> dict[str, Any]:
    """Persist the JSON and CSV report in a fresh run directory."""
    storage = storage or FileStorage()
    run_dir = storage.make_run_directory(prefix=f"tour_{tour.tour_id}")
    report = tour_report_to_json(tour)
    storage.write_json(run_dir / "summary.json", report)
    storage.write_csv(run_dir / "visits.csv", tour_report_to_csv(tour))
    logger.info(f"Tour {tour.tour_id}: report written to {run_dir}")
    return {
        "run_id": run_dir.name,
        "files": ["summary.json", "visits.csv"],
        "report": report,
    }
