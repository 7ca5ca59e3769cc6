"""File-based persistence for tour intents and report outputs."""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from ..config import settings
from .intents import TourIntent


class FileStorage:
    """Thin wrapper around the data root for storing JSON, CSV and journal files."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = (root or settings.data_root).resolve()
        self.output_root = self.root / "outputs"
        self.journal_root = self.root / "journal"
        self.output_root.mkdir(parents=True, exist_ok=True)
        self.journal_root.mkdir(parents=True, exist_ok=True)

    def make_run_directory(self, prefix: str = "tour") -> Path:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        path = self.output_root / f"{prefix}_{timestamp}"
        path.mkdir(parents=True, exist_ok=False)
        return path

    def write_json(self, path: Path, data: Any, *, indent: int = 2) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, ensure_ascii=False, indent=indent)

    def write_csv(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            handle.write(content)

    def append_jsonl(self, path: Path, records: Sequence[dict[str, Any]]) -> None:
        """Append one JSON document per line and fsync before returning."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            for record in records:
                handle.write(json.dumps(record, ensure_ascii=False))
                handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())

    def journal_path(self, tour_id: str) -> Path:
        return self.journal_root / f"{tour_id}.jsonl"

    def read_journal(self, tour_id: str) -> list[dict[str, Any]]:
        path = self.journal_path(tour_id)
        if not path.exists():
            return []
        with path.open("r", encoding="utf-8") as handle:
            return [json.loads(line) for line in handle if line.strip()]


class JournalIntentSink:
    """Appends intents to ``<data_root>/journal/<tour_id>.jsonl``."""

    def __init__(self, storage: FileStorage | None = None) -> None:
        self.storage = storage or FileStorage()

    def apply(self, intents: Sequence[TourIntent]) -> None:
        by_tour: dict[str, list[dict[str, Any]]] = {}
        for intent in intents:
            by_tour.setdefault(intent.tour_id, []).append(intent.to_record())
        for tour_id, records in by_tour.items():
            self.storage.append_jsonl(self.storage.journal_path(tour_id), records)
