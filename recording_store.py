"""JSON file store for recording entries."""

from __future__ import annotations

import json
import threading
from pathlib import Path

from errors import PERSISTENCE_ERROR, AppError
from models import RecordingEntry


class JsonRecordingStore:
    """Keeps every entry in one JSON list; saving an existing id replaces it."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    def save(self, entry: RecordingEntry) -> None:
        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                records = [r for r in self._read_all() if r.get("id") != str(entry.id)]
                records.append(entry.to_dict())
                tmp = self._path.with_suffix(".tmp")
                tmp.write_text(json.dumps(records, ensure_ascii=False, indent=2), encoding="utf-8")
                tmp.replace(self._path)
            except OSError as exc:
                raise AppError(PERSISTENCE_ERROR, str(exc)) from exc

    def load_all(self) -> list[RecordingEntry]:
        with self._lock:
            return [RecordingEntry.from_dict(r) for r in self._read_all()]

    def _read_all(self) -> list[dict]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise AppError(PERSISTENCE_ERROR, f"corrupt store {self._path}: {exc}") from exc
        return [r for r in data if isinstance(r, dict)] if isinstance(data, list) else []
