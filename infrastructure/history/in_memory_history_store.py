from __future__ import annotations

from threading import Lock
from typing import Dict, List, Optional

from application.ports.history_recorder import HistoryRecorderPort
from domain.history import HistoryEntry


class InMemoryHistoryStore(HistoryRecorderPort):
    def __init__(self) -> None:
        self._entries: Dict[str, HistoryEntry] = {}
        self._lock = Lock()

    def record(self, entry: HistoryEntry) -> None:
        with self._lock:
            self._entries[entry.id] = entry

    def get(self, entry_id: str) -> Optional[HistoryEntry]:
        with self._lock:
            return self._entries.get(entry_id)

    def list(self, team_id: str) -> List[HistoryEntry]:
        with self._lock:
            entries = [e for e in self._entries.values() if e.team_id == team_id]
        return sorted(entries, key=lambda e: e.created_at, reverse=True)
