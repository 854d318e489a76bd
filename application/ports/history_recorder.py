from __future__ import annotations

from abc import ABC, abstractmethod

from domain.history import HistoryEntry


class HistoryRecorderPort(ABC):
    @abstractmethod
    def record(self, entry: HistoryEntry) -> None:
        ...
