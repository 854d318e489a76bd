from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from domain.run_record import RunCounters, RunIteration, RunResult, RunStatus


class RunResultRepositoryPort(ABC):
    @abstractmethod
    def create(self, result: RunResult) -> None:
        ...

    @abstractmethod
    def get(self, run_id: str) -> Optional[RunResult]:
        ...

    @abstractmethod
    def update_counters(self, run_id: str, counters: RunCounters) -> RunResult:
        ...

    @abstractmethod
    def append_iteration(self, run_id: str, iteration: RunIteration) -> None:
        ...

    @abstractmethod
    def list_iterations(self, run_id: str) -> List[RunIteration]:
        ...

    @abstractmethod
    def list_by_collection(self, collection_id: str) -> List[RunResult]:
        """
        Newest first.
        """
        ...

    @abstractmethod
    def transition_status(
        self,
        run_id: str,
        expected: RunStatus,
        new_status: RunStatus,
        completed_at: Optional[datetime] = None,
    ) -> RunResult:
        ...

    @abstractmethod
    def delete(self, run_id: str) -> None:
        ...
