from __future__ import annotations

from datetime import datetime
from threading import Lock
from typing import Dict, List, Optional

from application.ports.run_repository import RunResultRepositoryPort
from domain.exceptions import RunStateError
from domain.run_record import RunCounters, RunIteration, RunResult, RunStatus


class InMemoryRunResultRepository(RunResultRepositoryPort):
    def __init__(self) -> None:
        self._runs: Dict[str, RunResult] = {}
        self._iterations: Dict[str, List[RunIteration]] = {}
        self._lock = Lock()

    def create(self, result: RunResult) -> None:
        with self._lock:
            if result.run_id in self._runs:
                raise RunStateError(f"Run already exists: {result.run_id}")
            self._runs[result.run_id] = result
            self._iterations[result.run_id] = []

    def get(self, run_id: str) -> Optional[RunResult]:
        with self._lock:
            return self._runs.get(run_id)

    def update_counters(self, run_id: str, counters: RunCounters) -> RunResult:
        with self._lock:
            record = self._require(run_id)
            # counters のみ更新。status は transition_status 経由でしか変わらない
            updated = record.with_counters(counters)
            self._runs[run_id] = updated
            return updated

    def append_iteration(self, run_id: str, iteration: RunIteration) -> None:
        with self._lock:
            self._require(run_id)
            self._iterations[run_id].append(iteration)

    def list_iterations(self, run_id: str) -> List[RunIteration]:
        with self._lock:
            return list(self._iterations.get(run_id, []))

    def list_by_collection(self, collection_id: str) -> List[RunResult]:
        with self._lock:
            runs = [r for r in self._runs.values() if r.collection_id == collection_id]
        return sorted(runs, key=lambda r: r.started_at, reverse=True)

    def transition_status(
        self,
        run_id: str,
        expected: RunStatus,
        new_status: RunStatus,
        completed_at: Optional[datetime] = None,
    ) -> RunResult:
        with self._lock:
            record = self._require(run_id)
            if record.status != expected:
                raise RunStateError(
                    f"Invalid run transition: {run_id} {record.status.value} -> {new_status.value}"
                )
            updated = record.with_status(new_status, completed_at=completed_at)
            self._runs[run_id] = updated
            return updated

    def delete(self, run_id: str) -> None:
        with self._lock:
            self._runs.pop(run_id, None)
            self._iterations.pop(run_id, None)

    def _require(self, run_id: str) -> RunResult:
        record = self._runs.get(run_id)
        if record is None:
            raise RunStateError(f"Run not found: {run_id}")
        return record
