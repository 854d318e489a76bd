from __future__ import annotations

from collections import deque
from threading import Lock
from typing import Deque, Dict, List

from application.ports.run_log_store import RunLogStorePort
from domain.run_log import RunLogEntry

DEFAULT_MAX_ENTRIES_PER_RUN = 10_000


class InMemoryRunLogStore(RunLogStorePort):
    """
    run ごとに直近 max_entries 件だけ保持する（大量 iteration の run でメモリを食い潰さない）。
    """

    def __init__(self, max_entries_per_run: int = DEFAULT_MAX_ENTRIES_PER_RUN) -> None:
        self._logs: Dict[str, Deque[RunLogEntry]] = {}
        self._max = max_entries_per_run
        self._lock = Lock()

    def append(self, run_id: str, entry: RunLogEntry) -> None:
        with self._lock:
            bucket = self._logs.get(run_id)
            if bucket is None:
                bucket = deque(maxlen=self._max)
                self._logs[run_id] = bucket
            bucket.append(entry)

    def list(self, run_id: str) -> List[RunLogEntry]:
        with self._lock:
            return list(self._logs.get(run_id, ()))

    def delete(self, run_id: str) -> None:
        with self._lock:
            self._logs.pop(run_id, None)
