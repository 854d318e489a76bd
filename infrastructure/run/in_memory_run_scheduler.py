from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from threading import Lock
from typing import Callable, Dict, Optional

from application.ports.run_scheduler import RunSchedulerPort


class InMemoryRunScheduler(RunSchedulerPort):
    def __init__(self, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="collection-run")
        self._lock = Lock()
        self._futures: Dict[str, Future] = {}

    def submit(self, run_id: str, task: Callable[[], object]) -> Future:
        with self._lock:
            future = self._executor.submit(task)
            self._futures[run_id] = future
            return future

    def wait(self, run_id: str, timeout_sec: float) -> bool:
        future = self.get_future(run_id)
        if future is None:
            return False
        try:
            future.result(timeout=timeout_sec)
        except FutureTimeout:
            return False
        except Exception:
            # タスク側の例外は run レコードに反映済み
            return future.done()
        return True

    def get_future(self, run_id: str) -> Optional[Future]:
        with self._lock:
            return self._futures.get(run_id)

    def forget(self, run_id: str) -> None:
        with self._lock:
            self._futures.pop(run_id, None)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
