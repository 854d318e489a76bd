# application/services/cancellation_registry.py
from __future__ import annotations

from threading import Event, Lock
from typing import Dict


class CancellationRegistry:
    """
    run_id -> threading.Event。
    ループ側は is_cancelled を読み、cancel は別スレッド（API）から呼ばれる。
    """

    def __init__(self) -> None:
        self._flags: Dict[str, Event] = {}
        self._lock = Lock()

    def register(self, run_id: str) -> Event:
        with self._lock:
            flag = self._flags.get(run_id)
            if flag is None:
                flag = Event()
                self._flags[run_id] = flag
            return flag

    def cancel(self, run_id: str) -> bool:
        """
        Returns False when no run with this id is registered.
        """
        with self._lock:
            flag = self._flags.get(run_id)
        if flag is None:
            return False
        flag.set()
        return True

    def is_cancelled(self, run_id: str) -> bool:
        with self._lock:
            flag = self._flags.get(run_id)
        return flag is not None and flag.is_set()

    def unregister(self, run_id: str) -> None:
        with self._lock:
            self._flags.pop(run_id, None)
