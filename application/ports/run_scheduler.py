from __future__ import annotations

from abc import ABC, abstractmethod
from concurrent.futures import Future
from typing import Callable, Optional


class RunSchedulerPort(ABC):
    """
    Runs collection runs off the request thread, one task per run id.
    """

    @abstractmethod
    def submit(self, run_id: str, task: Callable[[], object]) -> Future:
        ...

    @abstractmethod
    def wait(self, run_id: str, timeout_sec: float) -> bool:
        """
        True when the run's task finished within timeout_sec.
        """
        ...

    @abstractmethod
    def get_future(self, run_id: str) -> Optional[Future]:
        ...

    @abstractmethod
    def forget(self, run_id: str) -> None:
        ...
