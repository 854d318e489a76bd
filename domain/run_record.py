from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import List, Optional


class RunStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


@dataclass(frozen=True)
class RunCounters:
    total_requests: int = 0
    passed_requests: int = 0
    failed_requests: int = 0
    total_assertions: int = 0
    passed_assertions: int = 0
    failed_assertions: int = 0
    total_duration_ms: int = 0


@dataclass(frozen=True)
class RunResult:
    run_id: str
    team_id: str
    collection_id: str
    status: RunStatus
    started_at: datetime
    iteration_count: int
    delay_between_requests_ms: int = 0
    environment_id: Optional[str] = None
    data_filename: Optional[str] = None
    started_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    counters: RunCounters = field(default_factory=RunCounters)

    def with_status(self, status: RunStatus, completed_at: Optional[datetime] = None) -> "RunResult":
        return replace(
            self,
            status=status,
            completed_at=completed_at if completed_at is not None else self.completed_at,
        )

    def with_counters(self, counters: RunCounters) -> "RunResult":
        return replace(self, counters=counters)


@dataclass(frozen=True)
class RunIteration:
    iteration_number: int
    request_name: str
    request_method: str
    request_url: str
    passed: bool
    response_status: Optional[int] = None
    response_time_ms: Optional[int] = None
    response_size_bytes: Optional[int] = None
    assertion_results: Optional[str] = None  # JSON 配列
    error_message: Optional[str] = None


@dataclass(frozen=True)
class RunResultDetail:
    result: RunResult
    iterations: List[RunIteration]
