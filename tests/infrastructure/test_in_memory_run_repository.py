from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from domain.exceptions import RunStateError
from domain.run_record import RunCounters, RunIteration, RunResult, RunStatus
from infrastructure.run.in_memory_run_repository import InMemoryRunResultRepository

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _run(run_id: str, started_at: datetime = T0, collection_id: str = "c1") -> RunResult:
    return RunResult(
        run_id=run_id,
        team_id="t1",
        collection_id=collection_id,
        status=RunStatus.RUNNING,
        started_at=started_at,
        iteration_count=1,
    )


def _iteration(n: int) -> RunIteration:
    return RunIteration(iteration_number=n, request_name="r", request_method="GET", request_url="u", passed=True)


class TestInMemoryRunResultRepository:
    def test_create_and_get(self):
        repo = InMemoryRunResultRepository()
        repo.create(_run("r1"))

        assert repo.get("r1").status == RunStatus.RUNNING
        assert repo.get("missing") is None

    def test_create_twice(self):
        repo = InMemoryRunResultRepository()
        repo.create(_run("r1"))

        with pytest.raises(RunStateError):
            repo.create(_run("r1"))

    def test_update_counters_never_changes_status(self):
        repo = InMemoryRunResultRepository()
        repo.create(_run("r1"))
        repo.transition_status("r1", RunStatus.RUNNING, RunStatus.CANCELLED, completed_at=T0)

        updated = repo.update_counters("r1", RunCounters(total_requests=2))

        assert updated.status == RunStatus.CANCELLED
        assert repo.get("r1").counters.total_requests == 2

    def test_transition_requires_expected_status(self):
        repo = InMemoryRunResultRepository()
        repo.create(_run("r1"))
        repo.transition_status("r1", RunStatus.RUNNING, RunStatus.COMPLETED, completed_at=T0)

        with pytest.raises(RunStateError, match="Invalid run transition"):
            repo.transition_status("r1", RunStatus.RUNNING, RunStatus.CANCELLED)
        assert repo.get("r1").status == RunStatus.COMPLETED
        assert repo.get("r1").completed_at == T0

    def test_iterations_keep_order(self):
        repo = InMemoryRunResultRepository()
        repo.create(_run("r1"))
        repo.append_iteration("r1", _iteration(1))
        repo.append_iteration("r1", _iteration(2))

        assert [i.iteration_number for i in repo.list_iterations("r1")] == [1, 2]

    def test_missing_run(self):
        repo = InMemoryRunResultRepository()

        with pytest.raises(RunStateError):
            repo.update_counters("missing", RunCounters())
        with pytest.raises(RunStateError):
            repo.append_iteration("missing", _iteration(1))
        assert repo.list_iterations("missing") == []

    def test_list_by_collection_newest_first(self):
        repo = InMemoryRunResultRepository()
        repo.create(_run("old", T0))
        repo.create(_run("new", T0 + timedelta(minutes=1)))
        repo.create(_run("other", T0, collection_id="c2"))

        assert [r.run_id for r in repo.list_by_collection("c1")] == ["new", "old"]

    def test_delete(self):
        repo = InMemoryRunResultRepository()
        repo.create(_run("r1"))
        repo.append_iteration("r1", _iteration(1))

        repo.delete("r1")

        assert repo.get("r1") is None
        assert repo.list_iterations("r1") == []
