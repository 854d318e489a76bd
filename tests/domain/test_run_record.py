from datetime import datetime, timezone

from domain.run_record import RunCounters, RunResult, RunStatus


def _run() -> RunResult:
    return RunResult(
        run_id="r1",
        team_id="t1",
        collection_id="c1",
        status=RunStatus.RUNNING,
        started_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        iteration_count=1,
    )


class TestRunStatus:
    def test_terminal_states(self):
        assert RunStatus.RUNNING.is_terminal is False
        assert RunStatus.COMPLETED.is_terminal
        assert RunStatus.FAILED.is_terminal
        assert RunStatus.CANCELLED.is_terminal


class TestRunResult:
    def test_with_status_sets_completed_at(self):
        done_at = datetime(2024, 1, 1, 0, 1, tzinfo=timezone.utc)

        updated = _run().with_status(RunStatus.COMPLETED, completed_at=done_at)

        assert updated.status == RunStatus.COMPLETED
        assert updated.completed_at == done_at

    def test_with_status_keeps_previous_completed_at(self):
        done_at = datetime(2024, 1, 1, 0, 1, tzinfo=timezone.utc)
        cancelled = _run().with_status(RunStatus.CANCELLED, completed_at=done_at)

        assert cancelled.with_status(RunStatus.CANCELLED).completed_at == done_at

    def test_with_counters_keeps_status(self):
        run = _run().with_status(RunStatus.CANCELLED)

        updated = run.with_counters(RunCounters(total_requests=3, passed_requests=2, failed_requests=1))

        assert updated.status == RunStatus.CANCELLED
        assert updated.counters.total_requests == 3
        assert run.counters.total_requests == 0
