from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from application.sandbox.sandbox_worker import WorkerOutcome
from application.sandbox.script_sandbox import SCRIPT_EXECUTION, ScriptSandbox
from domain.exceptions import ResourceExhaustedError, ScriptTimeoutError
from domain.script_context import RequestSnapshot, ResponseSnapshot, ScriptContext, ScriptPhase


class MockLogger:
    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []

    def debug(self, event: str, **fields: Any) -> None:
        self.calls.append({"event": event, "level": "debug", **fields})

    def info(self, event: str, **fields: Any) -> None:
        self.calls.append({"event": event, "level": "info", **fields})

    def warning(self, event: str, **fields: Any) -> None:
        self.calls.append({"event": event, "level": "warning", **fields})

    def error(self, event: str, **fields: Any) -> None:
        self.calls.append({"event": event, "level": "error", **fields})

    def bind(self, **fields: Any) -> "MockLogger":
        return self

    def events(self) -> List[str]:
        return [c["event"] for c in self.calls]


class FakeRunner:
    def __init__(self, outcome: Optional[WorkerOutcome] = None, raises: Optional[Exception] = None) -> None:
        self.timeout_sec = 5.0
        self.outcome = outcome
        self.raises = raises
        self.received: List[Dict[str, Any]] = []

    def run(self, source: str, state_json: str) -> WorkerOutcome:
        self.received.append(json.loads(state_json))
        if self.raises is not None:
            raise self.raises
        return self.outcome


def _state(**overrides: Any) -> str:
    state: Dict[str, Any] = {
        "globals": {},
        "collection": {},
        "environment": {},
        "local": {},
        "request": {"url": "https://x.test/", "method": "GET", "headers": {}, "body": None},
        "cancelled": False,
        "assertions": [],
        "console": [],
    }
    state.update(overrides)
    return json.dumps(state)


def _ctx(**kwargs: Any) -> ScriptContext:
    return ScriptContext(
        request=RequestSnapshot(url="https://x.test/", method="GET", headers={"Accept": "*/*"}),
        **kwargs,
    )


def _response() -> ResponseSnapshot:
    return ResponseSnapshot(
        status_code=200,
        status_text="OK",
        headers={"Content-Type": ["application/json"]},
        body='{"id": 1}',
        response_time_ms=12,
    )


class TestRun:
    def test_blank_source_is_a_no_op(self):
        runner = FakeRunner(WorkerOutcome(state_json=_state()))
        sandbox = ScriptSandbox(runner, MockLogger())
        ctx = _ctx(local_vars={"a": "1"})

        result = sandbox.run("   ", ctx, ScriptPhase.PRE_REQUEST)

        assert result is ctx
        assert runner.received == []
        assert ctx.local_vars == {"a": "1"}

    def test_timeout_adds_single_failed_assertion(self):
        logger = MockLogger()
        sandbox = ScriptSandbox(FakeRunner(raises=ScriptTimeoutError("slow")), logger)
        ctx = _ctx()

        sandbox.run("while(true){}", ctx, ScriptPhase.PRE_REQUEST)

        assert len(ctx.assertions) == 1
        assertion = ctx.assertions[0]
        assert assertion.name == SCRIPT_EXECUTION
        assert assertion.passed is False
        assert assertion.message == "Script timed out after 5 seconds"
        assert "script.timeout" in logger.events()

    def test_resource_limit_adds_failed_assertion(self):
        sandbox = ScriptSandbox(FakeRunner(raises=ResourceExhaustedError("oom")), MockLogger())
        ctx = _ctx()

        sandbox.run("var a = []; while(true) a.push(a);", ctx, ScriptPhase.POST_RESPONSE)

        assert [(a.name, a.passed, a.message) for a in ctx.assertions] == [
            (SCRIPT_EXECUTION, False, "Script exceeded resource limits")
        ]

    def test_script_error_keeps_partial_state(self):
        # Arrange
        partial = _state(
            environment={"token": "abc"},
            assertions=[{"name": "before error", "passed": True, "message": None}],
        )
        sandbox = ScriptSandbox(
            FakeRunner(WorkerOutcome(state_json=partial, error_message="ReferenceError: x is not defined")),
            MockLogger(),
        )
        ctx = _ctx()

        # Act
        sandbox.run("pm.environment.set('token', 'abc'); x.y;", ctx, ScriptPhase.PRE_REQUEST)

        # Assert
        assert ctx.environment_vars == {"token": "abc"}
        assert [(a.name, a.passed) for a in ctx.assertions] == [("before error", True), (SCRIPT_EXECUTION, False)]
        assert ctx.assertions[-1].message == "Script error: ReferenceError: x is not defined"

    def test_variable_maps_are_replaced_not_merged(self):
        sandbox = ScriptSandbox(
            FakeRunner(WorkerOutcome(state_json=_state(local={"b": 2}, globals={"g": None}))),
            MockLogger(),
        )
        ctx = _ctx(local_vars={"a": "1"}, collection_vars={"c": "3"})

        sandbox.run("pm.variables.unset('a')", ctx, ScriptPhase.PRE_REQUEST)

        assert ctx.local_vars == {"b": "2"}
        assert ctx.global_vars == {"g": ""}
        assert ctx.collection_vars == {}

    def test_pre_request_reads_back_request_and_cancel(self):
        state = _state(
            request={"url": "https://x.test/v2", "method": "post", "headers": {"X-Sig": 1}, "body": "{}"},
            cancelled=True,
        )
        sandbox = ScriptSandbox(FakeRunner(WorkerOutcome(state_json=state)), MockLogger())
        ctx = _ctx()

        sandbox.run("pm.request.url = '...'", ctx, ScriptPhase.PRE_REQUEST)

        assert ctx.request.url == "https://x.test/v2"
        assert ctx.request.method == "POST"
        assert ctx.request.headers == {"X-Sig": "1"}
        assert ctx.request.body == "{}"
        assert ctx.request_cancelled is True

    def test_post_response_ignores_request_changes(self):
        state = _state(
            request={"url": "https://x.test/other", "method": "DELETE", "headers": {}, "body": "x"},
            cancelled=True,
        )
        sandbox = ScriptSandbox(FakeRunner(WorkerOutcome(state_json=state)), MockLogger())
        ctx = _ctx(response=_response())

        sandbox.run("pm.test('ok', function () {})", ctx, ScriptPhase.POST_RESPONSE)

        assert ctx.request.url == "https://x.test/"
        assert ctx.request.method == "GET"
        assert ctx.request_cancelled is False

    def test_console_is_capped(self):
        sandbox = ScriptSandbox(
            FakeRunner(WorkerOutcome(state_json=_state(console=["one", "two", "three"]))),
            MockLogger(),
        )
        ctx = _ctx(max_console_lines=2)

        sandbox.run("console.log('x')", ctx, ScriptPhase.PRE_REQUEST)

        assert ctx.console == ["one", "two"]

    def test_malformed_state_logs_warning(self):
        logger = MockLogger()
        sandbox = ScriptSandbox(FakeRunner(WorkerOutcome(state_json="{not json")), logger)
        ctx = _ctx(local_vars={"a": "1"})

        sandbox.run("pm.variables.set('a', '2')", ctx, ScriptPhase.PRE_REQUEST)

        assert ctx.local_vars == {"a": "1"}
        assert ctx.assertions == []
        assert "script.read_back_failed" in logger.events()

    def test_missing_scope_is_malformed(self):
        logger = MockLogger()
        sandbox = ScriptSandbox(FakeRunner(WorkerOutcome(state_json=json.dumps({"globals": {}}))), logger)
        ctx = _ctx()

        sandbox.run("1", ctx, ScriptPhase.PRE_REQUEST)

        assert "script.read_back_failed" in logger.events()


class TestSerialize:
    def test_pre_request_state_has_no_response(self):
        runner = FakeRunner(WorkerOutcome(state_json=_state()))
        sandbox = ScriptSandbox(runner, MockLogger())
        ctx = _ctx(environment_vars={"e": "1"}, response=_response(), max_console_lines=10)
        ctx.console.extend(["earlier"] * 3)

        sandbox.run("1", ctx, ScriptPhase.PRE_REQUEST)

        sent = runner.received[0]
        assert sent["phase"] == "prerequest"
        assert sent["environment"] == {"e": "1"}
        assert sent["request"]["headers"] == {"Accept": "*/*"}
        assert sent["response"] is None
        assert sent["maxConsoleLines"] == 7

    def test_post_response_state_has_response(self):
        runner = FakeRunner(WorkerOutcome(state_json=_state()))
        sandbox = ScriptSandbox(runner, MockLogger())

        sandbox.run("1", _ctx(response=_response()), ScriptPhase.POST_RESPONSE)

        sent = runner.received[0]
        assert sent["phase"] == "test"
        assert sent["response"] == {
            "code": 200,
            "status": "OK",
            "headers": {"Content-Type": ["application/json"]},
            "body": '{"id": 1}',
            "responseTime": 12,
        }
