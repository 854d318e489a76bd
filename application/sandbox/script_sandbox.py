# application/sandbox/script_sandbox.py
from __future__ import annotations

import json
from typing import Any, Dict, Optional, Protocol

from application.ports.logger import LoggerPort
from application.sandbox.sandbox_worker import SandboxProcessRunner, WorkerOutcome
from domain.exceptions import ResourceExhaustedError, ScriptTimeoutError
from domain.script_context import ScriptContext, ScriptPhase

SCRIPT_EXECUTION = "Script execution"


class ScriptRunnerPort(Protocol):
    timeout_sec: float

    def run(self, source: str, state_json: str) -> WorkerOutcome:
        ...


def _string_map(raw: Any) -> Dict[str, str]:
    if not isinstance(raw, dict):
        raise ValueError("variable scope is not an object")
    return {str(k): "" if v is None else str(v) for k, v in raw.items()}


class ScriptSandbox:
    """
    pre-request / post-response スクリプトを隔離環境で実行し、結果を ScriptContext に書き戻す。

    - タイムアウト / リソース超過 / スクリプト例外はすべて "Script execution" の失敗アサーションになる
    - 書き戻しは全置換（スクリプト側の最終状態が正）
    - 書き戻しに失敗しても warning ログのみ
    """

    def __init__(self, runner: ScriptRunnerPort, logger: LoggerPort):
        self._runner = runner
        self._logger = logger

    @classmethod
    def with_process_runner(
        cls,
        logger: LoggerPort,
        timeout_sec: float,
        kill_grace_sec: float,
        memory_limit_bytes: int,
    ) -> "ScriptSandbox":
        return cls(
            SandboxProcessRunner(
                timeout_sec=timeout_sec,
                kill_grace_sec=kill_grace_sec,
                memory_limit_bytes=memory_limit_bytes,
            ),
            logger,
        )

    def run(
        self,
        source: Optional[str],
        ctx: ScriptContext,
        phase: ScriptPhase,
        logger: Optional[LoggerPort] = None,
    ) -> ScriptContext:
        if not source or not source.strip():
            return ctx

        log = logger or self._logger
        log.debug("script.start", phase=phase.value, source_len=len(source))

        try:
            outcome = self._runner.run(source, self._serialize(ctx, phase))
        except ScriptTimeoutError:
            message = f"Script timed out after {self._runner.timeout_sec:g} seconds"
            log.warning("script.timeout", phase=phase.value, timeout_sec=self._runner.timeout_sec)
            ctx.add_assertion(SCRIPT_EXECUTION, False, message)
            return ctx
        except ResourceExhaustedError as e:
            log.warning("script.resource_exhausted", phase=phase.value, error=str(e))
            ctx.add_assertion(SCRIPT_EXECUTION, False, "Script exceeded resource limits")
            return ctx

        if outcome.state_json:
            self._read_back(outcome.state_json, ctx, phase, log)

        if outcome.error_message is not None:
            log.warning("script.error", phase=phase.value, error=outcome.error_message)
            ctx.add_assertion(SCRIPT_EXECUTION, False, f"Script error: {outcome.error_message}")

        return ctx

    def _serialize(self, ctx: ScriptContext, phase: ScriptPhase) -> str:
        state: Dict[str, Any] = {
            "phase": phase.value,
            "maxConsoleLines": max(ctx.max_console_lines - len(ctx.console), 0),
            "globals": ctx.global_vars,
            "collection": ctx.collection_vars,
            "environment": ctx.environment_vars,
            "local": ctx.local_vars,
            "request": {
                "url": ctx.request.url,
                "method": ctx.request.method,
                "headers": ctx.request.headers,
                "body": ctx.request.body,
            },
            "response": None,
        }
        if phase == ScriptPhase.POST_RESPONSE and ctx.response is not None:
            r = ctx.response
            state["response"] = {
                "code": r.status_code,
                "status": r.status_text,
                "headers": r.headers,
                "body": r.body,
                "responseTime": r.response_time_ms,
            }
        return json.dumps(state, ensure_ascii=False)

    def _read_back(self, state_json: str, ctx: ScriptContext, phase: ScriptPhase, log: LoggerPort) -> None:
        try:
            state = json.loads(state_json)
            global_vars = _string_map(state["globals"])
            collection_vars = _string_map(state["collection"])
            environment_vars = _string_map(state["environment"])
            local_vars = _string_map(state["local"])
            request = state.get("request") or {}
            cancelled = bool(state.get("cancelled", False))
            assertions = list(state.get("assertions") or [])
            console = [str(line) for line in state.get("console") or []]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            log.warning("script.read_back_failed", phase=phase.value, error=str(e))
            return

        ctx.global_vars = global_vars
        ctx.collection_vars = collection_vars
        ctx.environment_vars = environment_vars
        ctx.local_vars = local_vars

        if phase == ScriptPhase.PRE_REQUEST:
            ctx.request.url = str(request.get("url") or "")
            ctx.request.method = str(request.get("method") or ctx.request.method).upper()
            headers = request.get("headers")
            if isinstance(headers, dict):
                ctx.request.headers = {str(k): "" if v is None else str(v) for k, v in headers.items()}
            body = request.get("body")
            ctx.request.body = None if body is None else str(body)
            if cancelled:
                ctx.request_cancelled = True

        for item in assertions:
            if not isinstance(item, dict):
                continue
            message = item.get("message")
            ctx.add_assertion(
                str(item.get("name", "")),
                bool(item.get("passed", False)),
                None if message is None else str(message),
            )

        for line in console:
            if not ctx.add_console_line(line):
                break
            log.debug("script.console", phase=phase.value, line=line)
