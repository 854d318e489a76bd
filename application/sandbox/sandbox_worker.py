# application/sandbox/sandbox_worker.py
"""
子プロセスで JS を評価する。

- 親は Pipe で結果を待ち、期限（timeout + grace）を過ぎたら子プロセスを kill する
- 子の中では V8 側の timeout / メモリ上限が先に効く
- 子に渡すのはソースと JSON 文字列だけ（ホスト側オブジェクトは一切渡さない）
"""
from __future__ import annotations

import multiprocessing
import re
from dataclasses import dataclass
from typing import Optional

from py_mini_racer import JSEvalException, JSOOMException, JSTimeoutException, MiniRacer

from application.sandbox.pm_prelude import build_bootstrap
from domain.exceptions import ResourceExhaustedError, ScriptTimeoutError

_ERROR_LINE = re.compile(r"\b((?:[A-Z][A-Za-z]*)?Error(?:: [^\n]*)?)")

KIND_OK = "ok"
KIND_ERROR = "error"
KIND_TIMEOUT = "timeout"
KIND_MEMORY = "memory"


@dataclass(frozen=True)
class WorkerOutcome:
    state_json: Optional[str]
    error_message: Optional[str] = None


def _error_message(exc: BaseException) -> str:
    text = str(exc).strip()
    m = _ERROR_LINE.search(text)
    if m:
        return m.group(1).strip()
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return type(exc).__name__


def _evaluate(conn, source: str, state_json: str, timeout_sec: float, memory_limit_bytes: int) -> None:
    result: dict
    ctx: Optional[MiniRacer] = None
    try:
        ctx = MiniRacer()
        ctx.eval(build_bootstrap(state_json))
        try:
            ctx.eval(source, timeout_sec=timeout_sec, max_memory=memory_limit_bytes)
        except (JSTimeoutException, JSOOMException):
            raise
        except JSEvalException as exc:
            # 例外前の pm.test / 変数変更は残す
            partial = None
            try:
                partial = ctx.eval("__courier.dump()")
            except JSEvalException:
                partial = None
            result = {"kind": KIND_ERROR, "message": _error_message(exc), "state": partial}
        else:
            result = {"kind": KIND_OK, "state": ctx.eval("__courier.dump()")}
    except JSTimeoutException:
        result = {"kind": KIND_TIMEOUT}
    except JSOOMException:
        result = {"kind": KIND_MEMORY}
    except Exception as exc:
        result = {"kind": KIND_ERROR, "message": _error_message(exc), "state": None}
    finally:
        # 結果の送信前に V8 を閉じる
        if ctx is not None:
            ctx.close()

    try:
        conn.send(result)
    finally:
        conn.close()


class SandboxProcessRunner:
    def __init__(
        self,
        timeout_sec: float = 5.0,
        kill_grace_sec: float = 2.0,
        memory_limit_bytes: int = 64 * 1024 * 1024,
    ):
        self.timeout_sec = timeout_sec
        self._grace = kill_grace_sec
        self._memory = memory_limit_bytes
        self._mp = multiprocessing.get_context("spawn")

    def run(self, source: str, state_json: str) -> WorkerOutcome:
        parent_conn, child_conn = self._mp.Pipe(duplex=False)
        proc = self._mp.Process(
            target=_evaluate,
            args=(child_conn, source, state_json, self.timeout_sec, self._memory),
            daemon=True,
        )
        proc.start()
        child_conn.close()

        result: Optional[dict] = None
        try:
            if parent_conn.poll(self.timeout_sec + self._grace):
                try:
                    result = parent_conn.recv()
                except EOFError:
                    # 子が結果を送らずに終了した（V8 のクラッシュ、OOM killer など）
                    result = {"kind": KIND_MEMORY}
        finally:
            parent_conn.close()
            if result is not None:
                proc.join(timeout=self._grace)
            if proc.is_alive():
                proc.kill()
                proc.join(timeout=self._grace)

        if result is None:
            raise ScriptTimeoutError(f"Script timed out after {self.timeout_sec:g} seconds")

        kind = result.get("kind")
        if kind == KIND_TIMEOUT:
            raise ScriptTimeoutError(f"Script timed out after {self.timeout_sec:g} seconds")
        if kind == KIND_MEMORY:
            raise ResourceExhaustedError("Script exceeded resource limits")
        if kind == KIND_ERROR:
            return WorkerOutcome(state_json=result.get("state"), error_message=result.get("message") or "unknown error")
        return WorkerOutcome(state_json=result.get("state"))
