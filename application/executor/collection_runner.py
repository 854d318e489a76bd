# application/executor/collection_runner.py
from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set, Tuple

from application.executor.http_proxy_executor import HttpProxyExecutor
from application.ports.logger import LoggerPort
from application.ports.run_repository import RunResultRepositoryPort
from application.ports.workspace_reader import WorkspaceReaderPort
from application.sandbox.script_sandbox import ScriptSandbox
from application.services.cancellation_registry import CancellationRegistry
from application.services.data_file_parser import DataFileParser, DataRow
from application.services.engine_settings import EngineSettings
from application.services.variable_resolver import VariableResolver
from domain.exceptions import NotFoundError, RunStateError, ValidationError
from domain.proxy import HttpMethod, ProxyRequestSpec, ProxyResponse
from domain.run import RunSpec
from domain.run_record import RunCounters, RunIteration, RunResult, RunResultDetail, RunStatus
from domain.script_context import (
    AssertionResult,
    RequestSnapshot,
    ResponseSnapshot,
    ScriptContext,
    ScriptPhase,
    VariableState,
)
from domain.variables import ScopeSources
from domain.workspace import Collection, Folder, KeyValueEntry, Request

SKIPPED_MESSAGE = "Skipped by pre-request script"


@dataclass
class _Tally:
    total_requests: int = 0
    passed_requests: int = 0
    failed_requests: int = 0
    total_assertions: int = 0
    passed_assertions: int = 0
    failed_assertions: int = 0
    total_duration_ms: int = 0
    any_failed: bool = False

    def add_assertions(self, assertions: List[AssertionResult]) -> None:
        passed = sum(1 for a in assertions if a.passed)
        self.total_assertions += len(assertions)
        self.passed_assertions += passed
        self.failed_assertions += len(assertions) - passed

    def to_counters(self) -> RunCounters:
        return RunCounters(
            total_requests=self.total_requests,
            passed_requests=self.passed_requests,
            failed_requests=self.failed_requests,
            total_assertions=self.total_assertions,
            passed_assertions=self.passed_assertions,
            failed_assertions=self.failed_assertions,
            total_duration_ms=self.total_duration_ms,
        )


@dataclass(frozen=True)
class _RunTarget:
    collection: Collection
    requests: List[Request]


def _serialize_assertions(assertions: List[AssertionResult]) -> Optional[str]:
    if not assertions:
        return None
    return json.dumps([a.to_dict() for a in assertions], ensure_ascii=False)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CollectionRunner:
    """
    コレクション全体を反復実行する。

    - リクエストは 1 本ずつ順番に実行（前のリクエストの変数変更を次が使う）
    - 1 リクエストの失敗で run を止めない（失敗 iteration として記録して続行）
    - キャンセルは協調的：リクエストの合間にフラグを確認する
    """

    def __init__(
        self,
        workspace: WorkspaceReaderPort,
        executor: HttpProxyExecutor,
        sandbox: ScriptSandbox,
        variables: VariableResolver,
        data_parser: DataFileParser,
        repository: RunResultRepositoryPort,
        cancellations: CancellationRegistry,
        settings: EngineSettings,
        logger: LoggerPort,
        sleeper: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._workspace = workspace
        self._executor = executor
        self._sandbox = sandbox
        self._variables = variables
        self._parser = data_parser
        self._repository = repository
        self._cancellations = cancellations
        self._settings = settings
        self._logger = logger
        self._sleep = sleeper
        self._now = clock

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------

    def start_run(self, spec: RunSpec, logger: Optional[LoggerPort] = None) -> RunResultDetail:
        run, rows = self.create_run(spec)
        return self.execute_run(run, spec, rows, logger=logger)

    def create_run(self, spec: RunSpec, run_id: Optional[str] = None) -> Tuple[RunResult, List[DataRow]]:
        """
        Validate, parse the data file and persist a RUNNING record.
        The cancellation flag is registered here so cancel works before the loop starts.
        """
        self._require_collection(spec.collection_id, spec.team_id)
        if spec.iteration_count > self._settings.max_iterations:
            raise ValidationError(f"iteration_count must be <= {self._settings.max_iterations}")
        if spec.delay_between_requests_ms > self._settings.max_delay_ms:
            raise ValidationError(f"delay_between_requests_ms must be <= {self._settings.max_delay_ms}")

        rows: List[DataRow] = []
        if spec.data_content and spec.data_content.strip():
            rows = self._parser.parse(spec.data_content, spec.data_filename)

        iterations = max(spec.iteration_count, 1, len(rows))
        if iterations > self._settings.max_iterations:
            raise ValidationError(
                f"Data file has {len(rows)} rows; iterations must be <= {self._settings.max_iterations}"
            )
        run = RunResult(
            run_id=run_id or uuid.uuid4().hex,
            team_id=spec.team_id,
            collection_id=spec.collection_id,
            status=RunStatus.RUNNING,
            started_at=self._now(),
            iteration_count=iterations,
            delay_between_requests_ms=spec.delay_between_requests_ms,
            environment_id=spec.environment_id,
            data_filename=spec.data_filename,
            started_by=spec.user_id,
        )
        self._repository.create(run)
        self._cancellations.register(run.run_id)
        return run, rows

    def execute_run(
        self,
        run: RunResult,
        spec: RunSpec,
        rows: List[DataRow],
        logger: Optional[LoggerPort] = None,
    ) -> RunResultDetail:
        log = (logger or self._logger).bind(run_id=run.run_id, collection_id=run.collection_id)
        tally = _Tally()
        cancelled = False

        try:
            target = _RunTarget(
                collection=self._require_collection(spec.collection_id, spec.team_id),
                requests=self.collect_requests_in_order(spec.collection_id),
            )
            log.info(
                "run.start",
                iterations=run.iteration_count,
                requests=len(target.requests),
                data_rows=len(rows),
            )
            cancelled = self._run_iterations(run, spec, rows, target, tally, log)
        except Exception as e:
            # iteration の外で起きた想定外の例外でも RUNNING のまま残さない
            log.error("run.crashed", error=str(e))
            tally.any_failed = True
        finally:
            self._cancellations.unregister(run.run_id)

        return self._finalize(run, tally, cancelled, log)

    # ------------------------------------------------------------------
    # queries / control
    # ------------------------------------------------------------------

    def get_run_result(self, run_id: str, team_id: str) -> RunResult:
        return self._require_run(run_id, team_id)

    def get_run_result_detail(self, run_id: str, team_id: str) -> RunResultDetail:
        run = self._require_run(run_id, team_id)
        return RunResultDetail(result=run, iterations=self._repository.list_iterations(run_id))

    def list_run_results(self, collection_id: str, team_id: str) -> List[RunResult]:
        return [r for r in self._repository.list_by_collection(collection_id) if r.team_id == team_id]

    def cancel_run(self, run_id: str, team_id: str, logger: Optional[LoggerPort] = None) -> RunResult:
        log = logger or self._logger
        run = self._require_run(run_id, team_id)
        if run.status != RunStatus.RUNNING:
            raise ValidationError("Can only cancel a running collection run")

        self._cancellations.cancel(run_id)
        try:
            updated = self._repository.transition_status(
                run_id,
                RunStatus.RUNNING,
                RunStatus.CANCELLED,
                completed_at=self._now(),
            )
        except RunStateError:
            # ループ側が先に終端状態にした
            raise ValidationError("Can only cancel a running collection run") from None
        log.info("run.cancel_requested", run_id=run_id, collection_id=run.collection_id)
        return updated

    def delete_run_result(self, run_id: str, team_id: str, logger: Optional[LoggerPort] = None) -> None:
        log = logger or self._logger
        self._require_run(run_id, team_id)
        self._repository.delete(run_id)
        log.info("run.deleted", run_id=run_id)

    # ------------------------------------------------------------------
    # traversal
    # ------------------------------------------------------------------

    def collect_requests_in_order(self, collection_id: str) -> List[Request]:
        """
        Depth-first: a folder's own requests, then its subfolders, each in sort order.
        """
        out: List[Request] = []
        visited: Set[str] = set()

        def visit(folder: Folder, depth: int) -> None:
            if folder.id in visited or depth > self._settings.max_folder_depth:
                return
            visited.add(folder.id)
            out.extend(self._workspace.list_folder_requests(folder.id))
            for sub in self._workspace.list_subfolders(folder.id):
                visit(sub, depth + 1)

        for root in self._workspace.list_root_folders(collection_id):
            visit(root, 1)
        return out

    def folder_chain(self, request: Request) -> List[Folder]:
        """
        Innermost first.
        """
        chain: List[Folder] = []
        visited: Set[str] = set()
        folder_id: Optional[str] = request.folder_id
        while folder_id and folder_id not in visited and len(chain) < self._settings.max_folder_depth:
            visited.add(folder_id)
            folder = self._workspace.get_folder(folder_id)
            if folder is None:
                break
            chain.append(folder)
            folder_id = folder.parent_id
        return chain

    @staticmethod
    def iteration_row(rows: List[DataRow], index: int) -> DataRow:
        if not rows:
            return {}
        return rows[index % len(rows)]

    # ------------------------------------------------------------------
    # loop
    # ------------------------------------------------------------------

    def _run_iterations(
        self,
        run: RunResult,
        spec: RunSpec,
        rows: List[DataRow],
        target: _RunTarget,
        tally: _Tally,
        log: LoggerPort,
    ) -> bool:
        """
        Returns True when the run was cancelled.
        """
        requests = target.requests
        total_steps = run.iteration_count * len(requests)
        step = 0

        for iteration in range(run.iteration_count):
            # 各 iteration はデータ行だけを local に持って始まる
            state = VariableState.seeded(self.iteration_row(rows, iteration))

            for request in requests:
                if self._cancellations.is_cancelled(run.run_id):
                    log.info("run.cancelled", iteration=iteration + 1, request_name=request.name)
                    return True

                step += 1
                state = self._run_request(run, spec, target.collection, request, iteration + 1, state, tally, log)
                self._repository.update_counters(run.run_id, tally.to_counters())

                if spec.delay_between_requests_ms > 0 and step < total_steps:
                    self._sleep(spec.delay_between_requests_ms / 1000.0)

        return self._cancellations.is_cancelled(run.run_id)

    def _run_request(
        self,
        run: RunResult,
        spec: RunSpec,
        collection: Collection,
        request: Request,
        iteration_number: int,
        state: VariableState,
        tally: _Tally,
        log: LoggerPort,
    ) -> VariableState:
        tally.total_requests += 1
        rlog = log.bind(iteration=iteration_number, request_name=request.name)
        rlog.info("request.start", method=request.method, url=request.url)

        pre = ScriptContext.from_state(
            state,
            RequestSnapshot(
                url=request.url,
                method=request.method,
                headers={h.key: h.value or "" for h in request.headers if h.enabled},
                body=request.body.raw_content if request.body is not None else None,
            ),
            max_console_lines=self._settings.script_max_console_lines,
        )

        try:
            chain = self.folder_chain(request)
            self._run_pre_scripts(pre, collection, chain, request, rlog)

            if pre.request_cancelled:
                rlog.info("request.skipped")
                self._record(
                    run,
                    RunIteration(
                        iteration_number=iteration_number,
                        request_name=request.name,
                        request_method=request.method,
                        request_url=request.url,
                        passed=True,
                        error_message=SKIPPED_MESSAGE,
                    ),
                )
                return pre.variable_state()

            sources = ScopeSources(
                team_id=spec.team_id,
                collection_id=spec.collection_id,
                environment_id=spec.environment_id,
                local=pre.merged_variables(),
            )
            resolved_url = self._variables.resolve(pre.request.url, sources) or ""
            response = self._executor.execute(self._build_spec(request, pre, collection, spec), sources, user_id=spec.user_id, logger=rlog)

            post = ScriptContext.from_state(
                pre.variable_state(),
                replace(pre.request),
                response=ResponseSnapshot(
                    status_code=response.status_code,
                    status_text=response.status_text,
                    headers=response.response_headers,
                    body=response.response_body,
                    response_time_ms=response.response_time_ms,
                ),
                max_console_lines=self._settings.script_max_console_lines,
            )
            post.console.extend(pre.console)
            self._run_post_scripts(post, collection, chain, request, rlog)
        except Exception as e:
            rlog.warning("request.failed", error=str(e))
            tally.failed_requests += 1
            tally.any_failed = True
            self._record(
                run,
                RunIteration(
                    iteration_number=iteration_number,
                    request_name=request.name,
                    request_method=request.method,
                    request_url=request.url,
                    passed=False,
                    error_message=f"Execution error: {e}",
                ),
            )
            return pre.variable_state()

        return self._complete(run, request, iteration_number, resolved_url, response, pre, post, tally, rlog)

    def _complete(
        self,
        run: RunResult,
        request: Request,
        iteration_number: int,
        resolved_url: str,
        response: ProxyResponse,
        pre: ScriptContext,
        post: ScriptContext,
        tally: _Tally,
        log: LoggerPort,
    ) -> VariableState:
        assertions = list(pre.assertions) + list(post.assertions)
        http_ok = response.is_http_ok
        passed = http_ok and all(a.passed for a in assertions)

        if passed:
            tally.passed_requests += 1
        else:
            tally.failed_requests += 1
            tally.any_failed = True
        tally.add_assertions(assertions)
        tally.total_duration_ms += response.response_time_ms

        self._record(
            run,
            RunIteration(
                iteration_number=iteration_number,
                request_name=request.name,
                request_method=pre.request.method,
                request_url=resolved_url,
                passed=passed,
                response_status=response.status_code,
                response_time_ms=response.response_time_ms,
                response_size_bytes=response.response_size_bytes,
                assertion_results=_serialize_assertions(assertions),
                error_message=None if http_ok else response.status_text,
            ),
        )
        log.info(
            "request.end",
            status=response.status_code,
            passed=passed,
            assertions=len(assertions),
            elapsed_ms=response.response_time_ms,
        )
        return post.variable_state()

    # ------------------------------------------------------------------
    # scripts
    # ------------------------------------------------------------------

    def _run_pre_scripts(
        self,
        ctx: ScriptContext,
        collection: Collection,
        chain: List[Folder],
        request: Request,
        log: LoggerPort,
    ) -> None:
        # collection -> folder (outermost first) -> request
        sources = [collection.pre_request_script]
        sources.extend(f.pre_request_script for f in reversed(chain))
        sources.append(request.pre_request_script)
        for source in sources:
            if ctx.request_cancelled:
                return
            self._sandbox.run(source, ctx, ScriptPhase.PRE_REQUEST, logger=log)

    def _run_post_scripts(
        self,
        ctx: ScriptContext,
        collection: Collection,
        chain: List[Folder],
        request: Request,
        log: LoggerPort,
    ) -> None:
        # request -> folder (innermost first) -> collection
        sources = [request.post_response_script]
        sources.extend(f.post_response_script for f in chain)
        sources.append(collection.post_response_script)
        for source in sources:
            self._sandbox.run(source, ctx, ScriptPhase.POST_RESPONSE, logger=log)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _build_spec(
        self,
        request: Request,
        ctx: ScriptContext,
        collection: Collection,
        spec: RunSpec,
    ) -> ProxyRequestSpec:
        body = request.body
        if body is not None:
            # raw 系はスクリプトで書き換えられた body を使う
            body = replace(body, raw_content=ctx.request.body)
        return ProxyRequestSpec(
            method=HttpMethod.parse(ctx.request.method),
            url=ctx.request.url,
            headers=[KeyValueEntry(key=k, value=v) for k, v in ctx.request.headers.items()],
            body=body,
            auth=self._executor.auth_resolver.resolve_inherited(request, collection.id),
            environment_id=spec.environment_id,
            collection_id=spec.collection_id,
            save_to_history=False,
            follow_redirects=True,
        )

    def _record(self, run: RunResult, iteration: RunIteration) -> None:
        self._repository.append_iteration(run.run_id, iteration)

    def _finalize(self, run: RunResult, tally: _Tally, cancelled: bool, log: LoggerPort) -> RunResultDetail:
        if cancelled:
            final_status = RunStatus.CANCELLED
        else:
            final_status = RunStatus.FAILED if tally.any_failed else RunStatus.COMPLETED

        try:
            self._repository.update_counters(run.run_id, tally.to_counters())
        except RunStateError:
            # 実行中に delete_run_result された
            log.warning("run.record_missing", status=final_status.value)
            gone = run.with_counters(tally.to_counters()).with_status(final_status, completed_at=self._now())
            return RunResultDetail(result=gone, iterations=[])

        try:
            updated = self._repository.transition_status(
                run.run_id,
                RunStatus.RUNNING,
                final_status,
                completed_at=self._now(),
            )
        except RunStateError:
            # cancel_run が先に CANCELLED にしている
            updated = self._repository.get(run.run_id) or run

        log.info(
            "run.end",
            status=updated.status.value,
            total_requests=tally.total_requests,
            passed_requests=tally.passed_requests,
            failed_requests=tally.failed_requests,
            total_assertions=tally.total_assertions,
            passed_assertions=tally.passed_assertions,
        )
        return RunResultDetail(result=updated, iterations=self._repository.list_iterations(run.run_id))

    def _require_collection(self, collection_id: str, team_id: str) -> Collection:
        collection = self._workspace.get_collection(collection_id)
        if collection is None or collection.team_id != team_id:
            raise NotFoundError(f"Collection not found: {collection_id}")
        return collection

    def _require_run(self, run_id: str, team_id: str) -> RunResult:
        run = self._repository.get(run_id)
        if run is None or run.team_id != team_id:
            raise NotFoundError(f"Run result not found: {run_id}")
        return run
