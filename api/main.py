"""FastAPI アプリケーション - REST API エンドポイント"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
import os
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import Body, FastAPI, Header, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import sys

# プロジェクトルートをPythonパスに追加
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from infrastructure.config.env_settings import load_settings
from infrastructure.history.in_memory_history_store import InMemoryHistoryStore
from infrastructure.logging.console_logger import ConsoleLogger
from infrastructure.logging.composite_logger import CompositeLogger
from infrastructure.logging.run_log_logger import RunLogLogger
from infrastructure.run.in_memory_run_log_store import InMemoryRunLogStore
from infrastructure.run.in_memory_run_repository import InMemoryRunResultRepository
from infrastructure.run.in_memory_run_scheduler import InMemoryRunScheduler
from infrastructure.workspace import InMemoryWorkspaceStore, WorkspaceLoaderRegistry
from application.ports.logger import LoggerPort
from application.ports.requests_client import RequestsSessionHttpClient
from application.executor.collection_runner import CollectionRunner
from application.executor.http_proxy_executor import HttpProxyExecutor
from application.sandbox.script_sandbox import ScriptSandbox
from application.services.auth_resolver import AuthResolver
from application.services.cancellation_registry import CancellationRegistry
from application.services.data_file_parser import DataFileParser
from application.services.graphql_service import GraphQLService
from application.services.variable_resolver import VariableResolver
from domain.exceptions import NotFoundError, ValidationError
from domain.graphql import GraphQLQuery, GraphQLResult
from domain.proxy import HttpMethod, ProxyRequestSpec, ProxyResponse
from domain.run import RunSpec
from domain.run_record import RunIteration, RunResult, RunResultDetail
from domain.variables import ScopeSources
from domain.workspace import AuthSpec, AuthType, BodyType, KeyValueEntry, RequestBody


# リクエストモデル
class HeaderEntryModel(BaseModel):
    """ヘッダ 1 件"""
    key: str = Field(description="Header name")
    value: str = Field(default="", description="Header value ({{var}} allowed)")
    enabled: bool = Field(default=True, description="Disabled headers are not sent")


class BodyModel(BaseModel):
    """リクエストボディ"""
    type: BodyType = Field(default=BodyType.NONE, description="Body type")
    raw: Optional[str] = Field(default=None, description="Raw content for RAW_* types")
    form_data: Optional[str] = Field(default=None, description="k=v&k2=v2 for form types")
    graphql_query: Optional[str] = Field(default=None, description="GraphQL query")
    graphql_variables: Optional[str] = Field(default=None, description="GraphQL variables (JSON)")
    graphql_operation_name: Optional[str] = Field(default=None, description="GraphQL operationName")
    binary_file_name: Optional[str] = Field(default=None, description="Binary file name (not sent)")


class AuthModel(BaseModel):
    """認証設定"""
    type: AuthType = Field(default=AuthType.NO_AUTH, description="Auth type")
    api_key_header: Optional[str] = None
    api_key_value: Optional[str] = None
    api_key_add_to: Optional[str] = Field(default=None, description="'header' or 'query'")
    bearer_token: Optional[str] = None
    basic_username: Optional[str] = None
    basic_password: Optional[str] = None
    oauth2_grant_type: Optional[str] = None
    oauth2_access_token: Optional[str] = None
    jwt_token: Optional[str] = None


class ProxyRequestModel(BaseModel):
    """アドホック送信リクエスト"""
    method: str = Field(default="GET", description="HTTP method")
    url: str = Field(description="Target URL ({{var}} allowed)")
    headers: List[HeaderEntryModel] = Field(default_factory=list, description="Request headers")
    body: Optional[BodyModel] = Field(default=None, description="Request body")
    auth: Optional[AuthModel] = Field(default=None, description="Auth settings")
    environment_id: Optional[str] = Field(default=None, description="Environment for variables")
    collection_id: Optional[str] = Field(default=None, description="Collection for variables")
    save_to_history: bool = Field(default=False, description="Record a history entry")
    timeout_ms: Optional[int] = Field(default=None, description="Timeout (clamped)")
    follow_redirects: bool = Field(default=True, description="Follow 3xx Location manually")


class GraphQLExecuteModel(BaseModel):
    """GraphQL 実行リクエスト"""
    url: str = Field(description="GraphQL endpoint")
    query: str = Field(description="Query / mutation")
    variables: Optional[str] = Field(default=None, description="Variables (JSON string)")
    operation_name: Optional[str] = Field(default=None, description="operationName")
    headers: List[HeaderEntryModel] = Field(default_factory=list)
    auth: Optional[AuthModel] = None
    environment_id: Optional[str] = None


class GraphQLIntrospectModel(BaseModel):
    """GraphQL introspection リクエスト"""
    url: str = Field(description="GraphQL endpoint")
    headers: List[HeaderEntryModel] = Field(default_factory=list)
    auth: Optional[AuthModel] = None


class GraphQLQueryTextModel(BaseModel):
    query: Optional[str] = Field(default=None, description="GraphQL query text")


class StartRunModel(BaseModel):
    """コレクションラン開始リクエスト"""
    environment_id: Optional[str] = Field(default=None, description="Environment id")
    iteration_count: int = Field(default=1, ge=1, description="Requested iterations")
    delay_between_requests_ms: int = Field(default=0, ge=0, description="Delay between requests")
    data_filename: Optional[str] = Field(default=None, description="Data file name (.csv / .json)")
    data_content: Optional[str] = Field(default=None, description="Data file content")


# レスポンスモデル
class ProxyResponseModel(BaseModel):
    status_code: int = Field(description="HTTP status (0 = not executed)")
    status_text: str = Field(description="Reason phrase or failure description")
    response_headers: Dict[str, List[str]] = Field(description="Response headers")
    response_body: Optional[str] = Field(default=None, description="Body (may be truncated)")
    response_time_ms: int = Field(description="Elapsed time")
    response_size_bytes: int = Field(description="Raw body size")
    content_type: Optional[str] = None
    redirect_chain: List[str] = Field(default_factory=list, description="Followed Location values")
    history_id: Optional[str] = None


class GraphQLResponseModel(BaseModel):
    http_response: ProxyResponseModel
    graphql_schema: Optional[str] = Field(default=None, description="Introspected __schema (JSON)")


class GraphQLValidateResponse(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)


class GraphQLFormatResponse(BaseModel):
    query: Optional[str] = None


class RunIterationModel(BaseModel):
    iteration_number: int
    request_name: str
    request_method: str
    request_url: str
    passed: bool
    response_status: Optional[int] = None
    response_time_ms: Optional[int] = None
    response_size_bytes: Optional[int] = None
    assertion_results: Optional[str] = Field(default=None, description="JSON array")
    error_message: Optional[str] = None


class RunResultModel(BaseModel):
    run_id: str
    collection_id: str
    status: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    iteration_count: int
    delay_between_requests_ms: int
    environment_id: Optional[str] = None
    data_filename: Optional[str] = None
    started_by: Optional[str] = None
    total_requests: int
    passed_requests: int
    failed_requests: int
    total_assertions: int
    passed_assertions: int
    failed_assertions: int
    total_duration_ms: int


class RunResultDetailModel(BaseModel):
    result: RunResultModel
    iterations: List[RunIterationModel]


class RunAcceptedResponse(BaseModel):
    """Accepted response for async execution"""
    run_id: str = Field(description="Run identifier")
    status: str = Field(description="Run status")
    links: Dict[str, str] = Field(description="Related resources")


class RunLogEntryResponse(BaseModel):
    """Async run log entry"""
    timestamp: datetime = Field(description="Log timestamp")
    event: str = Field(description="Log event name")
    level: str = Field(description="Log level")
    fields: Dict[str, Any] = Field(description="Log payload")


@dataclass(frozen=True)
class EngineComponents:
    executor: HttpProxyExecutor
    graphql: GraphQLService
    runner: CollectionRunner


# FastAPIアプリケーション
app = FastAPI(
    title="Courier Engine",
    description="API リクエスト実行・スクリプト・コレクションランのエンジン",
    version="0.1.0"
)

# 設定
SETTINGS = load_settings()
WORKSPACE = InMemoryWorkspaceStore()
HTTP_CLIENT = RequestsSessionHttpClient()
HISTORY_STORE = InMemoryHistoryStore()
HISTORY_POOL = ThreadPoolExecutor(max_workers=2, thread_name_prefix="history")
RUN_REPOSITORY = InMemoryRunResultRepository()
RUN_LOG_STORE = InMemoryRunLogStore()
RUN_SCHEDULER = InMemoryRunScheduler()
CANCELLATIONS = CancellationRegistry()
MAX_WAIT_SEC = 30
DEFAULT_TEAM_ID = "default"


def _load_workspace() -> None:
    workspace_file = os.environ.get("COURIER_WORKSPACE_FILE")
    if not workspace_file:
        return
    path = Path(workspace_file)
    loader = WorkspaceLoaderRegistry().get_loader(path)
    loader.load_from_file(path, WORKSPACE)
    ConsoleLogger().info("workspace.loaded", path=str(path), collections=len(WORKSPACE.list_collections()))


_load_workspace()


@app.get("/")
def read_root():
    """ヘルスチェック"""
    return {"status": "ok", "service": "courier-engine"}


def _build_logger(run_id: str) -> CompositeLogger:
    return CompositeLogger(
        [
            ConsoleLogger(),
            RunLogLogger(run_id=run_id, log_store=RUN_LOG_STORE),
        ]
    )


def _build_components(logger: LoggerPort) -> EngineComponents:
    variables = VariableResolver(WORKSPACE)
    auth = AuthResolver(variables, WORKSPACE, max_folder_depth=SETTINGS.max_folder_depth)
    executor = HttpProxyExecutor(
        http_client=HTTP_CLIENT,
        variables=variables,
        auth=auth,
        workspace=WORKSPACE,
        settings=SETTINGS,
        logger=logger,
        history=HISTORY_STORE,
        history_pool=HISTORY_POOL,
    )
    sandbox = ScriptSandbox.with_process_runner(
        logger,
        timeout_sec=SETTINGS.script_timeout_sec,
        kill_grace_sec=SETTINGS.script_kill_grace_sec,
        memory_limit_bytes=SETTINGS.script_memory_limit_bytes,
    )
    runner = CollectionRunner(
        workspace=WORKSPACE,
        executor=executor,
        sandbox=sandbox,
        variables=variables,
        data_parser=DataFileParser(),
        repository=RUN_REPOSITORY,
        cancellations=CANCELLATIONS,
        settings=SETTINGS,
        logger=logger,
    )
    return EngineComponents(executor=executor, graphql=GraphQLService(executor, logger), runner=runner)


def _team(team_id: Optional[str]) -> str:
    return team_id or DEFAULT_TEAM_ID


def _to_headers(items: List[HeaderEntryModel]) -> List[KeyValueEntry]:
    return [KeyValueEntry(key=h.key, value=h.value, enabled=h.enabled) for h in items]


def _to_body(model: Optional[BodyModel]) -> Optional[RequestBody]:
    if model is None:
        return None
    return RequestBody(
        body_type=model.type,
        raw_content=model.raw,
        form_data=model.form_data,
        graphql_query=model.graphql_query,
        graphql_variables=model.graphql_variables,
        graphql_operation_name=model.graphql_operation_name,
        binary_file_name=model.binary_file_name,
    )


def _to_auth(model: Optional[AuthModel]) -> Optional[AuthSpec]:
    if model is None:
        return None
    return AuthSpec(
        auth_type=model.type,
        api_key_header=model.api_key_header,
        api_key_value=model.api_key_value,
        api_key_add_to=model.api_key_add_to,
        bearer_token=model.bearer_token,
        basic_username=model.basic_username,
        basic_password=model.basic_password,
        oauth2_grant_type=model.oauth2_grant_type,
        oauth2_access_token=model.oauth2_access_token,
        jwt_token=model.jwt_token,
    )


def _proxy_response(r: ProxyResponse) -> ProxyResponseModel:
    return ProxyResponseModel(
        status_code=r.status_code,
        status_text=r.status_text,
        response_headers=r.response_headers,
        response_body=r.response_body,
        response_time_ms=r.response_time_ms,
        response_size_bytes=r.response_size_bytes,
        content_type=r.content_type,
        redirect_chain=list(r.redirect_chain),
        history_id=r.history_id,
    )


def _graphql_response(r: GraphQLResult) -> GraphQLResponseModel:
    return GraphQLResponseModel(http_response=_proxy_response(r.http_response), graphql_schema=r.schema)


def _run_result(r: RunResult) -> RunResultModel:
    c = r.counters
    return RunResultModel(
        run_id=r.run_id,
        collection_id=r.collection_id,
        status=r.status.value,
        started_at=r.started_at,
        completed_at=r.completed_at,
        iteration_count=r.iteration_count,
        delay_between_requests_ms=r.delay_between_requests_ms,
        environment_id=r.environment_id,
        data_filename=r.data_filename,
        started_by=r.started_by,
        total_requests=c.total_requests,
        passed_requests=c.passed_requests,
        failed_requests=c.failed_requests,
        total_assertions=c.total_assertions,
        passed_assertions=c.passed_assertions,
        failed_assertions=c.failed_assertions,
        total_duration_ms=c.total_duration_ms,
    )


def _run_iteration(i: RunIteration) -> RunIterationModel:
    return RunIterationModel(
        iteration_number=i.iteration_number,
        request_name=i.request_name,
        request_method=i.request_method,
        request_url=i.request_url,
        passed=i.passed,
        response_status=i.response_status,
        response_time_ms=i.response_time_ms,
        response_size_bytes=i.response_size_bytes,
        assertion_results=i.assertion_results,
        error_message=i.error_message,
    )


def _run_detail(d: RunResultDetail) -> RunResultDetailModel:
    return RunResultDetailModel(
        result=_run_result(d.result),
        iterations=[_run_iteration(i) for i in d.iterations],
    )


def _build_run_links(run_id: str) -> Dict[str, str]:
    return {
        "self": f"/runs/{run_id}",
        "detail": f"/runs/{run_id}/detail",
        "cancel": f"/runs/{run_id}/cancel",
        "logs": f"/runs/{run_id}/logs",
    }


@app.post("/proxy/send", response_model=ProxyResponseModel)
def send_request(
    request: ProxyRequestModel = Body(...),
    x_team_id: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
) -> ProxyResponseModel:
    """
    アドホックにリクエストを送信する。
    タイムアウトや接続エラーは status_code=0 のレスポンスとして返る。
    """
    team_id = _team(x_team_id)
    logger = ConsoleLogger().bind(team_id=team_id)
    try:
        spec = ProxyRequestSpec(
            method=HttpMethod.parse(request.method),
            url=request.url,
            headers=_to_headers(request.headers),
            body=_to_body(request.body),
            auth=_to_auth(request.auth),
            environment_id=request.environment_id,
            collection_id=request.collection_id,
            save_to_history=request.save_to_history,
            timeout_ms=request.timeout_ms,
            follow_redirects=request.follow_redirects,
        )
        sources = ScopeSources(
            team_id=team_id,
            collection_id=request.collection_id,
            environment_id=request.environment_id,
        )
        response = _build_components(logger).executor.execute(spec, sources, user_id=x_user_id)
        return _proxy_response(response)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/proxy/requests/{request_id}/send", response_model=ProxyResponseModel)
def send_stored_request(
    request_id: str,
    environment_id: Optional[str] = Query(default=None),
    x_team_id: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
) -> ProxyResponseModel:
    team_id = _team(x_team_id)
    logger = ConsoleLogger().bind(team_id=team_id, request_id=request_id)
    try:
        response = _build_components(logger).executor.execute_stored_request(
            request_id,
            team_id,
            user_id=x_user_id,
            environment_id=environment_id,
        )
        return _proxy_response(response)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.post("/graphql/execute", response_model=GraphQLResponseModel)
def execute_graphql(
    request: GraphQLExecuteModel = Body(...),
    x_team_id: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
) -> GraphQLResponseModel:
    team_id = _team(x_team_id)
    logger = ConsoleLogger().bind(team_id=team_id)
    try:
        result = _build_components(logger).graphql.execute_query(
            GraphQLQuery(
                url=request.url,
                query=request.query,
                variables=request.variables,
                operation_name=request.operation_name,
                headers=_to_headers(request.headers),
                auth=_to_auth(request.auth),
                environment_id=request.environment_id,
            ),
            team_id,
            user_id=x_user_id,
        )
        return _graphql_response(result)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/graphql/introspect", response_model=GraphQLResponseModel)
def introspect_graphql(
    request: GraphQLIntrospectModel = Body(...),
    x_team_id: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
) -> GraphQLResponseModel:
    team_id = _team(x_team_id)
    logger = ConsoleLogger().bind(team_id=team_id)
    try:
        result = _build_components(logger).graphql.introspect(
            request.url,
            team_id,
            user_id=x_user_id,
            headers=_to_headers(request.headers),
            auth=_to_auth(request.auth),
        )
        return _graphql_response(result)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/graphql/validate", response_model=GraphQLValidateResponse)
def validate_graphql(request: GraphQLQueryTextModel = Body(...)) -> GraphQLValidateResponse:
    errors = GraphQLService.validate_query(request.query)
    return GraphQLValidateResponse(valid=not errors, errors=errors)


@app.post("/graphql/format", response_model=GraphQLFormatResponse)
def format_graphql(request: GraphQLQueryTextModel = Body(...)) -> GraphQLFormatResponse:
    return GraphQLFormatResponse(query=GraphQLService.format_query(request.query))


def _execute_async_run(runner: CollectionRunner, run: RunResult, spec: RunSpec, rows, logger: LoggerPort) -> None:
    # execute_run は例外を外に出さず、終端状態まで必ず進める
    runner.execute_run(run, spec, rows, logger=logger)


@app.post("/collections/{collection_id}/runs", response_model=RunResultDetailModel)
def start_collection_run(
    collection_id: str,
    request: StartRunModel = Body(...),
    wait_sec: Optional[int] = Query(default=None, ge=0),
    x_team_id: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
):
    """
    コレクションランを開始する

    Args:
        collection_id: コレクションID
        request: 反復回数・遅延・データファイル
        wait_sec: 指定秒数まで完了を待つ。完了しなければ 202 を返す

    Returns:
        完了していれば run の詳細、そうでなければ run_id とリンク
    """
    team_id = _team(x_team_id)
    if wait_sec is not None and wait_sec > MAX_WAIT_SEC:
        raise HTTPException(
            status_code=400,
            detail=f"wait_sec must be <= {MAX_WAIT_SEC}",
        )

    run_id = uuid4().hex
    logger = _build_logger(run_id)
    runner = _build_components(logger).runner

    try:
        spec = RunSpec(
            collection_id=collection_id,
            team_id=team_id,
            user_id=x_user_id,
            environment_id=request.environment_id,
            iteration_count=request.iteration_count,
            delay_between_requests_ms=request.delay_between_requests_ms,
            data_filename=request.data_filename,
            data_content=request.data_content,
        )
        run, rows = runner.create_run(spec, run_id=run_id)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    RUN_SCHEDULER.submit(
        run.run_id,
        lambda: _execute_async_run(runner, run, spec, rows, logger),
    )

    if wait_sec and RUN_SCHEDULER.wait(run.run_id, wait_sec):
        return _run_detail(runner.get_run_result_detail(run.run_id, team_id))

    accepted = RunAcceptedResponse(
        run_id=run.run_id,
        status=run.status.value,
        links=_build_run_links(run.run_id),
    )
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=accepted.model_dump(),
    )


@app.get("/collections/{collection_id}/runs", response_model=List[RunResultModel])
def list_collection_runs(
    collection_id: str,
    x_team_id: Optional[str] = Header(default=None),
) -> List[RunResultModel]:
    runner = _build_components(ConsoleLogger()).runner
    return [_run_result(r) for r in runner.list_run_results(collection_id, _team(x_team_id))]


@app.get("/runs/{run_id}", response_model=RunResultModel)
def get_run(run_id: str, x_team_id: Optional[str] = Header(default=None)) -> RunResultModel:
    runner = _build_components(ConsoleLogger()).runner
    try:
        return _run_result(runner.get_run_result(run_id, _team(x_team_id)))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.get("/runs/{run_id}/detail", response_model=RunResultDetailModel)
def get_run_detail(run_id: str, x_team_id: Optional[str] = Header(default=None)) -> RunResultDetailModel:
    runner = _build_components(ConsoleLogger()).runner
    try:
        return _run_detail(runner.get_run_result_detail(run_id, _team(x_team_id)))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.post("/runs/{run_id}/cancel", response_model=RunResultModel)
def cancel_run(run_id: str, x_team_id: Optional[str] = Header(default=None)) -> RunResultModel:
    logger = _build_logger(run_id)
    runner = _build_components(logger).runner
    try:
        return _run_result(runner.cancel_run(run_id, _team(x_team_id)))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.delete("/runs/{run_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_run(run_id: str, x_team_id: Optional[str] = Header(default=None)) -> None:
    runner = _build_components(ConsoleLogger()).runner
    try:
        runner.delete_run_result(run_id, _team(x_team_id))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    RUN_LOG_STORE.delete(run_id)
    RUN_SCHEDULER.forget(run_id)


@app.get("/runs/{run_id}/logs", response_model=List[RunLogEntryResponse])
def get_run_logs(run_id: str, x_team_id: Optional[str] = Header(default=None)) -> List[RunLogEntryResponse]:
    record = RUN_REPOSITORY.get(run_id)
    if record is None or record.team_id != _team(x_team_id):
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")
    entries = RUN_LOG_STORE.list(run_id)
    return [
        RunLogEntryResponse(
            timestamp=entry.timestamp,
            event=entry.event,
            level=entry.level,
            fields=entry.fields,
        )
        for entry in entries
    ]
