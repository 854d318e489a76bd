# application/executor/http_proxy_executor.py
from __future__ import annotations

import hashlib
import time
import uuid
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Dict, List, Optional, Tuple, Union
from urllib.parse import urlencode, urljoin

from requests.structures import CaseInsensitiveDict

from application.http_trace import HttpResponseMeta, HttpTrace
from application.http_trace_emitter import HttpTraceEmitter
from application.ports.history_recorder import HistoryRecorderPort
from application.ports.http_client import HttpClientPort, HttpResponse
from application.ports.logger import LoggerPort
from application.ports.workspace_reader import WorkspaceReaderPort
from application.services.auth_resolver import AuthResolver
from application.services.body_builder import RequestBodyBuilder
from application.services.engine_settings import EngineSettings
from application.services.variable_resolver import VariableResolver
from application.trace_enrichers.core import HttpCoreTraceLogger
from application.trace_enrichers.html_signals import HtmlSignalLogger
from domain.exceptions import NotFoundError, RequestConnectionError, RequestTimeoutError, ValidationError
from domain.history import HistoryEntry
from domain.proxy import HttpMethod, ProxyRequestSpec, ProxyResponse
from domain.variables import ScopeSources

TRUNCATION_MARKER = "\n... [truncated]"
MAX_REDIRECTS_EXCEEDED = "Max redirects exceeded"


def status_text_for(code: int, reason: Optional[str] = None) -> str:
    if reason:
        return reason
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return "Unknown"


def append_query_params(url: str, params: Dict[str, str]) -> str:
    if not params:
        return url
    separator = "&" if "?" in url else "?"
    return url + separator + urlencode(params)


def truncate_text(text: Optional[str], max_bytes: int) -> Optional[str]:
    if text is None:
        return None
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode("utf-8", errors="ignore") + TRUNCATION_MARKER


class HttpProxyExecutor:
    """
    ProxyRequestSpec -> HTTP 呼び出し -> ProxyResponse。

    - リダイレクトは HTTP クライアントに任せず手動で追う（Location を chain に記録）
    - タイムアウト / 接続エラー等は例外にせず status 0 の ProxyResponse で返す
    - 履歴保存はバックグラウンドで行い、失敗してもレスポンスには影響させない
    """

    def __init__(
        self,
        http_client: HttpClientPort,
        variables: VariableResolver,
        auth: AuthResolver,
        workspace: WorkspaceReaderPort,
        settings: EngineSettings,
        logger: LoggerPort,
        history: Optional[HistoryRecorderPort] = None,
        history_pool: Optional[Executor] = None,
    ):
        self._http = http_client
        self._variables = variables
        self._auth = auth
        self._workspace = workspace
        self._settings = settings
        self._logger = logger
        self._history = history
        self._history_pool = history_pool or ThreadPoolExecutor(max_workers=2, thread_name_prefix="history")
        self._bodies = RequestBodyBuilder(variables)
        self._trace = HttpTraceEmitter([
            HttpCoreTraceLogger(),
            HtmlSignalLogger(),
        ])

    @property
    def auth_resolver(self) -> AuthResolver:
        return self._auth

    def execute(
        self,
        spec: ProxyRequestSpec,
        sources: ScopeSources,
        user_id: Optional[str] = None,
        logger: Optional[LoggerPort] = None,
        request_id: Optional[str] = None,
    ) -> ProxyResponse:
        log = logger or self._logger
        if not spec.url or not spec.url.strip():
            raise ValidationError("URL must not be empty")

        variables = self._variables.build_variable_map(sources)
        url = (self._variables.resolve_with(spec.url, variables) or "").strip()

        headers: CaseInsensitiveDict = CaseInsensitiveDict()
        headers["User-Agent"] = self._settings.user_agent
        for h in spec.headers:
            if not h.enabled or not h.key:
                continue
            key = self._variables.resolve_with(h.key, variables)
            headers[key] = self._variables.resolve_with(h.value, variables) or ""

        resolved_auth = self._auth.resolve_with(spec.auth, variables)
        # auth ヘッダが優先
        headers.update(resolved_auth.headers)
        url = append_query_params(url, resolved_auth.query_params)

        built = self._bodies.build(spec.body, variables)
        if built.content_type and (built.force_content_type or "Content-Type" not in headers):
            headers["Content-Type"] = built.content_type

        timeout_ms = self._settings.clamp_timeout_ms(spec.timeout_ms)
        chain: List[str] = []
        final_url = url
        started = time.perf_counter()

        def elapsed() -> int:
            return int((time.perf_counter() - started) * 1000)

        send_headers = dict(headers)
        try:
            resp, final_url, exceeded = self._send_following(
                spec.method,
                url,
                send_headers,
                built.content,
                timeout_ms / 1000.0,
                spec.follow_redirects,
                chain,
                log,
            )
        except RequestTimeoutError:
            return self._failure(f"Request timed out after {timeout_ms}ms", elapsed(), chain, spec, url, log)
        except RequestConnectionError as e:
            return self._failure(f"Connection error: {e}", elapsed(), chain, spec, url, log)
        except InterruptedError:
            return self._failure("Request interrupted", elapsed(), chain, spec, url, log)
        except Exception as e:
            return self._failure(f"Request failed: {e}", elapsed(), chain, spec, url, log)

        duration_ms = elapsed()
        size = resp.size_bytes
        body = truncate_text(resp.text, self._settings.max_response_body_bytes)
        content_type = resp.first_header("Content-Type")
        status_text = MAX_REDIRECTS_EXCEEDED if exceeded else status_text_for(resp.status, resp.reason)

        self._emit_trace(spec, url, send_headers, built.content, timeout_ms, chain, duration_ms, resp, final_url, status_text, content_type, log)

        history_id: Optional[str] = None
        if spec.save_to_history and self._history is not None:
            history_id = self._submit_history(
                HistoryEntry(
                    id=uuid.uuid4().hex,
                    team_id=sources.team_id,
                    user_id=user_id,
                    method=spec.method.value,
                    url=url,
                    request_headers=send_headers,
                    request_body=built.content if isinstance(built.content, str) else None,
                    response_status=resp.status,
                    response_headers=resp.headers,
                    response_body=truncate_text(body, self._settings.history_body_truncate_bytes),
                    response_size_bytes=size,
                    response_time_ms=duration_ms,
                    content_type=content_type,
                    created_at=datetime.now(timezone.utc),
                    environment_id=sources.environment_id,
                    collection_id=sources.collection_id,
                    request_id=request_id,
                ),
                log,
            )

        return ProxyResponse(
            status_code=resp.status,
            status_text=status_text,
            response_headers=resp.headers,
            response_body=body,
            response_time_ms=duration_ms,
            response_size_bytes=size,
            content_type=content_type,
            redirect_chain=chain,
            history_id=history_id,
        )

    def execute_stored_request(
        self,
        request_id: str,
        team_id: str,
        user_id: Optional[str] = None,
        environment_id: Optional[str] = None,
        logger: Optional[LoggerPort] = None,
    ) -> ProxyResponse:
        request = self._workspace.get_request(request_id)
        folder = self._workspace.get_folder(request.folder_id) if request is not None else None
        collection = self._workspace.get_collection(folder.collection_id) if folder is not None else None
        if request is None or collection is None or collection.team_id != team_id:
            raise NotFoundError(f"Request not found: {request_id}")

        spec = ProxyRequestSpec(
            method=HttpMethod.parse(request.method),
            url=request.url,
            headers=[h for h in request.headers if h.enabled],
            body=request.body,
            auth=self._auth.resolve_inherited(request, collection.id),
            environment_id=environment_id,
            collection_id=collection.id,
            save_to_history=True,
            follow_redirects=True,
        )
        sources = ScopeSources(team_id=team_id, collection_id=collection.id, environment_id=environment_id)
        return self.execute(spec, sources, user_id=user_id, logger=logger, request_id=request.id)

    def _send_following(
        self,
        method: HttpMethod,
        url: str,
        headers: Dict[str, str],
        body: Optional[Union[str, bytes]],
        timeout_sec: float,
        follow: bool,
        chain: List[str],
        log: LoggerPort,
    ) -> Tuple[HttpResponse, str, bool]:
        resp = self._http.send(method.value, url, headers, body, timeout_sec)
        current = url
        hops = 0
        while follow and 300 <= resp.status < 400:
            location = resp.first_header("Location")
            if not location:
                break
            if hops >= self._settings.max_redirects:
                log.warning("http.redirect_limit", url=current, max_redirects=self._settings.max_redirects)
                return resp, current, True
            chain.append(location)
            current = urljoin(current, location)
            hops += 1
            log.debug("http.redirect", hop=hops, status=resp.status, location=location, next_url=current)
            # 同じメソッド・ボディで再送する
            resp = self._http.send(method.value, current, headers, body, timeout_sec)
        return resp, current, False

    def _failure(
        self,
        status_text: str,
        elapsed_ms: int,
        chain: List[str],
        spec: ProxyRequestSpec,
        url: str,
        log: LoggerPort,
    ) -> ProxyResponse:
        log.error("http.failed", method=spec.method.value, url=url, status_text=status_text, elapsed_ms=elapsed_ms)
        return ProxyResponse(
            status_code=0,
            status_text=status_text,
            response_headers={},
            response_body=None,
            response_time_ms=elapsed_ms,
            response_size_bytes=0,
            content_type=None,
            redirect_chain=list(chain),
        )

    def _submit_history(self, entry: HistoryEntry, log: LoggerPort) -> str:
        history = self._history

        def _record() -> None:
            try:
                history.record(entry)
            except Exception as e:
                log.error("history.record_failed", history_id=entry.id, error=str(e))

        try:
            self._history_pool.submit(_record)
        except RuntimeError as e:
            # プールが shutdown 済み
            log.error("history.record_failed", history_id=entry.id, error=str(e))
        return entry.id

    def _emit_trace(
        self,
        spec: ProxyRequestSpec,
        url: str,
        headers: Dict[str, str],
        body: Optional[Union[str, bytes]],
        timeout_ms: int,
        chain: List[str],
        elapsed_ms: int,
        resp: HttpResponse,
        final_url: str,
        status_text: str,
        content_type: Optional[str],
        log: LoggerPort,
    ) -> None:
        raw = resp.content if resp.content is not None else (resp.text or "").encode("utf-8", errors="replace")
        trace = HttpTrace(
            method=spec.method.value,
            url=url,
            request_headers=headers,
            request_body_len=len(body) if body is not None else 0,
            follow_redirects=spec.follow_redirects,
            timeout_ms=timeout_ms,
            redirect_chain=list(chain),
            elapsed_ms=elapsed_ms,
            response=HttpResponseMeta(
                status=resp.status,
                status_text=status_text,
                url=final_url,
                headers=resp.headers,
                content_type=content_type,
                body_len=len(raw),
                body_sha256=hashlib.sha256(raw).hexdigest(),
            ),
            text_head=(resp.text or "")[:200],
            full_text=resp.text or "",
        )
        self._trace.emit(trace, log)
