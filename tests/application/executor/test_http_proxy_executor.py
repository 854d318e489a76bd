from __future__ import annotations

from typing import Any, Dict, List

import pytest

from application.executor.http_proxy_executor import (
    MAX_REDIRECTS_EXCEEDED,
    TRUNCATION_MARKER,
    HttpProxyExecutor,
    append_query_params,
    status_text_for,
    truncate_text,
)
from application.services.auth_resolver import AuthResolver
from application.services.engine_settings import EngineSettings
from application.services.variable_resolver import VariableResolver
from domain.exceptions import NotFoundError, RequestConnectionError, RequestTimeoutError, ValidationError
from domain.history import HistoryEntry
from domain.proxy import HttpMethod, ProxyRequestSpec
from domain.variables import ScopeSources
from domain.workspace import (
    AuthSpec,
    AuthType,
    BodyType,
    Collection,
    Folder,
    KeyValueEntry,
    Request,
    RequestBody,
    VariableEntry,
)
from infrastructure.history.in_memory_history_store import InMemoryHistoryStore
from infrastructure.workspace import InMemoryWorkspaceStore
from fake_http_client import FakeHttpClient, ok, redirect


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


class InlinePool:
    """submit した関数をその場で実行する"""

    def submit(self, fn, *args, **kwargs):
        fn(*args, **kwargs)


class FailingHistory:
    def record(self, entry: HistoryEntry) -> None:
        raise RuntimeError("disk full")


def _store() -> InMemoryWorkspaceStore:
    store = InMemoryWorkspaceStore()
    store.set_global_variables("team1", [VariableEntry(key="host", value="https://api.example.com")])
    store.set_environment_variables("env1", [VariableEntry(key="token", value="env-token")])
    return store


def _executor(
    client: FakeHttpClient,
    store: InMemoryWorkspaceStore | None = None,
    settings: EngineSettings | None = None,
    logger: MockLogger | None = None,
    history=None,
) -> HttpProxyExecutor:
    store = store or _store()
    variables = VariableResolver(store)
    return HttpProxyExecutor(
        http_client=client,
        variables=variables,
        auth=AuthResolver(variables, store),
        workspace=store,
        settings=settings or EngineSettings(),
        logger=logger or MockLogger(),
        history=history,
        history_pool=InlinePool(),
    )


def _spec(url: str, **kwargs) -> ProxyRequestSpec:
    return ProxyRequestSpec(method=kwargs.pop("method", HttpMethod.GET), url=url, **kwargs)


SOURCES = ScopeSources(team_id="team1", environment_id="env1")


class TestHelpers:
    def test_status_text_prefers_reason(self):
        assert status_text_for(200, "Everything Fine") == "Everything Fine"

    def test_status_text_falls_back_to_phrase(self):
        assert status_text_for(404) == "Not Found"

    def test_status_text_unknown_code(self):
        assert status_text_for(799) == "Unknown"

    def test_append_query_params(self):
        assert append_query_params("https://x.test/a", {"k": "v"}) == "https://x.test/a?k=v"
        assert append_query_params("https://x.test/a?p=1", {"k": "v w"}) == "https://x.test/a?p=1&k=v+w"
        assert append_query_params("https://x.test/a", {}) == "https://x.test/a"

    def test_truncate_text(self):
        assert truncate_text("short", 10) == "short"
        assert truncate_text("x" * 20, 10) == "x" * 10 + TRUNCATION_MARKER
        assert truncate_text(None, 10) is None


class TestExecute:
    def test_resolves_variables_and_sets_default_headers(self):
        # Arrange
        client = FakeHttpClient().on("GET", "https://api.example.com/users", ok("https://api.example.com/users", "[]"))
        executor = _executor(client)

        # Act
        response = executor.execute(
            _spec(
                "{{host}}/users",
                headers=[
                    KeyValueEntry(key="X-Token", value="{{token}}"),
                    KeyValueEntry(key="X-Disabled", value="1", enabled=False),
                ],
            ),
            SOURCES,
        )

        # Assert
        assert response.status_code == 200
        assert response.status_text == "OK"
        sent = client.sent[0]
        assert sent.headers["X-Token"] == "env-token"
        assert sent.headers["User-Agent"] == EngineSettings().user_agent
        assert "X-Disabled" not in sent.headers

    def test_auth_header_overrides_explicit_header(self):
        client = FakeHttpClient().on("GET", "https://x.test/", ok("https://x.test/"))
        executor = _executor(client)

        executor.execute(
            _spec(
                "https://x.test/",
                headers=[KeyValueEntry(key="authorization", value="Bearer manual")],
                auth=AuthSpec(auth_type=AuthType.BEARER_TOKEN, bearer_token="{{token}}"),
            ),
            SOURCES,
        )

        headers = client.sent[0].headers
        auth_values = [v for k, v in headers.items() if k.lower() == "authorization"]
        assert auth_values == ["Bearer env-token"]

    def test_api_key_in_query_is_appended_to_url(self):
        client = FakeHttpClient().on("GET", "https://x.test/a?p=1&api_key=k1", ok("https://x.test/a"))
        executor = _executor(client)

        response = executor.execute(
            _spec(
                "https://x.test/a?p=1",
                auth=AuthSpec(auth_type=AuthType.API_KEY, api_key_header="api_key", api_key_value="k1", api_key_add_to="query"),
            ),
            SOURCES,
        )

        assert response.status_code == 200
        assert client.urls() == ["https://x.test/a?p=1&api_key=k1"]

    def test_raw_json_body_sets_content_type_unless_given(self):
        client = FakeHttpClient()
        executor = _executor(client)
        body = RequestBody(body_type=BodyType.RAW_JSON, raw_content='{"token": "{{token}}"}')

        executor.execute(_spec("https://x.test/", method=HttpMethod.POST, body=body), SOURCES)
        executor.execute(
            _spec(
                "https://x.test/",
                method=HttpMethod.POST,
                body=body,
                headers=[KeyValueEntry(key="Content-Type", value="application/vnd.api+json")],
            ),
            SOURCES,
        )

        assert client.sent[0].headers["Content-Type"] == "application/json"
        assert client.sent[0].body == '{"token": "env-token"}'
        assert client.sent[1].headers["Content-Type"] == "application/vnd.api+json"

    def test_empty_url_is_rejected(self):
        executor = _executor(FakeHttpClient())

        with pytest.raises(ValidationError, match="URL must not be empty"):
            executor.execute(_spec("   "), SOURCES)

    def test_timeout_is_clamped(self):
        client = FakeHttpClient()
        executor = _executor(client)

        executor.execute(_spec("https://x.test/", timeout_ms=10), SOURCES)
        executor.execute(_spec("https://x.test/", timeout_ms=10_000_000), SOURCES)
        executor.execute(_spec("https://x.test/"), SOURCES)

        assert [r.timeout_sec for r in client.sent] == [1.0, 300.0, 30.0]

    def test_reason_phrase_from_server_is_kept(self):
        client = FakeHttpClient().on("POST", "https://x.test/", ok("https://x.test/", status=201, reason="Created Here"))
        executor = _executor(client)

        response = executor.execute(_spec("https://x.test/", method=HttpMethod.POST), SOURCES)

        assert response.status_text == "Created Here"

    def test_error_status_is_returned_as_response(self):
        executor = _executor(FakeHttpClient())

        response = executor.execute(_spec("https://x.test/missing"), SOURCES)

        assert response.status_code == 404
        assert response.status_text == "Not Found"
        assert response.is_http_ok is False


class TestRedirects:
    def test_follows_relative_location(self):
        # Arrange
        client = (
            FakeHttpClient()
            .on("GET", "https://x.test/a/start", redirect("https://x.test/a/start", "/b"))
            .on("GET", "https://x.test/b", ok("https://x.test/b", "done"))
        )
        executor = _executor(client)

        # Act
        response = executor.execute(_spec("https://x.test/a/start"), SOURCES)

        # Assert
        assert response.status_code == 200
        assert response.response_body == "done"
        assert response.redirect_chain == ["/b"]
        assert client.urls() == ["https://x.test/a/start", "https://x.test/b"]

    def test_redirect_keeps_method_and_body(self):
        client = (
            FakeHttpClient()
            .on("POST", "https://x.test/a", redirect("https://x.test/a", "https://y.test/b", status=307))
            .on("POST", "https://y.test/b", ok("https://y.test/b"))
        )
        executor = _executor(client)

        executor.execute(
            _spec(
                "https://x.test/a",
                method=HttpMethod.POST,
                body=RequestBody(body_type=BodyType.RAW_TEXT, raw_content="payload"),
            ),
            SOURCES,
        )

        assert [r.method for r in client.sent] == ["POST", "POST"]
        assert [r.body for r in client.sent] == ["payload", "payload"]

    def test_no_follow_returns_redirect_response(self):
        client = FakeHttpClient().on("GET", "https://x.test/a", redirect("https://x.test/a", "/b"))
        executor = _executor(client)

        response = executor.execute(_spec("https://x.test/a", follow_redirects=False), SOURCES)

        assert response.status_code == 302
        assert response.redirect_chain == []
        assert len(client.sent) == 1

    def test_redirect_limit(self):
        client = FakeHttpClient().on("GET", "https://x.test/loop", redirect("https://x.test/loop", "/loop"))
        logger = MockLogger()
        executor = _executor(client, settings=EngineSettings(max_redirects=2), logger=logger)

        response = executor.execute(_spec("https://x.test/loop"), SOURCES)

        assert response.status_code == 302
        assert response.status_text == MAX_REDIRECTS_EXCEEDED
        assert response.redirect_chain == ["/loop", "/loop"]
        assert len(client.sent) == 3
        assert "http.redirect_limit" in logger.events()


class TestFailures:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (RequestTimeoutError("read timed out"), "Request timed out after 1000ms"),
            (RequestConnectionError("refused"), "Connection error: refused"),
            (InterruptedError(), "Request interrupted"),
            (RuntimeError("boom"), "Request failed: boom"),
        ],
    )
    def test_transport_failures_become_status_zero(self, error, expected):
        client = FakeHttpClient().on("GET", "https://x.test/", error)
        logger = MockLogger()
        executor = _executor(client, logger=logger)

        response = executor.execute(_spec("https://x.test/", timeout_ms=1000), SOURCES)

        assert response.status_code == 0
        assert response.status_text == expected
        assert response.response_body is None
        assert response.response_headers == {}
        assert response.response_size_bytes == 0
        assert "http.failed" in logger.events()

    def test_failure_after_redirect_keeps_chain(self):
        client = (
            FakeHttpClient()
            .on("GET", "https://x.test/a", redirect("https://x.test/a", "https://down.test/"))
            .on("GET", "https://down.test/", RequestConnectionError("refused"))
        )
        executor = _executor(client)

        response = executor.execute(_spec("https://x.test/a"), SOURCES)

        assert response.status_code == 0
        assert response.redirect_chain == ["https://down.test/"]


class TestBodyLimits:
    def test_large_body_is_truncated_but_size_is_real(self):
        client = FakeHttpClient().on("GET", "https://x.test/", ok("https://x.test/", "x" * 20))
        executor = _executor(client, settings=EngineSettings(max_response_body_bytes=10))

        response = executor.execute(_spec("https://x.test/"), SOURCES)

        assert response.response_body == "x" * 10 + TRUNCATION_MARKER
        assert response.response_size_bytes == 20


class TestHistory:
    def test_history_is_recorded_with_returned_id(self):
        # Arrange
        client = FakeHttpClient().on("GET", "https://x.test/", ok("https://x.test/", "hello", headers={"Content-Type": "text/plain"}))
        history = InMemoryHistoryStore()
        executor = _executor(client, history=history)

        # Act
        response = executor.execute(_spec("https://x.test/", save_to_history=True), SOURCES, user_id="u1")

        # Assert
        assert response.history_id is not None
        entry = history.get(response.history_id)
        assert entry is not None
        assert entry.team_id == "team1"
        assert entry.user_id == "u1"
        assert entry.environment_id == "env1"
        assert entry.response_status == 200
        assert entry.response_body == "hello"
        assert entry.content_type == "text/plain"

    def test_no_history_when_not_requested(self):
        history = InMemoryHistoryStore()
        executor = _executor(FakeHttpClient(), history=history)

        response = executor.execute(_spec("https://x.test/"), SOURCES)

        assert response.history_id is None
        assert history.list("team1") == []

    def test_history_failure_does_not_fail_request(self):
        client = FakeHttpClient().on("GET", "https://x.test/", ok("https://x.test/"))
        logger = MockLogger()
        executor = _executor(client, logger=logger, history=FailingHistory())

        response = executor.execute(_spec("https://x.test/", save_to_history=True), SOURCES)

        assert response.status_code == 200
        assert response.history_id is not None
        assert "history.record_failed" in logger.events()

    def test_history_body_uses_history_limit(self):
        client = FakeHttpClient().on("GET", "https://x.test/", ok("https://x.test/", "y" * 50))
        history = InMemoryHistoryStore()
        executor = _executor(client, settings=EngineSettings(history_body_truncate_bytes=5), history=history)

        response = executor.execute(_spec("https://x.test/", save_to_history=True), SOURCES)

        assert response.response_body == "y" * 50
        assert history.get(response.history_id).response_body == "y" * 5 + TRUNCATION_MARKER


def _stored_workspace() -> InMemoryWorkspaceStore:
    store = _store()
    store.add_collection(
        Collection(
            id="c1",
            team_id="team1",
            name="Users API",
            auth=AuthSpec(auth_type=AuthType.BEARER_TOKEN, bearer_token="collection-token"),
        )
    )
    store.add_folder(Folder(id="f1", collection_id="c1", name="users", auth=AuthSpec.inherit()))
    store.add_request(
        Request(
            id="r1",
            folder_id="f1",
            name="list users",
            method="get",
            url="{{host}}/users",
            headers=[KeyValueEntry(key="Accept", value="application/json"), KeyValueEntry(key="X-Off", value="1", enabled=False)],
            auth=AuthSpec.inherit(),
        )
    )
    return store


class TestExecuteStoredRequest:
    def test_sends_with_inherited_auth_and_records_history(self):
        # Arrange
        store = _stored_workspace()
        client = FakeHttpClient().on("GET", "https://api.example.com/users", ok("https://api.example.com/users", "[]"))
        history = InMemoryHistoryStore()
        executor = _executor(client, store=store, history=history)

        # Act
        response = executor.execute_stored_request("r1", "team1", user_id="u1")

        # Assert
        assert response.status_code == 200
        sent = client.sent[0]
        assert sent.headers["Authorization"] == "Bearer collection-token"
        assert sent.headers["Accept"] == "application/json"
        assert "X-Off" not in sent.headers
        entry = history.get(response.history_id)
        assert entry.request_id == "r1"
        assert entry.collection_id == "c1"

    def test_other_team_cannot_see_request(self):
        executor = _executor(FakeHttpClient(), store=_stored_workspace())

        with pytest.raises(NotFoundError, match="Request not found: r1"):
            executor.execute_stored_request("r1", "team2")

    def test_unknown_request(self):
        executor = _executor(FakeHttpClient(), store=_stored_workspace())

        with pytest.raises(NotFoundError):
            executor.execute_stored_request("nope", "team1")
