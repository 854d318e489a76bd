from __future__ import annotations

import json

from application.services.body_builder import RequestBodyBuilder
from application.services.variable_resolver import VariableResolver
from domain.workspace import BodyType, RequestBody
from infrastructure.workspace import InMemoryWorkspaceStore

VARIABLES = {"name": "alice", "id": "42"}


def _builder() -> RequestBodyBuilder:
    return RequestBodyBuilder(VariableResolver(InMemoryWorkspaceStore()))


class TestBuild:
    def test_no_body(self):
        assert _builder().build(None, VARIABLES).content is None
        assert _builder().build(RequestBody(), VARIABLES).content_type is None

    def test_raw_json_resolves_placeholders(self):
        built = _builder().build(RequestBody(body_type=BodyType.RAW_JSON, raw_content='{"name": "{{name}}"}'), VARIABLES)

        assert built.content == '{"name": "alice"}'
        assert built.content_type == "application/json"
        assert built.force_content_type is False

    def test_raw_variants_content_types(self):
        builder = _builder()

        assert builder.build(RequestBody(body_type=BodyType.RAW_XML, raw_content="<a/>"), {}).content_type == "application/xml"
        assert builder.build(RequestBody(body_type=BodyType.RAW_TEXT, raw_content="t"), {}).content_type == "text/plain"
        assert builder.build(RequestBody(body_type=BodyType.RAW_HTML, raw_content="<p>"), {}).content_type == "text/html"
        assert builder.build(RequestBody(body_type=BodyType.RAW_YAML, raw_content="a: 1"), {}).content_type == "application/x-yaml"

    def test_urlencoded_is_reencoded(self):
        built = _builder().build(
            RequestBody(body_type=BodyType.X_WWW_FORM_URLENCODED, form_data="user={{name}}&q=a b&empty="),
            VARIABLES,
        )

        assert built.content == "user=alice&q=a+b&empty="
        assert built.content_type == "application/x-www-form-urlencoded"

    def test_multipart_forces_boundary(self):
        built = _builder().build(RequestBody(body_type=BodyType.FORM_DATA, form_data="id={{id}}"), VARIABLES)

        assert built.force_content_type is True
        assert built.content_type.startswith("multipart/form-data; boundary=")
        boundary = built.content_type.split("boundary=", 1)[1]
        payload = built.content.decode("utf-8")
        assert boundary in payload
        assert 'name="id"' in payload
        assert "42" in payload

    def test_graphql_envelope(self):
        built = _builder().build(
            RequestBody(
                body_type=BodyType.GRAPHQL,
                graphql_query="query U { user(id: {{id}}) { name } }",
                graphql_variables='{"name": "{{name}}"}',
                graphql_operation_name="U",
            ),
            VARIABLES,
        )

        assert json.loads(built.content) == {
            "query": "query U { user(id: 42) { name } }",
            "variables": {"name": "alice"},
            "operationName": "U",
        }
        assert built.content_type == "application/json"

    def test_binary_sends_only_content_type(self):
        built = _builder().build(RequestBody(body_type=BodyType.BINARY, binary_file_name="a.png"), VARIABLES)

        assert built.content is None
        assert built.content_type == "application/octet-stream"


class TestGraphqlEnvelope:
    def test_query_only(self):
        assert json.loads(RequestBodyBuilder.graphql_envelope("{ a }", None)) == {"query": "{ a }"}

    def test_blank_variables_are_omitted(self):
        assert json.loads(RequestBodyBuilder.graphql_envelope("{ a }", "  ")) == {"query": "{ a }"}

    def test_invalid_variables_are_sent_as_text(self):
        envelope = json.loads(RequestBodyBuilder.graphql_envelope("{ a }", "{oops"))

        assert envelope["variables"] == "{oops"
