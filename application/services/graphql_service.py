# application/services/graphql_service.py
from __future__ import annotations

import json
import re
from typing import List, Optional

from application.executor.http_proxy_executor import HttpProxyExecutor
from application.ports.logger import LoggerPort
from application.services.body_builder import JSON_CONTENT_TYPE
from domain.exceptions import ValidationError
from domain.graphql import GraphQLQuery, GraphQLResult
from domain.proxy import HttpMethod, ProxyRequestSpec
from domain.variables import ScopeSources
from domain.workspace import AuthSpec, BodyType, KeyValueEntry, RequestBody

INTROSPECTION_OPERATION = "IntrospectionQuery"

INTROSPECTION_QUERY = """
query IntrospectionQuery {
  __schema {
    queryType { name }
    mutationType { name }
    subscriptionType { name }
    types {
      ...FullType
    }
    directives {
      name
      description
      locations
      args {
        ...InputValue
      }
    }
  }
}

fragment FullType on __Type {
  kind
  name
  description
  fields(includeDeprecated: true) {
    name
    description
    args {
      ...InputValue
    }
    type {
      ...TypeRef
    }
    isDeprecated
    deprecationReason
  }
  inputFields {
    ...InputValue
  }
  interfaces {
    ...TypeRef
  }
  enumValues(includeDeprecated: true) {
    name
    description
    isDeprecated
    deprecationReason
  }
  possibleTypes {
    ...TypeRef
  }
}

fragment InputValue on __InputValue {
  name
  description
  type { ...TypeRef }
  defaultValue
}

fragment TypeRef on __Type {
  kind
  name
  ofType {
    kind
    name
    ofType {
      kind
      name
      ofType {
        kind
        name
        ofType {
          kind
          name
          ofType {
            kind
            name
            ofType {
              kind
              name
            }
          }
        }
      }
    }
  }
}
""".strip()

_KEYWORDS = ("query", "mutation", "subscription", "fragment", "{")
_PAIRS = {"}": "{", ")": "(", "]": "["}
_WS = re.compile(r"\s+")


class GraphQLService:
    """
    GraphQL は常に POST + JSON ボディ {query, variables?, operationName?}。
    送信自体は HttpProxyExecutor に任せる。
    """

    def __init__(self, executor: HttpProxyExecutor, logger: LoggerPort):
        self._executor = executor
        self._logger = logger

    def execute_query(
        self,
        q: GraphQLQuery,
        team_id: str,
        user_id: Optional[str] = None,
        logger: Optional[LoggerPort] = None,
    ) -> GraphQLResult:
        log = logger or self._logger
        if not q.query or not q.query.strip():
            raise ValidationError("GraphQL query must not be empty")
        if not q.url or not q.url.strip():
            raise ValidationError("URL must not be empty")

        # query / variables のプレースホルダは executor 側のボディ構築で解決される
        body = RequestBody(
            body_type=BodyType.GRAPHQL,
            graphql_query=q.query,
            graphql_variables=q.variables,
            graphql_operation_name=q.operation_name,
        )

        headers: List[KeyValueEntry] = list(q.headers)
        # 利用者ヘッダより後に置いて Content-Type を固定する
        headers.append(KeyValueEntry(key="Content-Type", value=JSON_CONTENT_TYPE))

        spec = ProxyRequestSpec(
            method=HttpMethod.POST,
            url=q.url,
            headers=headers,
            body=body,
            auth=q.auth,
            environment_id=q.environment_id,
            save_to_history=True,
            follow_redirects=False,
        )
        sources = ScopeSources(team_id=team_id, environment_id=q.environment_id)
        response = self._executor.execute(spec, sources, user_id=user_id, logger=log)
        log.info("graphql.executed", url=q.url, status=response.status_code)
        return GraphQLResult(http_response=response)

    def introspect(
        self,
        url: str,
        team_id: str,
        user_id: Optional[str] = None,
        headers: Optional[List[KeyValueEntry]] = None,
        auth: Optional[AuthSpec] = None,
        logger: Optional[LoggerPort] = None,
    ) -> GraphQLResult:
        log = logger or self._logger
        result = self.execute_query(
            GraphQLQuery(
                url=url,
                query=INTROSPECTION_QUERY,
                operation_name=INTROSPECTION_OPERATION,
                headers=list(headers or []),
                auth=auth,
            ),
            team_id,
            user_id=user_id,
            logger=log,
        )
        schema = self._extract_schema(result.http_response.response_body, log)
        log.info("graphql.introspected", url=url, schema_found=schema is not None)
        return GraphQLResult(http_response=result.http_response, schema=schema)

    @staticmethod
    def validate_query(query: Optional[str]) -> List[str]:
        """
        Lightweight syntax check, not a parser. Returns error messages (empty = valid).
        """
        if query is None:
            return ["Query must not be null"]
        if not query.strip():
            return ["Query must not be empty"]

        errors: List[str] = []
        text = query.strip()
        stack: List[str] = []
        in_string = False
        prev = ""
        for c in text:
            if c == '"' and prev != "\\":
                in_string = not in_string
            elif not in_string:
                if c in "{([":
                    stack.append(c)
                elif c in _PAIRS:
                    if not stack or stack[-1] != _PAIRS[c]:
                        errors.append(f"Unbalanced brackets: unexpected '{c}'")
                        return errors
                    stack.pop()
            prev = c
        if stack:
            errors.append(f"Unbalanced brackets: {len(stack)} unclosed opening bracket(s)")

        if not text.startswith(_KEYWORDS):
            errors.append("Query must start with 'query', 'mutation', 'subscription', 'fragment', or '{'")
        return errors

    @staticmethod
    def format_query(query: Optional[str]) -> Optional[str]:
        if query is None or not query.strip():
            return query

        normalized = _WS.sub(" ", query).strip()
        out: List[str] = []
        indent = 0
        in_string = False

        def last() -> str:
            return out[-1][-1:] if out else ""

        for i, c in enumerate(normalized):
            if c == '"' and (i == 0 or normalized[i - 1] != "\\"):
                in_string = not in_string
                out.append(c)
                continue
            if in_string:
                out.append(c)
                continue
            if c == "{":
                if out and last() not in (" ", "\n"):
                    out.append(" ")
                indent += 1
                out.append("{\n" + "  " * indent)
            elif c == "}":
                indent = max(indent - 1, 0)
                # 直前のインデントを捨ててから閉じる
                while out and last() == " ":
                    out[-1] = out[-1][:-1]
                    if not out[-1]:
                        out.pop()
                if out and last() != "\n":
                    out.append("\n")
                out.append("  " * indent + "}")
            elif c == " ":
                if out and last() not in (" ", "\n"):
                    out.append(" ")
            else:
                out.append(c)

        return "".join(out).strip()

    @staticmethod
    def _extract_schema(body: Optional[str], log: LoggerPort) -> Optional[str]:
        if not body or not body.strip():
            return None
        try:
            root = json.loads(body)
        except ValueError as e:
            log.warning("graphql.introspection_parse_failed", error=str(e))
            return None
        data = root.get("data") if isinstance(root, dict) else None
        schema = data.get("__schema") if isinstance(data, dict) else None
        if schema is None:
            log.warning("graphql.schema_missing")
            return None
        return json.dumps(schema, ensure_ascii=False)
