from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from domain.proxy import ProxyResponse
from domain.workspace import AuthSpec, KeyValueEntry


@dataclass(frozen=True)
class GraphQLQuery:
    url: str
    query: str
    variables: Optional[str] = None  # JSON 文字列
    operation_name: Optional[str] = None
    headers: List[KeyValueEntry] = field(default_factory=list)
    auth: Optional[AuthSpec] = None
    environment_id: Optional[str] = None


@dataclass(frozen=True)
class GraphQLResult:
    http_response: ProxyResponse
    schema: Optional[str] = None  # introspection のときだけ
