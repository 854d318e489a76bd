# domain/proxy.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from domain.exceptions import ValidationError
from domain.workspace import AuthSpec, KeyValueEntry, RequestBody

HeaderMultiMap = Dict[str, List[str]]


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"

    @classmethod
    def parse(cls, value: Optional[str]) -> "HttpMethod":
        name = (value or "").strip().upper()
        try:
            return cls(name)
        except ValueError:
            raise ValidationError(f"Unsupported HTTP method: {value}") from None


@dataclass(frozen=True)
class ProxyRequestSpec:
    method: HttpMethod
    url: str
    headers: List[KeyValueEntry] = field(default_factory=list)
    body: Optional[RequestBody] = None
    auth: Optional[AuthSpec] = None
    environment_id: Optional[str] = None
    collection_id: Optional[str] = None
    save_to_history: bool = False
    timeout_ms: Optional[int] = None
    follow_redirects: bool = True


@dataclass(frozen=True)
class ResolvedAuth:
    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.headers and not self.query_params


@dataclass(frozen=True)
class ProxyResponse:
    status_code: int
    status_text: str
    response_headers: HeaderMultiMap
    response_body: Optional[str]
    response_time_ms: int
    response_size_bytes: int
    content_type: Optional[str] = None
    redirect_chain: List[str] = field(default_factory=list)
    history_id: Optional[str] = None

    @property
    def is_http_ok(self) -> bool:
        return 0 < self.status_code < 400

    def first_header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, values in self.response_headers.items():
            if key.lower() == lowered and values:
                return values[0]
        return None
