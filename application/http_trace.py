# application/http_trace.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

HeaderDict = Dict[str, str]
HeaderMultiMap = Dict[str, List[str]]


@dataclass(frozen=True)
class HttpResponseMeta:
    status: int
    status_text: str
    url: str
    headers: HeaderMultiMap
    content_type: Optional[str]
    body_len: int
    body_sha256: str


@dataclass(frozen=True)
class HttpTrace:
    method: str
    url: str
    request_headers: HeaderDict = field(default_factory=dict)
    request_body_len: int = 0
    follow_redirects: bool = True
    timeout_ms: int = 0
    redirect_chain: List[str] = field(default_factory=list)
    elapsed_ms: int = 0
    response: Optional[HttpResponseMeta] = None
    text_head: str = ""
    full_text: str = ""
