# application/ports/http_client.py
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from domain.proxy import HeaderMultiMap


@dataclass(frozen=True)
class HttpResponse:
    status: int
    url: str
    text: str
    headers: HeaderMultiMap = field(default_factory=dict)
    reason: Optional[str] = None
    content: Optional[bytes] = None

    def first_header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, values in self.headers.items():
            if key.lower() == lowered and values:
                return values[0]
        return None

    @property
    def size_bytes(self) -> int:
        if self.content is not None:
            return len(self.content)
        return len((self.text or "").encode("utf-8"))


class HttpClientPort(ABC):
    """
    One request / one response. Implementations never follow redirects:
    redirect handling belongs to the caller.

    Timeouts raise domain.exceptions.RequestTimeoutError and network failures
    raise domain.exceptions.RequestConnectionError.
    """

    @abstractmethod
    def send(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[Union[str, bytes]] = None,
        timeout_sec: float = 30.0,
    ) -> HttpResponse:
        ...


def header_lists(pairs: List[tuple]) -> HeaderMultiMap:
    out: HeaderMultiMap = {}
    for key, value in pairs:
        out.setdefault(key, []).append(value)
    return out
