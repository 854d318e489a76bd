# tests/fake_http_client.py
"""
Fake HTTP client for executor / runner tests.
Responses are registered per (method, url); unknown URLs return 404.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Union

from application.ports.http_client import HttpClientPort, HttpResponse


@dataclass(frozen=True)
class SentRequest:
    method: str
    url: str
    headers: Dict[str, str]
    body: Optional[Union[str, bytes]]
    timeout_sec: float


def ok(url: str, text: str = "", status: int = 200, headers: Optional[Dict[str, str]] = None, reason: Optional[str] = None) -> HttpResponse:
    return HttpResponse(
        status=status,
        url=url,
        text=text,
        headers={k: [v] for k, v in (headers or {}).items()},
        reason=reason,
    )


def redirect(url: str, location: str, status: int = 302) -> HttpResponse:
    return ok(url, "", status=status, headers={"Location": location})


class FakeHttpClient(HttpClientPort):
    def __init__(self) -> None:
        self.sent: List[SentRequest] = []
        self._routes: Dict[Tuple[str, str], Union[HttpResponse, Exception, Callable[[SentRequest], HttpResponse]]] = {}

    def on(self, method: str, url: str, response) -> "FakeHttpClient":
        """
        response: HttpResponse, an exception instance to raise, or a callable(SentRequest).
        """
        self._routes[(method.upper(), url)] = response
        return self

    def send(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[Union[str, bytes]] = None,
        timeout_sec: float = 30.0,
    ) -> HttpResponse:
        req = SentRequest(method.upper(), url, dict(headers or {}), body, timeout_sec)
        self.sent.append(req)
        route = self._routes.get((req.method, url))
        if route is None:
            return ok(url, "Not Found", status=404)
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(req)
        return route

    def urls(self) -> List[str]:
        return [r.url for r in self.sent]
