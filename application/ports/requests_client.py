# application/ports/requests_client.py
from __future__ import annotations

from http.cookiejar import DefaultCookiePolicy
from typing import Dict, Optional, Union

import requests

from application.ports.http_client import HttpClientPort, HttpResponse, header_lists
from domain.exceptions import RequestConnectionError, RequestTimeoutError
from domain.proxy import HeaderMultiMap


def _multimap(resp: requests.Response) -> HeaderMultiMap:
    # requests は同名ヘッダを ", " で結合してしまうので urllib3 側から取り直す
    raw_headers = getattr(getattr(resp, "raw", None), "headers", None)
    if raw_headers is not None and hasattr(raw_headers, "getlist"):
        out: HeaderMultiMap = {}
        for key in raw_headers.keys():
            out[key] = list(raw_headers.getlist(key))
        return out
    return header_lists(list(resp.headers.items()))


class RequestsSessionHttpClient(HttpClientPort):
    def __init__(self, base_headers: Optional[Dict[str, str]] = None):
        self._session = requests.Session()
        # プロキシ用途: Cookie はリクエスト間で保持しない
        self._session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))
        self._base_headers = base_headers or {}

    def send(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[Union[str, bytes]] = None,
        timeout_sec: float = 30.0,
    ) -> HttpResponse:
        merged = dict(self._base_headers)
        if headers:
            merged.update(headers)

        data = body.encode("utf-8") if isinstance(body, str) else body

        try:
            resp = self._session.request(
                method=method.upper(),
                url=url,
                headers=merged,
                data=data,
                timeout=timeout_sec,
                allow_redirects=False,
            )
        except requests.Timeout as exc:
            raise RequestTimeoutError(str(exc)) from exc
        except requests.ConnectionError as exc:
            raise RequestConnectionError(str(exc)) from exc

        return HttpResponse(
            status=resp.status_code,
            url=str(resp.url),
            text=resp.text,
            headers=_multimap(resp),
            reason=resp.reason,
            content=resp.content,
        )
