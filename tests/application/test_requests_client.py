from __future__ import annotations

import pytest
import requests

from application.ports.requests_client import RequestsSessionHttpClient
from domain.exceptions import RequestConnectionError, RequestTimeoutError


class FakeRawHeaders:
    def __init__(self, pairs):
        self._pairs = pairs

    def keys(self):
        seen = []
        for k, _ in self._pairs:
            if k not in seen:
                seen.append(k)
        return seen

    def getlist(self, key):
        return [v for k, v in self._pairs if k == key]


class FakeRaw:
    def __init__(self, pairs):
        self.headers = FakeRawHeaders(pairs)


def _response(status: int, body: bytes, pairs) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp.reason = "OK"
    resp.url = "https://x.test/"
    resp._content = body
    resp.encoding = "utf-8"
    resp.raw = FakeRaw(pairs)
    for k, v in pairs:
        resp.headers[k] = v
    return resp


def test_send_does_not_follow_redirects_and_keeps_repeated_headers(monkeypatch) -> None:
    client = RequestsSessionHttpClient(base_headers={"X-Base": "1"})
    calls = []

    def fake_request(**kwargs):
        calls.append(kwargs)
        return _response(200, b"hello", [("Set-Cookie", "a=1"), ("Set-Cookie", "b=2"), ("Content-Type", "text/plain")])

    monkeypatch.setattr(client._session, "request", fake_request)

    resp = client.send("post", "https://x.test/", headers={"X-Req": "2"}, body="data", timeout_sec=3)

    assert calls[0]["method"] == "POST"
    assert calls[0]["allow_redirects"] is False
    assert calls[0]["data"] == b"data"
    assert calls[0]["timeout"] == 3
    assert calls[0]["headers"] == {"X-Base": "1", "X-Req": "2"}
    assert resp.status == 200
    assert resp.text == "hello"
    assert resp.headers["Set-Cookie"] == ["a=1", "b=2"]
    assert resp.size_bytes == 5


@pytest.mark.parametrize(
    "raised, expected",
    [
        (requests.ConnectTimeout("slow"), RequestTimeoutError),
        (requests.ReadTimeout("slow"), RequestTimeoutError),
        (requests.ConnectionError("refused"), RequestConnectionError),
    ],
)
def test_transport_errors_are_mapped(monkeypatch, raised, expected) -> None:
    client = RequestsSessionHttpClient()

    def fake_request(**kwargs):
        raise raised

    monkeypatch.setattr(client._session, "request", fake_request)

    with pytest.raises(expected):
        client.send("GET", "https://x.test/")
