# application/trace_enrichers/html_signals.py
from __future__ import annotations

import re
from bs4 import BeautifulSoup

from application.http_trace import HttpTrace
from application.http_trace_enricher import HttpTraceEnricher
from application.ports.logger import LoggerPort


class HtmlSignalLogger(HttpTraceEnricher):
    """
    HTMLレスポンスから軽量シグナルを抽出してログ化する。
    - title
    - meta_refresh（JS を実行しないので見落としやすい）
    - form 数
    """

    def enrich_and_log(self, trace: HttpTrace, logger: LoggerPort) -> None:
        if trace.response is None:
            return
        content_type = (trace.response.content_type or "").lower()
        if "html" not in content_type:
            return

        html = trace.full_text or ""
        meta_refresh = bool(re.search(r"<meta[^>]+http-equiv=[\"']refresh", html, re.I))

        soup = BeautifulSoup(html, "html.parser")
        title = soup.title.get_text(strip=True) if soup.title else None

        logger.info(
            "http.html_signals",
            url=trace.url,
            title=title,
            meta_refresh=meta_refresh,
            form_count=len(soup.find_all("form")),
        )
