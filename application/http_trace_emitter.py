# application/http_trace_emitter.py
from __future__ import annotations

from typing import Iterable

from application.http_trace import HttpTrace
from application.http_trace_enricher import HttpTraceEnricher
from application.ports.logger import LoggerPort


class HttpTraceEmitter:
    def __init__(self, enrichers: Iterable[HttpTraceEnricher]):
        self._enrichers = list(enrichers)

    def emit(self, trace: HttpTrace, logger: LoggerPort) -> None:
        for e in self._enrichers:
            try:
                e.enrich_and_log(trace, logger)
            except Exception as exc:
                # トレースの失敗で本処理を止めない
                logger.warning("http.trace_failed", enricher=type(e).__name__, error=str(exc))
