# application/http_trace_enricher.py
from __future__ import annotations

from abc import ABC, abstractmethod

from application.http_trace import HttpTrace
from application.ports.logger import LoggerPort


class HttpTraceEnricher(ABC):
    @abstractmethod
    def enrich_and_log(self, trace: HttpTrace, logger: LoggerPort) -> None:
        ...
