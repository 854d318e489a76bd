# application/trace_enrichers/core.py
from __future__ import annotations

from application.http_trace import HttpTrace
from application.http_trace_enricher import HttpTraceEnricher
from application.ports.logger import LoggerPort
from application.services.redactor import mask_dict, mask_multimap


class HttpCoreTraceLogger(HttpTraceEnricher):
    def enrich_and_log(self, trace: HttpTrace, logger: LoggerPort) -> None:
        logger.info(
            "http.request",
            method=trace.method,
            url=trace.url,
            follow_redirects=trace.follow_redirects,
            timeout_ms=trace.timeout_ms,
            body_len=trace.request_body_len,
        )

        logger.debug(
            "http.request_detail",
            headers=mask_dict(trace.request_headers),
        )

        if trace.response is None:
            return

        logger.info(
            "http.response",
            status=trace.response.status,
            status_text=trace.response.status_text,
            final_url=trace.response.url,
            content_type=trace.response.content_type,
            body_len=trace.response.body_len,
            body_sha256=trace.response.body_sha256,
            elapsed_ms=trace.elapsed_ms,
            redirect_chain=trace.redirect_chain,
        )

        logger.debug(
            "http.response_detail",
            headers=mask_multimap(trace.response.headers),
            text_head=trace.text_head,
        )
