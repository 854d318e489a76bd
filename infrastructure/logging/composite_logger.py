from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional, Tuple

from application.ports.logger import LoggerPort


@dataclass(frozen=True)
class CompositeLogger(LoggerPort):
    """
    Fan-out to several sinks (console + run log store).
    A sink that raises is skipped; the remaining sinks still receive the event.
    """

    sinks: Tuple[LoggerPort, ...]

    def __init__(self, sinks: Iterable[Optional[LoggerPort]]) -> None:
        object.__setattr__(self, "sinks", tuple(s for s in sinks if s is not None))

    def bind(self, **fields: Any) -> "CompositeLogger":
        return CompositeLogger(s.bind(**fields) for s in self.sinks)

    def debug(self, event: str, **fields: Any) -> None:
        self._fan_out("debug", event, fields)

    def info(self, event: str, **fields: Any) -> None:
        self._fan_out("info", event, fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._fan_out("warning", event, fields)

    def error(self, event: str, **fields: Any) -> None:
        self._fan_out("error", event, fields)

    def _fan_out(self, level: str, event: str, fields: dict[str, Any]) -> None:
        for sink in self.sinks:
            try:
                getattr(sink, level)(event, **fields)
            except Exception:
                # ログ出力の失敗で実行を止めない
                continue
