# application/services/engine_settings.py
from __future__ import annotations

from dataclasses import dataclass

MIB = 1024 * 1024


@dataclass(frozen=True)
class EngineSettings:
    default_timeout_ms: int = 30_000
    min_timeout_ms: int = 1_000
    max_timeout_ms: int = 300_000
    max_redirects: int = 10
    max_response_body_bytes: int = 10 * MIB
    history_body_truncate_bytes: int = 1 * MIB
    user_agent: str = "Courier-Engine/1.0"
    script_timeout_sec: float = 5.0
    script_kill_grace_sec: float = 2.0
    script_memory_limit_bytes: int = 64 * MIB
    script_max_console_lines: int = 1000
    max_iterations: int = 1000
    max_delay_ms: int = 60_000
    max_folder_depth: int = 64

    def clamp_timeout_ms(self, requested: int | None) -> int:
        if requested is None or requested <= 0:
            return self.default_timeout_ms
        return max(self.min_timeout_ms, min(requested, self.max_timeout_ms))
