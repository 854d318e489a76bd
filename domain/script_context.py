# domain/script_context.py
"""
Per-execution state threaded through pre-request and post-response scripts.

A ScriptContext is owned by exactly one script execution at a time: the runner
hands it to the sandbox, receives it back mutated, and derives the next
context from its final variable maps.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from domain.proxy import HeaderMultiMap

DEFAULT_MAX_CONSOLE_LINES = 1000


class ScriptPhase(str, Enum):
    PRE_REQUEST = "prerequest"
    POST_RESPONSE = "test"


@dataclass(frozen=True)
class AssertionResult:
    name: str
    passed: bool
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "passed": self.passed, "message": self.message}


@dataclass
class RequestSnapshot:
    url: str
    method: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[str] = None


@dataclass(frozen=True)
class ResponseSnapshot:
    status_code: int
    status_text: str
    headers: HeaderMultiMap
    body: Optional[str]
    response_time_ms: int


@dataclass(frozen=True)
class VariableState:
    global_vars: Dict[str, str] = field(default_factory=dict)
    collection_vars: Dict[str, str] = field(default_factory=dict)
    environment_vars: Dict[str, str] = field(default_factory=dict)
    local_vars: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def seeded(cls, local: Dict[str, str]) -> "VariableState":
        return cls(local_vars=dict(local))

    def merged(self) -> Dict[str, str]:
        out: Dict[str, str] = {}
        out.update(self.global_vars)
        out.update(self.collection_vars)
        out.update(self.environment_vars)
        out.update(self.local_vars)
        return out


@dataclass
class ScriptContext:
    request: RequestSnapshot
    global_vars: Dict[str, str] = field(default_factory=dict)
    collection_vars: Dict[str, str] = field(default_factory=dict)
    environment_vars: Dict[str, str] = field(default_factory=dict)
    local_vars: Dict[str, str] = field(default_factory=dict)
    response: Optional[ResponseSnapshot] = None
    assertions: List[AssertionResult] = field(default_factory=list)
    console: List[str] = field(default_factory=list)
    request_cancelled: bool = False
    max_console_lines: int = DEFAULT_MAX_CONSOLE_LINES

    @classmethod
    def from_state(
        cls,
        state: VariableState,
        request: RequestSnapshot,
        response: Optional[ResponseSnapshot] = None,
        max_console_lines: int = DEFAULT_MAX_CONSOLE_LINES,
    ) -> "ScriptContext":
        # スコープごとにコピーを持つ（スクリプトの書き込みは呼び出し元に漏れない）
        return cls(
            request=request,
            global_vars=dict(state.global_vars),
            collection_vars=dict(state.collection_vars),
            environment_vars=dict(state.environment_vars),
            local_vars=dict(state.local_vars),
            response=response,
            max_console_lines=max_console_lines,
        )

    def variable_state(self) -> VariableState:
        return VariableState(
            global_vars=dict(self.global_vars),
            collection_vars=dict(self.collection_vars),
            environment_vars=dict(self.environment_vars),
            local_vars=dict(self.local_vars),
        )

    def merged_variables(self) -> Dict[str, str]:
        return self.variable_state().merged()

    def add_assertion(self, name: str, passed: bool, message: Optional[str] = None) -> None:
        self.assertions.append(AssertionResult(name=name, passed=passed, message=message))

    def add_console_line(self, line: str) -> bool:
        if len(self.console) >= self.max_console_lines:
            return False
        self.console.append(line)
        return True

    @property
    def all_assertions_passed(self) -> bool:
        return all(a.passed for a in self.assertions)
