# application/services/variable_resolver.py
from __future__ import annotations

import re
from typing import Dict, Iterable, Optional

from application.ports.workspace_reader import VariableStorePort
from domain.variables import ScopeSources, VariableScope
from domain.workspace import VariableEntry

PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


def _enabled(entries: Iterable[VariableEntry]) -> Dict[str, str]:
    return {e.key: "" if e.value is None else e.value for e in entries if e.enabled}


class VariableResolver:
    """
    {{name}} を Global < Collection < Environment < Local の順でマージした値で置換する。
    - 未定義のプレースホルダはそのまま残す
    - ストアは毎回読み直す（キャッシュしない）
    """

    def __init__(self, store: VariableStorePort):
        self._store = store

    def build_variable_map(self, sources: ScopeSources) -> Dict[str, str]:
        merged: Dict[str, str] = {}
        for scope in VariableScope:
            merged.update(self.scope_values(scope, sources))
        return merged

    def scope_values(self, scope: VariableScope, sources: ScopeSources) -> Dict[str, str]:
        if scope is VariableScope.GLOBAL:
            return _enabled(self._store.list_global_variables(sources.team_id))
        if scope is VariableScope.COLLECTION:
            if not sources.collection_id:
                return {}
            return _enabled(self._store.list_collection_variables(sources.collection_id))
        if scope is VariableScope.ENVIRONMENT:
            if not sources.environment_id:
                return {}
            return _enabled(self._store.list_environment_variables(sources.environment_id))
        return dict(sources.local)

    def resolve(self, text: Optional[str], sources: ScopeSources) -> Optional[str]:
        if not text or "{{" not in text:
            return text
        return self.resolve_with(text, self.build_variable_map(sources))

    def resolve_with(self, text: Optional[str], variables: Dict[str, str]) -> Optional[str]:
        if not text:
            return text

        def _sub(match: re.Match) -> str:
            name = match.group(1)
            if name in variables:
                return variables[name]
            return match.group(0)

        return PLACEHOLDER.sub(_sub, text)
