from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional


class VariableScope(str, Enum):
    # 後のスコープが前のスコープを上書きする
    GLOBAL = "global"
    COLLECTION = "collection"
    ENVIRONMENT = "environment"
    LOCAL = "local"


@dataclass(frozen=True)
class ScopeSources:
    team_id: str
    collection_id: Optional[str] = None
    environment_id: Optional[str] = None
    local: Dict[str, str] = field(default_factory=dict)
