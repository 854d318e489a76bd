# domain/run.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from domain.exceptions import ValidationError


@dataclass(frozen=True)
class RunSpec:
    collection_id: str
    team_id: str
    user_id: Optional[str] = None
    environment_id: Optional[str] = None
    iteration_count: int = 1
    delay_between_requests_ms: int = 0
    data_filename: Optional[str] = None
    data_content: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.collection_id or not str(self.collection_id).strip():
            raise ValidationError("collection_id must not be empty")
        if not self.team_id or not str(self.team_id).strip():
            raise ValidationError("team_id must not be empty")
        if self.delay_between_requests_ms < 0:
            raise ValidationError("delay_between_requests_ms must be >= 0")

    @property
    def has_data_file(self) -> bool:
        return bool(self.data_content) and bool(self.data_filename)
