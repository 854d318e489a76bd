from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional


@dataclass(frozen=True)
class HistoryEntry:
    id: str
    team_id: str
    user_id: Optional[str]
    method: str
    url: str
    request_headers: Dict[str, str]
    request_body: Optional[str]
    response_status: int
    response_headers: Dict[str, List[str]]
    response_body: Optional[str]
    response_size_bytes: int
    response_time_ms: int
    content_type: Optional[str]
    created_at: datetime
    environment_id: Optional[str] = None
    collection_id: Optional[str] = None
    request_id: Optional[str] = None
