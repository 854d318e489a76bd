# application/services/redactor.py
from __future__ import annotations

from typing import Any, Dict, List

SENSITIVE_KEYS = {
    "password",
    "passwd",
    "pass",
    "authorization",
    "proxy-authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
    "api-key",
}


def mask_value(key: str, value: Any) -> Any:
    if key.lower() in SENSITIVE_KEYS and value is not None:
        return "********"
    return value


def mask_dict(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: mask_value(k, v) for k, v in (d or {}).items()}


def mask_multimap(d: Dict[str, List[str]]) -> Dict[str, List[Any]]:
    return {k: [mask_value(k, v) for v in values] for k, values in (d or {}).items()}
