# infrastructure/config/env_settings.py
from __future__ import annotations

import os
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import dotenv_values

from application.services.engine_settings import EngineSettings
from domain.exceptions import ValidationError

ENV_PREFIX = "COURIER_"

# .envファイル（プロジェクトルート）
_env_path = Path(__file__).parent.parent.parent / ".env"


def _read_env(env_path: Optional[Path]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    if env_path is not None and env_path.exists():
        values.update({k: v for k, v in dotenv_values(env_path).items() if v is not None})
    # 実環境変数を優先
    values.update(os.environ)
    return values


def _convert(name: str, raw: str, default: Any) -> Any:
    try:
        if isinstance(default, bool):
            return raw.strip().lower() in ("1", "true", "yes", "on")
        if isinstance(default, int):
            return int(raw.strip().replace("_", ""))
        if isinstance(default, float):
            return float(raw.strip())
    except ValueError:
        raise ValidationError(f"Invalid value for {name}: {raw!r}") from None
    return raw


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    env_path: Optional[Path] = _env_path,
) -> EngineSettings:
    """
    COURIER_<FIELD> 形式の環境変数（.env 含む）から EngineSettings を組み立てる。
    例: COURIER_SCRIPT_TIMEOUT_SEC=3
    """
    source = dict(env) if env is not None else _read_env(env_path)
    defaults = EngineSettings()
    overrides: Dict[str, Any] = {}
    for f in fields(EngineSettings):
        name = f"{ENV_PREFIX}{f.name.upper()}"
        raw = source.get(name)
        if raw is None or raw == "":
            continue
        overrides[f.name] = _convert(name, raw, getattr(defaults, f.name))
    return EngineSettings(**overrides)
