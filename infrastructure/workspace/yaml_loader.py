# infrastructure/workspace/yaml_loader.py
from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from infrastructure.workspace.base_loader import WorkspaceLoaderBase


class YamlWorkspaceLoader(WorkspaceLoaderBase):
    """YAMLファイルからワークスペースをロード"""

    def _load_file(self, path: Path) -> Any:
        with path.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f)
