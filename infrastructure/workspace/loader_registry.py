# infrastructure/workspace/loader_registry.py
from __future__ import annotations

from pathlib import Path
from typing import Dict

from infrastructure.workspace.base_loader import WorkspaceLoaderBase, WorkspaceLoadError
from infrastructure.workspace.json_loader import JsonWorkspaceLoader
from infrastructure.workspace.yaml_loader import YamlWorkspaceLoader


class WorkspaceLoaderRegistry:
    def __init__(self) -> None:
        self._loaders: Dict[str, WorkspaceLoaderBase] = {
            ".yaml": YamlWorkspaceLoader(),
            ".yml": YamlWorkspaceLoader(),
            ".json": JsonWorkspaceLoader(),
        }

    def get_loader(self, path: Path) -> WorkspaceLoaderBase:
        ext = path.suffix.lower()
        loader = self._loaders.get(ext)
        if loader is None:
            raise WorkspaceLoadError(f"Unsupported workspace format: {ext}")
        return loader
