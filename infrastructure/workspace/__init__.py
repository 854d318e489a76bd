# infrastructure/workspace/__init__.py
from infrastructure.workspace.base_loader import WorkspaceLoadError, WorkspaceLoaderBase
from infrastructure.workspace.in_memory_workspace_store import InMemoryWorkspaceStore
from infrastructure.workspace.json_loader import JsonWorkspaceLoader
from infrastructure.workspace.loader_registry import WorkspaceLoaderRegistry
from infrastructure.workspace.yaml_loader import YamlWorkspaceLoader

__all__ = [
    "InMemoryWorkspaceStore",
    "JsonWorkspaceLoader",
    "WorkspaceLoadError",
    "WorkspaceLoaderBase",
    "WorkspaceLoaderRegistry",
    "YamlWorkspaceLoader",
]
