# infrastructure/workspace/in_memory_workspace_store.py
from __future__ import annotations

from threading import Lock
from typing import Dict, Iterable, List, Optional

from application.ports.workspace_reader import VariableStorePort, WorkspaceReaderPort
from domain.workspace import Collection, Folder, Request, VariableEntry


def _sorted(items: Iterable) -> List:
    return sorted(items, key=lambda x: (x.sort_order, x.name))


class InMemoryWorkspaceStore(WorkspaceReaderPort, VariableStorePort):
    """
    コレクション / フォルダ / リクエスト / 変数をフラットな dict で保持する。
    フォルダ木は parent_id でたどる。
    """

    def __init__(self) -> None:
        self._collections: Dict[str, Collection] = {}
        self._folders: Dict[str, Folder] = {}
        self._requests: Dict[str, Request] = {}
        self._globals: Dict[str, List[VariableEntry]] = {}
        self._collection_vars: Dict[str, List[VariableEntry]] = {}
        self._environment_vars: Dict[str, List[VariableEntry]] = {}
        self._lock = Lock()

    # --- write side (loader / tests) ---

    def add_collection(self, collection: Collection) -> None:
        with self._lock:
            self._collections[collection.id] = collection

    def add_folder(self, folder: Folder) -> None:
        with self._lock:
            self._folders[folder.id] = folder

    def add_request(self, request: Request) -> None:
        with self._lock:
            self._requests[request.id] = request

    def set_global_variables(self, team_id: str, entries: Iterable[VariableEntry]) -> None:
        with self._lock:
            self._globals[team_id] = list(entries)

    def set_collection_variables(self, collection_id: str, entries: Iterable[VariableEntry]) -> None:
        with self._lock:
            self._collection_vars[collection_id] = list(entries)

    def set_environment_variables(self, environment_id: str, entries: Iterable[VariableEntry]) -> None:
        with self._lock:
            self._environment_vars[environment_id] = list(entries)

    def list_collections(self) -> List[Collection]:
        with self._lock:
            return list(self._collections.values())

    # --- WorkspaceReaderPort ---

    def get_collection(self, collection_id: str) -> Optional[Collection]:
        with self._lock:
            return self._collections.get(collection_id)

    def get_folder(self, folder_id: str) -> Optional[Folder]:
        with self._lock:
            return self._folders.get(folder_id)

    def get_request(self, request_id: str) -> Optional[Request]:
        with self._lock:
            return self._requests.get(request_id)

    def list_root_folders(self, collection_id: str) -> List[Folder]:
        with self._lock:
            found = [f for f in self._folders.values() if f.collection_id == collection_id and not f.parent_id]
        return _sorted(found)

    def list_subfolders(self, folder_id: str) -> List[Folder]:
        with self._lock:
            found = [f for f in self._folders.values() if f.parent_id == folder_id]
        return _sorted(found)

    def list_folder_requests(self, folder_id: str) -> List[Request]:
        with self._lock:
            found = [r for r in self._requests.values() if r.folder_id == folder_id]
        return _sorted(found)

    # --- VariableStorePort ---

    def list_global_variables(self, team_id: str) -> List[VariableEntry]:
        with self._lock:
            return list(self._globals.get(team_id, []))

    def list_collection_variables(self, collection_id: str) -> List[VariableEntry]:
        with self._lock:
            return list(self._collection_vars.get(collection_id, []))

    def list_environment_variables(self, environment_id: str) -> List[VariableEntry]:
        with self._lock:
            return list(self._environment_vars.get(environment_id, []))
