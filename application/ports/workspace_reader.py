# application/ports/workspace_reader.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from domain.workspace import Collection, Folder, Request, VariableEntry


class WorkspaceReaderPort(ABC):
    @abstractmethod
    def get_collection(self, collection_id: str) -> Optional[Collection]:
        ...

    @abstractmethod
    def get_folder(self, folder_id: str) -> Optional[Folder]:
        ...

    @abstractmethod
    def get_request(self, request_id: str) -> Optional[Request]:
        ...

    @abstractmethod
    def list_root_folders(self, collection_id: str) -> List[Folder]:
        ...

    @abstractmethod
    def list_subfolders(self, folder_id: str) -> List[Folder]:
        ...

    @abstractmethod
    def list_folder_requests(self, folder_id: str) -> List[Request]:
        ...


class VariableStorePort(ABC):
    @abstractmethod
    def list_global_variables(self, team_id: str) -> List[VariableEntry]:
        ...

    @abstractmethod
    def list_collection_variables(self, collection_id: str) -> List[VariableEntry]:
        ...

    @abstractmethod
    def list_environment_variables(self, environment_id: str) -> List[VariableEntry]:
        ...
