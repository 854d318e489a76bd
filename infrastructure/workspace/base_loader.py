# infrastructure/workspace/base_loader.py
"""
ワークスペースファイル（YAML / JSON）から InMemoryWorkspaceStore を組み立てる共通処理
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from domain.workspace import (
    AuthSpec,
    AuthType,
    BodyType,
    Collection,
    Folder,
    KeyValueEntry,
    Request,
    RequestBody,
    VariableEntry,
)
from infrastructure.workspace.in_memory_workspace_store import InMemoryWorkspaceStore


class WorkspaceLoadError(Exception):
    pass


def _enum(enum_cls, raw: Any, default):
    if raw is None or raw == "":
        return default
    try:
        return enum_cls(str(raw).upper())
    except ValueError:
        raise WorkspaceLoadError(f"Unknown {enum_cls.__name__}: {raw}") from None


def _str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class WorkspaceLoaderBase(ABC):
    def load_from_file(self, path: str | Path, store: Optional[InMemoryWorkspaceStore] = None) -> InMemoryWorkspaceStore:
        p = Path(path)
        if not p.exists():
            raise WorkspaceLoadError(f"Workspace file not found: {path}")

        data = self._load_file(p)
        if data is None:
            raise WorkspaceLoadError(f"Workspace file is empty: {path}")
        if not isinstance(data, dict):
            raise WorkspaceLoadError(f"Workspace file is invalid: {path}")

        return self.load_from_dict(data, store)

    @abstractmethod
    def _load_file(self, path: Path) -> Any:
        ...

    def load_from_dict(
        self,
        data: Dict[str, Any],
        store: Optional[InMemoryWorkspaceStore] = None,
    ) -> InMemoryWorkspaceStore:
        store = store or InMemoryWorkspaceStore()

        for team_id, entries in (data.get("globals") or {}).items():
            store.set_global_variables(str(team_id), self._load_variables(entries))

        for env_id, env_data in (data.get("environments") or {}).items():
            entries = env_data.get("variables", []) if isinstance(env_data, dict) else env_data
            store.set_environment_variables(str(env_id), self._load_variables(entries))

        for c in data.get("collections") or []:
            self._load_collection(c, store)

        return store

    def _load_collection(self, data: Dict[str, Any], store: InMemoryWorkspaceStore) -> None:
        collection_id = _str(data.get("id"))
        if not collection_id:
            raise WorkspaceLoadError("collection.id is required")
        team_id = _str(data.get("team_id"))
        if not team_id:
            raise WorkspaceLoadError(f"collection.team_id is required: {collection_id}")

        scripts = data.get("scripts") or {}
        store.add_collection(
            Collection(
                id=collection_id,
                team_id=team_id,
                name=_str(data.get("name", collection_id)),
                pre_request_script=scripts.get("pre_request"),
                post_response_script=scripts.get("post_response"),
                auth=self._load_auth(data.get("auth")),
            )
        )
        store.set_collection_variables(collection_id, self._load_variables(data.get("variables")))

        for index, folder_data in enumerate(data.get("folders") or []):
            self._load_folder(folder_data, collection_id, None, index, store)

    def _load_folder(
        self,
        data: Dict[str, Any],
        collection_id: str,
        parent_id: Optional[str],
        index: int,
        store: InMemoryWorkspaceStore,
    ) -> None:
        # id 省略時は親からの位置で決める
        folder_id = _str(data.get("id")) or f"{parent_id or collection_id}.f{index}"
        scripts = data.get("scripts") or {}
        store.add_folder(
            Folder(
                id=folder_id,
                collection_id=collection_id,
                name=_str(data.get("name", folder_id)),
                parent_id=parent_id,
                sort_order=int(data.get("sort_order", index)),
                pre_request_script=scripts.get("pre_request"),
                post_response_script=scripts.get("post_response"),
                auth=self._load_auth(data.get("auth")),
            )
        )

        for i, request_data in enumerate(data.get("requests") or []):
            store.add_request(self._load_request(request_data, folder_id, i))

        for i, child in enumerate(data.get("folders") or []):
            self._load_folder(child, collection_id, folder_id, i, store)

    def _load_request(self, data: Dict[str, Any], folder_id: str, index: int) -> Request:
        request_id = _str(data.get("id")) or f"{folder_id}.r{index}"
        scripts = data.get("scripts") or {}
        return Request(
            id=request_id,
            folder_id=folder_id,
            name=_str(data.get("name", request_id)),
            method=_str(data.get("method", "GET")).upper(),
            url=_str(data.get("url", "")),
            sort_order=int(data.get("sort_order", index)),
            headers=self._load_pairs(data.get("headers")),
            params=self._load_pairs(data.get("params")),
            body=self._load_body(data.get("body")),
            auth=self._load_auth(data.get("auth")),
            pre_request_script=scripts.get("pre_request"),
            post_response_script=scripts.get("post_response"),
        )

    def _load_pairs(self, raw: Any) -> List[KeyValueEntry]:
        if not raw:
            return []
        # {"Accept": "application/json"} 形式も許可
        if isinstance(raw, dict):
            return [KeyValueEntry(key=_str(k), value=_str(v)) for k, v in raw.items()]
        return [
            KeyValueEntry(
                key=_str(item.get("key")),
                value=_str(item.get("value")),
                description=item.get("description"),
                enabled=bool(item.get("enabled", True)),
            )
            for item in raw
        ]

    def _load_variables(self, raw: Any) -> List[VariableEntry]:
        if not raw:
            return []
        if isinstance(raw, dict):
            return [VariableEntry(key=_str(k), value=_str(v)) for k, v in raw.items()]
        return [
            VariableEntry(
                key=_str(item.get("key")),
                value=_str(item.get("value")),
                enabled=bool(item.get("enabled", True)),
                secret=bool(item.get("secret", False)),
            )
            for item in raw
        ]

    def _load_body(self, raw: Optional[Dict[str, Any]]) -> Optional[RequestBody]:
        if not raw:
            return None
        form_data = raw.get("form_data")
        if isinstance(form_data, dict):
            form_data = "&".join(f"{k}={_str(v)}" for k, v in form_data.items())
        return RequestBody(
            body_type=_enum(BodyType, raw.get("type"), BodyType.NONE),
            raw_content=raw.get("raw"),
            form_data=form_data,
            graphql_query=raw.get("graphql_query"),
            graphql_variables=raw.get("graphql_variables"),
            graphql_operation_name=raw.get("graphql_operation_name"),
            binary_file_name=raw.get("binary_file_name"),
        )

    def _load_auth(self, raw: Optional[Dict[str, Any]]) -> Optional[AuthSpec]:
        if not raw:
            return None
        return AuthSpec(
            auth_type=_enum(AuthType, raw.get("type"), AuthType.NO_AUTH),
            api_key_header=raw.get("api_key_header"),
            api_key_value=raw.get("api_key_value"),
            api_key_add_to=raw.get("api_key_add_to"),
            bearer_token=raw.get("bearer_token"),
            basic_username=raw.get("basic_username"),
            basic_password=raw.get("basic_password"),
            oauth2_grant_type=raw.get("oauth2_grant_type"),
            oauth2_access_token=raw.get("oauth2_access_token"),
            jwt_token=raw.get("jwt_token"),
        )
