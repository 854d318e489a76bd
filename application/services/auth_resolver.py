# application/services/auth_resolver.py
from __future__ import annotations

import base64
from typing import Dict, Optional, Set

from application.ports.workspace_reader import WorkspaceReaderPort
from application.services.variable_resolver import VariableResolver
from domain.proxy import ResolvedAuth
from domain.variables import ScopeSources
from domain.workspace import OAUTH2_TYPES, AuthSpec, AuthType, Request

DEFAULT_MAX_FOLDER_DEPTH = 64


class AuthResolver:
    """
    AuthSpec + 変数 -> 具体的なヘッダ / クエリパラメータ。
    OAuth2 / JWT はトークン取得を行わず、取得済みトークンを Bearer として流すだけ。
    """

    def __init__(
        self,
        variables: VariableResolver,
        workspace: WorkspaceReaderPort,
        max_folder_depth: int = DEFAULT_MAX_FOLDER_DEPTH,
    ):
        self._variables = variables
        self._workspace = workspace
        self._max_depth = max_folder_depth

    def resolve(self, auth: Optional[AuthSpec], sources: ScopeSources) -> ResolvedAuth:
        if auth is None or not auth.auth_type.is_concrete:
            return ResolvedAuth()
        return self.resolve_with(auth, self._variables.build_variable_map(sources))

    def resolve_with(self, auth: Optional[AuthSpec], variables: Dict[str, str]) -> ResolvedAuth:
        if auth is None or not auth.auth_type.is_concrete:
            return ResolvedAuth()

        def r(value: Optional[str]) -> str:
            if value is None:
                return ""
            return self._variables.resolve_with(value, variables) or ""

        kind = auth.auth_type

        if kind == AuthType.BEARER_TOKEN:
            return ResolvedAuth(headers={"Authorization": f"Bearer {r(auth.bearer_token)}"})

        if kind == AuthType.BASIC_AUTH:
            raw = f"{r(auth.basic_username)}:{r(auth.basic_password)}".encode("utf-8")
            encoded = base64.b64encode(raw).decode("ascii")
            return ResolvedAuth(headers={"Authorization": f"Basic {encoded}"})

        if kind == AuthType.API_KEY:
            name = r(auth.api_key_header)
            value = r(auth.api_key_value)
            if (auth.api_key_add_to or "").strip().lower() == "query":
                return ResolvedAuth(query_params={name: value})
            return ResolvedAuth(headers={name: value})

        if kind in OAUTH2_TYPES:
            token = r(auth.oauth2_access_token)
            if not token:
                return ResolvedAuth()
            return ResolvedAuth(headers={"Authorization": f"Bearer {token}"})

        if kind == AuthType.JWT_BEARER:
            token = r(auth.jwt_token)
            if not token:
                return ResolvedAuth()
            return ResolvedAuth(headers={"Authorization": f"Bearer {token}"})

        return ResolvedAuth()

    def resolve_inherited(self, request: Request, collection_id: Optional[str] = None) -> AuthSpec:
        """
        request -> folder chain (leaf to root) -> collection の順に、INHERIT 以外の auth が
        宣言された最初の階層を採用する（資格情報ごと継承）。どこにも無ければ NO_AUTH。
        """
        own = request.auth
        if own is not None and own.auth_type != AuthType.INHERIT_FROM_PARENT:
            return own

        visited: Set[str] = set()
        folder_id: Optional[str] = request.folder_id
        depth = 0
        while folder_id and folder_id not in visited and depth < self._max_depth:
            visited.add(folder_id)
            depth += 1
            folder = self._workspace.get_folder(folder_id)
            if folder is None:
                break
            collection_id = folder.collection_id
            if folder.auth is not None and folder.auth.auth_type != AuthType.INHERIT_FROM_PARENT:
                return folder.auth
            folder_id = folder.parent_id

        if collection_id:
            collection = self._workspace.get_collection(collection_id)
            auth = collection.auth if collection is not None else None
            if auth is not None and auth.auth_type != AuthType.INHERIT_FROM_PARENT:
                return auth

        return AuthSpec.none()
