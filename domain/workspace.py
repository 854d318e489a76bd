# domain/workspace.py
"""
Read-only entity graph supplied by the persistence layer:
Collection -> Folder tree (parent_id links) -> Request.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class AuthType(str, Enum):
    NO_AUTH = "NO_AUTH"
    INHERIT_FROM_PARENT = "INHERIT_FROM_PARENT"
    API_KEY = "API_KEY"
    BEARER_TOKEN = "BEARER_TOKEN"
    BASIC_AUTH = "BASIC_AUTH"
    OAUTH2_AUTHORIZATION_CODE = "OAUTH2_AUTHORIZATION_CODE"
    OAUTH2_CLIENT_CREDENTIALS = "OAUTH2_CLIENT_CREDENTIALS"
    OAUTH2_IMPLICIT = "OAUTH2_IMPLICIT"
    OAUTH2_PASSWORD = "OAUTH2_PASSWORD"
    JWT_BEARER = "JWT_BEARER"

    @property
    def is_concrete(self) -> bool:
        return self not in (AuthType.NO_AUTH, AuthType.INHERIT_FROM_PARENT)


OAUTH2_TYPES = frozenset(
    {
        AuthType.OAUTH2_AUTHORIZATION_CODE,
        AuthType.OAUTH2_CLIENT_CREDENTIALS,
        AuthType.OAUTH2_IMPLICIT,
        AuthType.OAUTH2_PASSWORD,
    }
)


@dataclass(frozen=True)
class AuthSpec:
    auth_type: AuthType = AuthType.NO_AUTH
    api_key_header: Optional[str] = None
    api_key_value: Optional[str] = None
    api_key_add_to: Optional[str] = None  # "header" | "query"
    bearer_token: Optional[str] = None
    basic_username: Optional[str] = None
    basic_password: Optional[str] = None
    oauth2_grant_type: Optional[str] = None
    oauth2_access_token: Optional[str] = None
    jwt_token: Optional[str] = None

    @classmethod
    def none(cls) -> "AuthSpec":
        return cls(auth_type=AuthType.NO_AUTH)

    @classmethod
    def inherit(cls) -> "AuthSpec":
        return cls(auth_type=AuthType.INHERIT_FROM_PARENT)


class BodyType(str, Enum):
    NONE = "NONE"
    RAW_JSON = "RAW_JSON"
    RAW_XML = "RAW_XML"
    RAW_HTML = "RAW_HTML"
    RAW_TEXT = "RAW_TEXT"
    RAW_YAML = "RAW_YAML"
    FORM_DATA = "FORM_DATA"
    X_WWW_FORM_URLENCODED = "X_WWW_FORM_URLENCODED"
    GRAPHQL = "GRAPHQL"
    BINARY = "BINARY"


RAW_CONTENT_TYPES = {
    BodyType.RAW_JSON: "application/json",
    BodyType.RAW_XML: "application/xml",
    BodyType.RAW_HTML: "text/html",
    BodyType.RAW_TEXT: "text/plain",
    BodyType.RAW_YAML: "application/x-yaml",
}


@dataclass(frozen=True)
class RequestBody:
    body_type: BodyType = BodyType.NONE
    raw_content: Optional[str] = None
    form_data: Optional[str] = None  # "k=v&k2=v2"
    graphql_query: Optional[str] = None
    graphql_variables: Optional[str] = None
    graphql_operation_name: Optional[str] = None
    binary_file_name: Optional[str] = None


@dataclass(frozen=True)
class KeyValueEntry:
    key: str
    value: str = ""
    description: Optional[str] = None
    enabled: bool = True


@dataclass(frozen=True)
class VariableEntry:
    key: str
    value: str = ""
    enabled: bool = True
    secret: bool = False


@dataclass(frozen=True)
class Request:
    id: str
    folder_id: str
    name: str
    method: str = "GET"
    url: str = ""
    sort_order: int = 0
    headers: List[KeyValueEntry] = field(default_factory=list)
    params: List[KeyValueEntry] = field(default_factory=list)
    body: Optional[RequestBody] = None
    auth: Optional[AuthSpec] = None
    pre_request_script: Optional[str] = None
    post_response_script: Optional[str] = None


@dataclass(frozen=True)
class Folder:
    id: str
    collection_id: str
    name: str
    parent_id: Optional[str] = None
    sort_order: int = 0
    pre_request_script: Optional[str] = None
    post_response_script: Optional[str] = None
    auth: Optional[AuthSpec] = None


@dataclass(frozen=True)
class Collection:
    id: str
    team_id: str
    name: str
    pre_request_script: Optional[str] = None
    post_response_script: Optional[str] = None
    auth: Optional[AuthSpec] = None
