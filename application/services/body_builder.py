# application/services/body_builder.py
from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import parse_qsl, urlencode

from urllib3.filepost import encode_multipart_formdata

from application.services.variable_resolver import VariableResolver
from domain.workspace import RAW_CONTENT_TYPES, BodyType, RequestBody

BINARY_CONTENT_TYPE = "application/octet-stream"
FORM_URLENCODED_CONTENT_TYPE = "application/x-www-form-urlencoded"
JSON_CONTENT_TYPE = "application/json"


@dataclass(frozen=True)
class BuiltBody:
    content: Optional[Union[str, bytes]] = None
    content_type: Optional[str] = None
    # multipart の boundary はボディと一致している必要があるので上書きする
    force_content_type: bool = False


def _split_pairs(encoded: str) -> List[Tuple[str, str]]:
    return parse_qsl(encoded, keep_blank_values=True)


class RequestBodyBuilder:
    def __init__(self, variables: VariableResolver):
        self._variables = variables

    def build(self, body: Optional[RequestBody], variables: Dict[str, str]) -> BuiltBody:
        if body is None or body.body_type == BodyType.NONE:
            return BuiltBody()

        kind = body.body_type

        if kind in RAW_CONTENT_TYPES:
            return BuiltBody(
                content=self._r(body.raw_content, variables),
                content_type=RAW_CONTENT_TYPES[kind],
            )

        if kind == BodyType.X_WWW_FORM_URLENCODED:
            resolved = self._r(body.form_data, variables) or ""
            return BuiltBody(
                content=urlencode(_split_pairs(resolved)),
                content_type=FORM_URLENCODED_CONTENT_TYPE,
            )

        if kind == BodyType.FORM_DATA:
            resolved = self._r(body.form_data, variables) or ""
            boundary = f"----CourierFormBoundary{uuid.uuid4().hex}"
            payload, content_type = encode_multipart_formdata(_split_pairs(resolved), boundary=boundary)
            return BuiltBody(content=payload, content_type=content_type, force_content_type=True)

        if kind == BodyType.GRAPHQL:
            return BuiltBody(
                content=self.graphql_envelope(
                    self._r(body.graphql_query, variables),
                    self._r(body.graphql_variables, variables),
                    body.graphql_operation_name,
                ),
                content_type=JSON_CONTENT_TYPE,
            )

        if kind == BodyType.BINARY:
            # ファイル本体は送らない（Content-Type だけ付ける）
            return BuiltBody(content=None, content_type=BINARY_CONTENT_TYPE)

        return BuiltBody()

    @staticmethod
    def graphql_envelope(
        query: Optional[str],
        variables_text: Optional[str],
        operation_name: Optional[str] = None,
    ) -> str:
        envelope: Dict[str, Any] = {"query": query or ""}
        if variables_text and variables_text.strip():
            try:
                envelope["variables"] = json.loads(variables_text)
            except json.JSONDecodeError:
                envelope["variables"] = variables_text
        if operation_name:
            envelope["operationName"] = operation_name
        return json.dumps(envelope, ensure_ascii=False)

    def _r(self, value: Optional[str], variables: Dict[str, str]) -> Optional[str]:
        return self._variables.resolve_with(value, variables)
