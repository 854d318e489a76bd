# application/services/data_file_parser.py
from __future__ import annotations

import csv
import io
import json
from pathlib import PurePath
from typing import Any, Dict, List, Optional

from domain.exceptions import ValidationError

DataRow = Dict[str, str]


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return str(value)


class DataFileParser:
    """
    コレクションランの反復データ（CSV / JSON 配列）を行ごとの dict に変換する。
    値はすべて文字列。
    """

    def parse(self, content: Optional[str], filename: Optional[str]) -> List[DataRow]:
        if not content or not content.strip():
            raise ValidationError("Data file content must not be empty")
        if not filename or not filename.strip():
            raise ValidationError("Data file name must not be empty")

        ext = PurePath(filename.strip()).suffix.lower()
        if ext == ".csv":
            return self.parse_csv(content)
        if ext == ".json":
            return self.parse_json(content)
        raise ValidationError("Unsupported data file format. Use .csv or .json")

    def parse_csv(self, content: str) -> List[DataRow]:
        reader = csv.reader(io.StringIO(content.lstrip("\ufeff")))
        rows = [row for row in reader if any(cell.strip() for cell in row)]
        if not rows:
            return []

        header = [h.strip() for h in rows[0]]
        out: List[DataRow] = []
        for row in rows[1:]:
            item: DataRow = {}
            for i, name in enumerate(header):
                item[name] = row[i] if i < len(row) else ""
            out.append(item)
        return out

    def parse_json(self, content: str) -> List[DataRow]:
        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Invalid JSON data file: {exc.msg}") from exc

        if not isinstance(data, list):
            raise ValidationError("JSON data file must be an array of objects")

        out: List[DataRow] = []
        for index, obj in enumerate(data):
            if not isinstance(obj, dict):
                raise ValidationError(f"JSON data file element {index} is not an object")
            out.append({str(k): _stringify(v) for k, v in obj.items()})
        return out
