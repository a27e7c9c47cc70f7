from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional

from csvdetox.errors import DetoxUserError

_CAMEL_KEYS = {
    "maxRows": "max_rows",
    "inferTypes": "infer_types",
    "sheetName": "sheet_name",
    "sheetIndex": "sheet_index",
    "startRow": "start_row",
    "endRow": "end_row",
    "startColumn": "start_column",
    "endColumn": "end_column",
    "hasHeaders": "has_headers",
}


@dataclass(frozen=True)
class ParseOptions:
    """How to turn a file into a table.

    Rows and columns are 1-based and inclusive. `sheet_name` wins over `sheet_index`
    (0-based); both only apply to workbooks, `delimiter` only to delimited text.
    """
    max_rows: Optional[int] = None
    infer_types: bool = True
    delimiter: Optional[str] = None
    sheet_name: Optional[str] = None
    sheet_index: Optional[int] = None
    start_row: int = 1
    end_row: Optional[int] = None
    start_column: int = 1
    end_column: Optional[int] = None
    has_headers: bool = True

    def __post_init__(self) -> None:
        for name in ("max_rows", "sheet_index", "start_row", "end_row", "start_column", "end_column"):
            v = getattr(self, name)
            if v is None:
                continue
            if isinstance(v, bool) or not isinstance(v, int):
                raise DetoxUserError(
                    "E_OPTIONS",
                    f"Parse option '{name}' must be an integer, got {v!r}.",
                )
        for name in ("infer_types", "has_headers"):
            if not isinstance(getattr(self, name), bool):
                raise DetoxUserError(
                    "E_OPTIONS",
                    f"Parse option '{name}' must be a boolean, got {getattr(self, name)!r}.",
                )
        if self.max_rows is not None and self.max_rows < 0:
            raise DetoxUserError("E_OPTIONS", "Parse option 'max_rows' must be >= 0.")
        if self.delimiter is not None and (not isinstance(self.delimiter, str) or len(self.delimiter) != 1):
            raise DetoxUserError(
                "E_OPTIONS",
                f"Parse option 'delimiter' must be a single character, got {self.delimiter!r}.",
                hint="Example: ParseOptions(delimiter=';')",
            )
        if self.sheet_name is not None and not isinstance(self.sheet_name, str):
            raise DetoxUserError("E_OPTIONS", "Parse option 'sheet_name' must be a string.")

    @classmethod
    def from_mapping(cls, d: Optional[Mapping[str, Any]]) -> "ParseOptions":
        """Build options from a stored configuration record (camelCase or snake_case keys)."""
        if d is None:
            return cls()
        if not isinstance(d, Mapping):
            raise DetoxUserError(
                "E_OPTIONS",
                "Parse options must be a mapping.",
                hint="Example: {'startRow': 3, 'hasHeaders': true}",
            )
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for k, v in d.items():
            key = _CAMEL_KEYS.get(k, k)
            if key not in known:
                raise DetoxUserError(
                    "E_OPTIONS",
                    f"Unknown parse option {k!r}.",
                    hint="Known options: " + ", ".join(sorted(known)),
                )
            if v is not None:
                kwargs[key] = v
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}
