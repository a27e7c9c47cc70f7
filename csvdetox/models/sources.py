from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Optional, Union

import petl as etl

from csvdetox.errors import ParseError
from csvdetox.models.table import Table
from csvdetox.options import ParseOptions
from csvdetox.parsers.delimited import parse_delimited
from csvdetox.parsers.workbook import list_sheets, parse_workbook

logger = logging.getLogger(__name__)

MIME_CSV = "text/csv"
MIME_TEXT = "text/plain"
MIME_XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
# legacy binary workbooks; recognized only to give a clear error, openpyxl reads .xlsx alone
MIME_XLS = "application/vnd.ms-excel"

DELIMITED_TYPES = (MIME_CSV, MIME_TEXT)
WORKBOOK_TYPES = (MIME_XLSX,)

_EXTENSION_TYPES = {
    ".csv": MIME_CSV,
    ".tsv": MIME_TEXT,
    ".txt": MIME_TEXT,
    ".xlsx": MIME_XLSX,
    ".xlsm": MIME_XLSX,
    ".xls": MIME_XLS,
}


def _normalize_mime(mime_type: Optional[str]) -> str:
    # "text/csv; charset=utf-8" -> "text/csv"
    return (mime_type or "").split(";", 1)[0].strip().lower()


def _infer_mime_from_path(path: Union[str, Path]) -> Optional[str]:
    return _EXTENSION_TYPES.get(Path(path).suffix.lower())


def _unsupported_type(mime_type: Optional[str]) -> ParseError:
    if _normalize_mime(mime_type) == MIME_XLS:
        return ParseError(
            "E_UNSUPPORTED_TYPE",
            "Legacy .xls workbooks are not supported.",
            hint="Re-save the file as .xlsx (Excel Workbook) or export it to CSV.",
        )
    return ParseError(
        "E_UNSUPPORTED_TYPE",
        f"Unsupported file type: {mime_type!r}.",
        hint="Supported types: " + ", ".join(DELIMITED_TYPES + WORKBOOK_TYPES),
    )


def _coerce_options(options: Union[ParseOptions, Mapping[str, Any], None]) -> ParseOptions:
    if isinstance(options, ParseOptions):
        return options
    return ParseOptions.from_mapping(options)


def parse_bytes(
    data: bytes,
    mime_type: Optional[str],
    options: Union[ParseOptions, Mapping[str, Any], None] = None,
) -> Table:
    """Pick the parser for `mime_type` and parse `data`.

    Raises ParseError(E_UNSUPPORTED_TYPE) for MIME types that are neither delimited text nor a workbook.
    """
    kind = _normalize_mime(mime_type)
    opts = _coerce_options(options)
    if kind in DELIMITED_TYPES:
        return parse_delimited(data, opts)
    if kind in WORKBOOK_TYPES:
        return parse_workbook(data, opts)
    raise _unsupported_type(mime_type)


@dataclass(frozen=True)
class Source:
    """Raw bytes plus the MIME type that selects the parser."""
    data: bytes
    mime_type: str
    options: ParseOptions = field(default_factory=ParseOptions)

    # --- UX controls (bounded by design) ---
    preview_rows: int = 5
    preview_max_chars: int = 6_000

    def __post_init__(self) -> None:
        object.__setattr__(self, "options", _coerce_options(self.options))
        kind = _normalize_mime(self.mime_type)
        if kind not in DELIMITED_TYPES + WORKBOOK_TYPES:
            raise _unsupported_type(self.mime_type)
        object.__setattr__(self, "mime_type", kind)

    @classmethod
    def from_path(
        cls,
        path: Union[str, Path],
        *,
        mime_type: Optional[str] = None,
        options: Union[ParseOptions, Mapping[str, Any], None] = None,
    ) -> "Source":
        """Read a local file; the MIME type is guessed from the extension unless given."""
        kind = mime_type or _infer_mime_from_path(path)
        if kind is None:
            raise ParseError(
                "E_UNSUPPORTED_TYPE",
                f"Could not infer file type from path '{path}'.",
                hint="Pass mime_type explicitly, e.g. Source.from_path('data.dat', mime_type='text/csv').",
            )
        return cls(Path(path).read_bytes(), kind, _coerce_options(options))

    @property
    def is_workbook(self) -> bool:
        return self.mime_type in WORKBOOK_TYPES

    def parse(self) -> Table:
        table = parse_bytes(self.data, self.mime_type, self.options)
        logger.debug("Parsed %s source: %d rows, %d columns", self.mime_type, table.row_count, len(table.columns))
        return table

    def sheets(self) -> List[str]:
        """Sheet names for workbook sources; delimited text has none."""
        if not self.is_workbook:
            return []
        return list_sheets(self.data)

    def with_options(self, **changes: Any) -> "Source":
        """Same bytes with some parse options replaced (snake_case or camelCase keys)."""
        merged = {**self.options.to_dict(), **changes}
        return Source(self.data, self.mime_type, ParseOptions.from_mapping(merged))

    # ---------- Peepholes / inspection ----------
    def head(self, n: Optional[int] = None) -> Table:
        n = n or self.preview_rows
        return self.with_options(max_rows=n).parse()

    def _preview_str(self) -> str:
        """Bounded preview string."""
        s = str(etl.look(self.head().to_petl(), limit=self.preview_rows))
        if len(s) > self.preview_max_chars:
            s = s[: self.preview_max_chars] + "\n… (truncated)"
        return s

    def __str__(self) -> str:
        return f"Source(mime_type={self.mime_type}, bytes={len(self.data)})\n" + self._preview_str()
