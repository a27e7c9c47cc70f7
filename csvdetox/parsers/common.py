"""Window validation, header policy and row assembly shared by both parsers."""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, List, Optional, Sequence, Tuple

from csvdetox.errors import ParseError
from csvdetox.inference import infer_columns, untyped_columns
from csvdetox.models.table import Table
from csvdetox.options import ParseOptions
from csvdetox.util import _dedupe_names

logger = logging.getLogger(__name__)


def check_window(options: ParseOptions) -> None:
    if options.start_row < 1:
        raise ParseError("E_INVALID_RANGE", "startRow must be >= 1.", hint=f"Got startRow={options.start_row}.")
    if options.end_row is not None and options.end_row < options.start_row:
        raise ParseError(
            "E_INVALID_RANGE",
            "endRow must be >= startRow.",
            hint=f"Got startRow={options.start_row}, endRow={options.end_row}.",
        )
    if options.start_column < 1:
        raise ParseError(
            "E_INVALID_RANGE", "startColumn must be >= 1.", hint=f"Got startColumn={options.start_column}."
        )
    if options.end_column is not None and options.end_column < options.start_column:
        raise ParseError(
            "E_INVALID_RANGE",
            "endColumn must be >= startColumn.",
            hint=f"Got startColumn={options.start_column}, endColumn={options.end_column}.",
        )


def clip_columns(values: Sequence[Any], options: ParseOptions) -> List[Any]:
    start = options.start_column - 1
    end = options.end_column if options.end_column is not None else len(values)
    return list(values[start:end])


def header_name(v: Any) -> Optional[str]:
    """Display name for a header cell, or None when the cell is empty."""
    if v is None:
        return None
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    if isinstance(v, (datetime, date)):
        return v.isoformat()
    s = str(v)
    return s if s != "" else None


def resolve_headers(
    first: Sequence[Any], *, has_headers: bool, warnings: List[str]
) -> Tuple[List[str], bool]:
    """Turn the first windowed record into unique column names.

    Returns (names, synthesized) where `synthesized` tells whether any ColumnN name was generated.
    """
    if not has_headers:
        return [f"Column{i + 1}" for i in range(len(first))], True

    names: List[str] = []
    synthesized = False
    for i, v in enumerate(first):
        name = header_name(v)
        if name is None:
            name = f"Column{i + 1}"
            synthesized = True
        names.append(name)

    if not names:
        raise ParseError("E_NO_COLUMNS", "No columns found in the specified range.")

    unique, dups = _dedupe_names(names)
    if dups:
        warnings.append(
            "Duplicate column names found: " + ", ".join(dups) + ". "
            "Repeated names were given numeric suffixes (e.g. " + dups[0] + "_1)."
        )
    return unique, synthesized


def build_table(
    headers: List[str],
    records: Sequence[Sequence[Any]],
    options: ParseOptions,
    warnings: List[str],
    *,
    synthesized: bool,
) -> Table:
    """Pad/truncate records to the header width, null out empty strings and run inference."""
    width = len(headers)
    rows = []
    for rec in records:
        values = list(rec[:width]) + [None] * (width - len(rec))
        rows.append({h: (None if v == "" else v) for h, v in zip(headers, values)})

    columns = infer_columns(rows, headers) if options.infer_types else untyped_columns(headers)
    logger.debug("Built table with %d rows and %d columns", len(rows), width)
    return Table(rows, columns, warnings, synthesized)
