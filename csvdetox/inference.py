"""Value classification and column type inference.

Check order is fixed: null, number, boolean, date, string. Numbers are tested before booleans,
so "1" and "0" always classify as number.
"""
from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Sequence

from dateutil import parser as dateparser

from csvdetox.models.table import ColumnMetadata
from csvdetox.util import _is_null

SAMPLE_SIZE = 5
MAJORITY_SHARE = 0.8
# fields missing from a generic date string come from here, never from today
_DATE_DEFAULT = datetime(1970, 1, 1)

# 123, -123, 123.45, 1,234.56, .5, 1e10, -1.23e-4
_NUMBER_RE = re.compile(r"^-?(?=[\d,.]*\d)(?:[\d,]+\.?\d*|\d*\.?\d+)(?:[eE][+-]?\d+)?$")

_BOOLEAN_TOKENS = frozenset({"true", "false", "yes", "no", "y", "n", "1", "0"})

_DATE_PATTERNS = (
    re.compile(r"^\d{4}-\d{2}-\d{2}"),  # ISO date / datetime
    re.compile(r"^\d{4}/\d{2}/\d{2}"),
    re.compile(r"^\d{1,2}/\d{1,2}/\d{4}"),
    re.compile(r"^[A-Za-z]{3,9}\s+\d{1,2},?\s+\d{4}"),  # Month DD, YYYY
    re.compile(r"^\d{1,2}\s+[A-Za-z]{3,9}\s+\d{4}"),  # DD Month YYYY
)


def is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if not isinstance(value, str):
        return False
    s = value.strip()
    if s == "":
        return False
    return _NUMBER_RE.match(s) is not None


def is_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return True
    if not isinstance(value, str):
        return False
    return value.strip().lower() in _BOOLEAN_TOKENS


def parse_date(value: str) -> datetime:
    """Generic date parse; raises ValueError when the text is not a date."""
    try:
        return dateparser.parse(value, default=_DATE_DEFAULT)
    except (ValueError, OverflowError) as e:
        raise ValueError(f"Not a date: {value!r}") from e


def is_date(value: Any) -> bool:
    if isinstance(value, (datetime, date)):
        return True
    if not isinstance(value, str):
        return False
    s = value.strip()
    if s == "":
        return False
    if not any(p.match(s) for p in _DATE_PATTERNS):
        return False
    try:
        parse_date(s)
    except ValueError:
        return False
    return True


def classify(value: Any) -> str:
    """Semantic type of one scalar: null, number, boolean, date or string."""
    if _is_null(value):
        return "null"
    if is_number(value):
        return "number"
    if is_boolean(value):
        return "boolean"
    if is_date(value):
        return "date"
    return "string"


def infer_column_type(values: Iterable[Any]) -> str:
    counts: Dict[str, int] = {}
    total = 0
    for v in values:
        t = classify(v)
        if t == "null":
            continue
        counts[t] = counts.get(t, 0) + 1
        total += 1

    if total == 0:
        return "string"
    if len(counts) == 1:
        return next(iter(counts))
    for t, n in counts.items():
        if n / total >= MAJORITY_SHARE:
            return t
    return "string"


def infer_column(name: str, values: Sequence[Any]) -> ColumnMetadata:
    non_null = [v for v in values if not _is_null(v)]
    return ColumnMetadata(
        name=name,
        type=infer_column_type(non_null),
        non_null_count=len(non_null),
        null_count=len(values) - len(non_null),
        sample_values=tuple(non_null[:SAMPLE_SIZE]),
    )


def infer_columns(rows: Sequence[Dict[str, Any]], names: Sequence[str]) -> List[ColumnMetadata]:
    return [infer_column(n, [r.get(n) for r in rows]) for n in names]


def untyped_columns(names: Sequence[str]) -> List[ColumnMetadata]:
    """Metadata used when inference is disabled: every column is a string with zero counts."""
    return [ColumnMetadata(n) for n in names]
