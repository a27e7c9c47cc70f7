from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

import petl as etl

from csvdetox.errors import DetoxUserError

COLUMN_TYPES = ("string", "number", "boolean", "date", "null")


@dataclass(frozen=True)
class ColumnMetadata:
    name: str
    type: str = "string"
    non_null_count: int = 0
    null_count: int = 0
    sample_values: Tuple[Any, ...] = ()

    def renamed(self, name: str) -> "ColumnMetadata":
        return replace(self, name=name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "nonNullCount": self.non_null_count,
            "nullCount": self.null_count,
            "sampleValues": list(self.sample_values),
        }


@dataclass
class Table:
    """Rows keyed by column name plus ordered column metadata.

    `columns` order is authoritative for display; every row carries exactly the column names as keys.
    A parser returns a fresh Table on every call and transforms never mutate their input.
    """
    rows: List[Dict[str, Any]] = field(default_factory=list)
    columns: List[ColumnMetadata] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    has_default_column_names: bool = False

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def column(self, name: str) -> Optional[ColumnMetadata]:
        for c in self.columns:
            if c.name == name:
                return c
        return None

    def values(self, name: str) -> List[Any]:
        if self.column(name) is None:
            raise DetoxUserError(
                "E_TABLE_UNKNOWN_COL",
                f"Unknown column {name!r}.",
                hint="Available columns: " + ", ".join(self.column_names),
            )
        return [r.get(name) for r in self.rows]

    # ---------- PETL bridge ----------
    def to_petl(self):
        """Return a PETL view over the rows, header in column order."""
        names = self.column_names
        return etl.wrap([tuple(names)] + [tuple(r.get(n) for n in names) for r in self.rows])

    @classmethod
    def from_petl(
        cls,
        table,
        *,
        warnings: Iterable[str] = (),
        columns: Optional[List[ColumnMetadata]] = None,
        has_default_column_names: bool = False,
    ) -> "Table":
        """Materialize a PETL table.

        Column metadata is carried over by name where given; new columns get blank string metadata
        until the next inference pass.
        """
        header = [str(h) for h in etl.header(table)]
        rows = [dict(zip(header, row)) for row in etl.data(table)]
        known = {c.name: c for c in (columns or [])}
        cols = [known.get(h) or ColumnMetadata(h) for h in header]
        return cls(rows, cols, list(warnings), has_default_column_names)

    def with_rows(self, rows: List[Dict[str, Any]]) -> "Table":
        return Table(rows, list(self.columns), list(self.warnings), self.has_default_column_names)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rows": [dict(r) for r in self.rows],
            "columns": [c.to_dict() for c in self.columns],
            "rowCount": self.row_count,
            "warnings": list(self.warnings),
            "hasDefaultColumnNames": self.has_default_column_names,
        }


# A parser's output is a Table; the alias names the role.
ParseResult = Table
