from __future__ import annotations

import functools
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

import petl as etl

from csvdetox.casting import CAST_TYPES, CastFailure, cast_to_string, try_cast
from csvdetox.errors import DetoxUserError
from csvdetox.inference import is_number
from csvdetox.models.table import ColumnMetadata, Table
from csvdetox.util import (
    _is_blank,
    _is_null,
    _param_bool,
    _param_choice,
    _param_str,
    _param_str_list,
    _require_columns,
)

_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")


def _snake_params(params: Dict[str, Any]) -> Dict[str, Any]:
    """Accept camelCase keys (as stored by the UI) alongside snake_case ones."""
    return {_CAMEL.sub("_", k).lower() if isinstance(k, str) else k: v for k, v in params.items()}


@dataclass
class StepContext:
    """Side channel for one step: warnings it raised and counters such as cast errors."""
    warnings: List[str] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)


# ---------------- Transform implementation registry ----------------

class TransformImpl:
    """Internal implementation for a Transform op.

    Users interact with `Transform(op, params)`.
    Implementations are registered by op name and invoked by `Transform.apply`.
    `config_cls.from_params` validates params into a typed config before `apply` runs.
    """

    op: str = ""
    config_cls: Optional[Type[Any]] = None

    @classmethod
    def validate_params(cls, params: Dict[str, Any]) -> Any:
        if cls.config_cls is None:
            return dict(params)
        return cls.config_cls.from_params(_snake_params(params), op=cls.op)

    @classmethod
    def apply(cls, table: Table, *, config: Any, context: StepContext) -> Table:
        raise DetoxUserError(
            "E_OP_NOT_IMPL",
            f"Transform op '{cls.op}' is not implemented.",
            hint="Implement it as a TransformImpl and register it.",
        )


TRANSFORM_REGISTRY: Dict[str, Type[TransformImpl]] = {}


def register_transform(op: str) -> Callable[[Type[TransformImpl]], Type[TransformImpl]]:
    """Decorator to register a TransformImpl under an op string."""

    def deco(cls: Type[TransformImpl]) -> Type[TransformImpl]:
        cls.op = op
        TRANSFORM_REGISTRY[op] = cls
        return cls

    return deco


@dataclass(frozen=True)
class Transform:
    """One pipeline step. Immutable: editing a step means replacing it."""
    op: str
    params: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None

    def impl(self) -> Type[TransformImpl]:
        impl = TRANSFORM_REGISTRY.get(self.op)
        if impl is None:
            raise DetoxUserError(
                "E_OP_NOT_IMPL",
                f"Transform op '{self.op}' is not implemented.",
                hint="Supported ops: " + ", ".join(sorted(TRANSFORM_REGISTRY.keys())),
            )
        return impl

    def config(self) -> Any:
        return self.impl().validate_params(self.params)

    def apply(self, table: Table, *, context: Optional[StepContext] = None) -> Table:
        """Apply this step to a table and return a new table (the input is left untouched).

        Column metadata of the result is structural only; the pipeline re-infers types afterwards.
        """
        impl = self.impl()
        config = impl.validate_params(self.params)
        ctx = context if context is not None else StepContext()
        out = impl.apply(table, config=config, context=ctx)
        out.warnings.extend(ctx.warnings)
        return out

    def to_ir(self) -> Dict[str, Any]:
        """Persisted step shape: {id, type, config}."""
        d: Dict[str, Any] = {}
        if self.id is not None:
            d["id"] = self.id
        d["type"] = self.op
        d["config"] = dict(self.params)
        return d

    @classmethod
    def from_ir(cls, d: Dict[str, Any]) -> "Transform":
        return _transform_from_ir(d)

    def __str__(self) -> str:
        return f"Transform(op={self.op}, params={self.params})"


def _transform_from_ir(d: Any) -> Transform:
    """Build a Transform from `{id, type, config}` (also accepts `{op, params}`)."""
    if not isinstance(d, dict):
        raise DetoxUserError(
            "E_IR_STEP",
            "IR step must be a mapping.",
            hint="Example: {id: s1, type: trim, config: {columns: [name]}}",
        )
    op = d.get("type", d.get("op"))
    if not isinstance(op, str) or not op:
        raise DetoxUserError(
            "E_IR_STEP",
            "IR step requires a non-empty 'type' string.",
            hint="Supported types: " + ", ".join(sorted(TRANSFORM_REGISTRY.keys())),
        )
    params = d.get("config", d.get("params")) or {}
    if not isinstance(params, dict):
        raise DetoxUserError(
            "E_IR_STEP",
            f"IR step '{op}' config must be a mapping.",
            hint=str(params),
        )
    step_id = d.get("id")
    return Transform(op, params=dict(params), id=None if step_id is None else str(step_id))


def _with_columns(table: Table, names: List[str], rows: List[Dict[str, Any]]) -> Table:
    """New table with the given column order; metadata carried by name, fresh for new columns."""
    known = {c.name: c for c in table.columns}
    cols = [known.get(n) or ColumnMetadata(n) for n in names]
    return Table(rows, cols, list(table.warnings), table.has_default_column_names)


# =========================
# Case and whitespace
# =========================

@dataclass(frozen=True)
class ColumnsConfig:
    columns: Tuple[str, ...]

    @classmethod
    def from_params(cls, params: Dict[str, Any], op: str = "columns") -> "ColumnsConfig":
        return cls(tuple(_param_str_list(op, params, "columns", example="{'columns': ['name']}")))


class _StringCellTransform(TransformImpl):
    config_cls = ColumnsConfig

    @staticmethod
    def _fn(s: str) -> str:
        return s

    @classmethod
    def apply(cls, table: Table, *, config: ColumnsConfig, context: StepContext) -> Table:
        _require_columns(cls.op, config.columns, table.column_names)
        fn = cls._fn
        out = etl.convert(table.to_petl(), tuple(config.columns), lambda v: fn(v) if isinstance(v, str) else v)
        return Table.from_petl(
            out,
            warnings=table.warnings,
            columns=table.columns,
            has_default_column_names=table.has_default_column_names,
        )


@register_transform("trim")
class TrimTransform(_StringCellTransform):
    _fn = staticmethod(str.strip)


@register_transform("uppercase")
class UppercaseTransform(_StringCellTransform):
    _fn = staticmethod(str.upper)


@register_transform("lowercase")
class LowercaseTransform(_StringCellTransform):
    _fn = staticmethod(str.lower)


# =========================
# Row selection
# =========================

def _cell_key(v: Any) -> Tuple[str, Any]:
    # keeps 1, 1.0 and True apart
    return (type(v).__name__, v)


@dataclass(frozen=True)
class DeduplicateConfig:
    columns: Tuple[str, ...] = ()

    @classmethod
    def from_params(cls, params: Dict[str, Any], op: str = "deduplicate") -> "DeduplicateConfig":
        cols = _param_str_list(op, params, "columns", required=False)
        return cls(tuple(cols))


@register_transform("deduplicate")
class DeduplicateTransform(TransformImpl):
    config_cls = DeduplicateConfig

    @classmethod
    def apply(cls, table: Table, *, config: DeduplicateConfig, context: StepContext) -> Table:
        cols = list(config.columns) or table.column_names
        _require_columns("deduplicate", cols, table.column_names)
        seen = set()
        kept = []
        for row in table.rows:
            key = tuple(_cell_key(row.get(c)) for c in cols)
            if key in seen:
                continue
            seen.add(key)
            kept.append(dict(row))
        return table.with_rows(kept)


FILTER_OPERATORS = ("equals", "not_equals", "contains", "not_contains", "greater_than", "less_than")


def _to_float(v: Any) -> float:
    if isinstance(v, (int, float)):
        return float(v)
    return float(str(v).strip().replace(",", ""))


def _as_text(v: Any) -> str:
    return "" if v is None else cast_to_string(v)


@dataclass(frozen=True)
class FilterConfig:
    column: str
    operator: str
    value: Any

    @classmethod
    def from_params(cls, params: Dict[str, Any], op: str = "filter") -> "FilterConfig":
        example = "{'column': 'age', 'operator': 'greater_than', 'value': 30}"
        column = _param_str(op, params, "column", example=example)
        operator = _param_choice(op, params, "operator", FILTER_OPERATORS)
        if "value" not in params:
            raise DetoxUserError("E_FILTER_PARAMS", "filter requires params.value.", hint=example)
        return cls(column, operator, params["value"])

    def matches(self, cell: Any) -> bool:
        target = self.value
        numeric = is_number(cell) and is_number(target)
        if self.operator in ("equals", "not_equals"):
            if numeric:
                eq = _to_float(cell) == _to_float(target)
            else:
                eq = _as_text(cell) == _as_text(target)
            return eq if self.operator == "equals" else not eq
        if self.operator in ("contains", "not_contains"):
            if _is_null(cell):
                return self.operator == "not_contains"
            found = _as_text(target) in _as_text(cell)
            return found if self.operator == "contains" else not found
        if _is_null(cell) or _is_null(target):
            return False
        if numeric:
            a, b = _to_float(cell), _to_float(target)
        else:
            a, b = _as_text(cell), _as_text(target)
        return a > b if self.operator == "greater_than" else a < b


@register_transform("filter")
class FilterTransform(TransformImpl):
    config_cls = FilterConfig

    @classmethod
    def apply(cls, table: Table, *, config: FilterConfig, context: StepContext) -> Table:
        _require_columns("filter", [config.column], table.column_names)
        out = etl.select(table.to_petl(), lambda rec: config.matches(rec[config.column]))
        return Table.from_petl(
            out,
            warnings=table.warnings,
            columns=table.columns,
            has_default_column_names=table.has_default_column_names,
        )


# =========================
# Column structure
# =========================

@dataclass(frozen=True)
class RenameColumnConfig:
    old_name: str
    new_name: str

    @classmethod
    def from_params(cls, params: Dict[str, Any], op: str = "rename_column") -> "RenameColumnConfig":
        example = "{'old_name': 'Nm', 'new_name': 'Name'}"
        return cls(
            _param_str(op, params, "old_name", example=example),
            _param_str(op, params, "new_name", example=example),
        )


@register_transform("rename_column")
class RenameColumnTransform(TransformImpl):
    config_cls = RenameColumnConfig

    @classmethod
    def apply(cls, table: Table, *, config: RenameColumnConfig, context: StepContext) -> Table:
        _require_columns("rename_column", [config.old_name], table.column_names)
        if config.new_name != config.old_name and config.new_name in table.column_names:
            raise DetoxUserError(
                "E_RENAME_COLUMN_EXISTS",
                f"Column {config.new_name!r} already exists.",
                hint="Pick a name that is not already used, or remove the other column first.",
            )
        out = etl.rename(table.to_petl(), config.old_name, config.new_name)
        cols = [c.renamed(config.new_name) if c.name == config.old_name else c for c in table.columns]
        return Table.from_petl(
            out,
            warnings=table.warnings,
            columns=cols,
            has_default_column_names=table.has_default_column_names,
        )


@register_transform("remove_column")
class RemoveColumnTransform(TransformImpl):
    config_cls = ColumnsConfig

    @classmethod
    def apply(cls, table: Table, *, config: ColumnsConfig, context: StepContext) -> Table:
        _require_columns("remove_column", config.columns, table.column_names)
        out = etl.cutout(table.to_petl(), *config.columns)
        return Table.from_petl(
            out,
            warnings=table.warnings,
            columns=table.columns,
            has_default_column_names=table.has_default_column_names,
        )


# =========================
# Cast
# =========================

CAST_ON_ERROR = ("fail", "null", "skip")


@dataclass(frozen=True)
class CastColumnConfig:
    column: str
    target_type: str
    on_error: str = "fail"
    format: Optional[str] = None

    @classmethod
    def from_params(cls, params: Dict[str, Any], op: str = "cast_column") -> "CastColumnConfig":
        example = "{'column': 'age', 'target_type': 'number', 'on_error': 'null'}"
        column = _param_str(op, params, "column", example=example)
        target = params.get("target_type")
        if target not in CAST_TYPES:
            raise DetoxUserError(
                "E_CAST_TYPE_UNSUPPORTED",
                f"Unsupported cast type for {column!r}: {target!r}.",
                hint="Supported types: " + ", ".join(CAST_TYPES) + ".",
            )
        on_error = params.get("on_error", "fail")
        if on_error not in CAST_ON_ERROR:
            raise DetoxUserError(
                "E_CAST_ON_ERROR",
                "cast_column params.on_error must be one of: 'fail', 'null', 'skip'.",
                hint=example,
            )
        fmt = _param_str(op, params, "format", required=False)
        return cls(column, target, on_error, fmt)


@register_transform("cast_column")
class CastColumnTransform(TransformImpl):
    config_cls = CastColumnConfig

    @classmethod
    def apply(cls, table: Table, *, config: CastColumnConfig, context: StepContext) -> Table:
        _require_columns("cast_column", [config.column], table.column_names)
        col = config.column
        rows: List[Dict[str, Any]] = []
        errors = 0
        skipped = 0
        for i, row in enumerate(table.rows):
            try:
                value = try_cast(row.get(col), config.target_type, config.format)
            except CastFailure as e:
                errors += 1
                if config.on_error == "fail":
                    raise DetoxUserError(
                        "E_CAST_FAILED",
                        f"Failed to cast value in row {i + 1}: {e}",
                        hint="Use on_error='null' or on_error='skip' to handle messy rows.",
                    ) from e
                if config.on_error == "skip":
                    skipped += 1
                    continue
                value = None
            new_row = dict(row)
            new_row[col] = value
            rows.append(new_row)

        context.stats["cast_errors"] = errors
        context.stats["skipped_rows"] = skipped
        out = table.with_rows(rows)
        if errors:
            msg = f"Cast operation had {errors} error(s). Mode: {config.on_error}."
            if skipped:
                msg += f" Skipped {skipped} row(s)."
            context.warnings.append(msg)
        return out


# =========================
# Split / merge
# =========================

SPLIT_METHODS = ("delimiter", "position", "regex")


@dataclass(frozen=True)
class SplitColumnConfig:
    column: str
    method: str
    new_columns: Tuple[str, ...]
    delimiter: Optional[str] = None
    positions: Tuple[int, ...] = ()
    pattern: Optional[str] = None
    trim: bool = True
    keep_original: bool = False
    max_splits: Optional[int] = None

    @classmethod
    def from_params(cls, params: Dict[str, Any], op: str = "split_column") -> "SplitColumnConfig":
        example = "{'column': 'name', 'method': 'delimiter', 'delimiter': ' ', 'new_columns': ['first', 'last']}"
        column = _param_str(op, params, "column", example=example)
        method = _param_choice(op, params, "method", SPLIT_METHODS)
        new_columns = _param_str_list(op, params, "new_columns", example=example)
        if len(set(new_columns)) != len(new_columns):
            raise DetoxUserError("E_SPLIT_COLUMN_PARAMS", "New column names must be unique.", hint=example)
        if any(not c.strip() for c in new_columns):
            raise DetoxUserError("E_SPLIT_COLUMN_PARAMS", "New column names cannot be blank.", hint=example)

        max_splits = params.get("max_splits")
        if max_splits is not None and (isinstance(max_splits, bool) or not isinstance(max_splits, int) or max_splits < 0):
            raise DetoxUserError("E_SPLIT_COLUMN_PARAMS", "split_column params.max_splits must be an integer >= 0.")

        delimiter = None
        positions: Tuple[int, ...] = ()
        pattern = None
        if method == "delimiter":
            delimiter = params.get("delimiter")
            if not isinstance(delimiter, str) or delimiter == "":
                raise DetoxUserError(
                    "E_SPLIT_COLUMN_PARAMS",
                    "split_column with method 'delimiter' requires a non-empty params.delimiter.",
                    hint=example,
                )
        elif method == "position":
            raw = params.get("positions")
            if (
                not isinstance(raw, (list, tuple))
                or not raw
                or not all(isinstance(p, int) and not isinstance(p, bool) and p >= 0 for p in raw)
            ):
                raise DetoxUserError(
                    "E_SPLIT_COLUMN_PARAMS",
                    "split_column with method 'position' requires params.positions as non-negative integers.",
                    hint="Example: {'method': 'position', 'positions': [0, 3], 'new_columns': ['area', 'number']}",
                )
            positions = tuple(sorted(raw))
        else:
            pattern = params.get("pattern")
            if not isinstance(pattern, str) or not pattern:
                raise DetoxUserError(
                    "E_SPLIT_COLUMN_PARAMS",
                    "split_column with method 'regex' requires params.pattern.",
                    hint="Example: {'method': 'regex', 'pattern': '[-/]'}",
                )
            try:
                re.compile(pattern)
            except re.error as e:
                raise DetoxUserError(
                    "E_SPLIT_COLUMN_PARAMS",
                    f"Invalid regex pattern {pattern!r}: {e}",
                ) from e

        return cls(
            column=column,
            method=method,
            new_columns=tuple(new_columns),
            delimiter=delimiter,
            positions=positions,
            pattern=pattern,
            trim=_param_bool(op, params, "trim", True),
            keep_original=_param_bool(op, params, "keep_original", False),
            max_splits=max_splits,
        )

    def split(self, text: str) -> List[str]:
        if self.method == "delimiter":
            return text.split(self.delimiter, -1 if self.max_splits is None else self.max_splits)
        if self.method == "position":
            bounds = list(self.positions) + [None]
            return [text[bounds[i]:bounds[i + 1]] for i in range(len(self.positions))]
        return re.split(self.pattern, text, maxsplit=self.max_splits or 0)


@register_transform("split_column")
class SplitColumnTransform(TransformImpl):
    config_cls = SplitColumnConfig

    @classmethod
    def apply(cls, table: Table, *, config: SplitColumnConfig, context: StepContext) -> Table:
        names = table.column_names
        _require_columns("split_column", [config.column], names)
        clash = [
            c for c in config.new_columns
            if c in names and not (c == config.column and not config.keep_original)
        ]
        if clash:
            raise DetoxUserError(
                "E_SPLIT_COLUMN_EXISTS",
                f"New column(s) already exist: {clash}.",
                hint="Choose new column names that are not in the table.",
            )

        pos = names.index(config.column)
        if config.keep_original:
            out_names = names[: pos + 1] + list(config.new_columns) + names[pos + 1:]
        else:
            out_names = names[:pos] + list(config.new_columns) + names[pos + 1:]

        rows = []
        for row in table.rows:
            value = row.get(config.column)
            if _is_null(value):
                parts: List[Optional[str]] = []
            else:
                parts = config.split(cast_to_string(value))
                if config.trim:
                    parts = [p.strip() if p is not None else None for p in parts]
            new_row = {n: row.get(n) for n in out_names if n not in config.new_columns}
            for i, n in enumerate(config.new_columns):
                new_row[n] = parts[i] if i < len(parts) else None
            rows.append({n: new_row.get(n) for n in out_names})
        return _with_columns(table, out_names, rows)


@dataclass(frozen=True)
class MergeColumnsConfig:
    columns: Tuple[str, ...]
    new_column: str
    separator: str = ""
    skip_null: bool = True
    keep_original: bool = False

    @classmethod
    def from_params(cls, params: Dict[str, Any], op: str = "merge_columns") -> "MergeColumnsConfig":
        example = "{'columns': ['first', 'last'], 'separator': ' ', 'new_column': 'full_name'}"
        columns = _param_str_list(op, params, "columns", example=example)
        if len(set(columns)) != len(columns):
            raise DetoxUserError("E_MERGE_COLUMNS_PARAMS", "Columns to merge must be unique.", hint=example)
        new_column = _param_str(op, params, "new_column", example=example)
        separator = params.get("separator", "")
        if not isinstance(separator, str):
            raise DetoxUserError("E_MERGE_COLUMNS_PARAMS", "merge_columns params.separator must be a string.")
        return cls(
            columns=tuple(columns),
            new_column=new_column,
            separator=separator,
            skip_null=_param_bool(op, params, "skip_null", True),
            keep_original=_param_bool(op, params, "keep_original", False),
        )


@register_transform("merge_columns")
class MergeColumnsTransform(TransformImpl):
    config_cls = MergeColumnsConfig

    @classmethod
    def apply(cls, table: Table, *, config: MergeColumnsConfig, context: StepContext) -> Table:
        names = table.column_names
        _require_columns("merge_columns", config.columns, names)
        if config.new_column in names and (config.new_column not in config.columns or config.keep_original):
            raise DetoxUserError(
                "E_MERGE_COLUMNS_EXISTS",
                f"New column {config.new_column!r} already exists.",
                hint="Choose a new column name that is not in the table.",
            )

        merged = set(config.columns)
        out_names: List[str] = []
        for n in names:
            if n in merged:
                if config.new_column not in out_names:
                    out_names.append(config.new_column)
                if config.keep_original:
                    out_names.append(n)
            else:
                out_names.append(n)

        rows = []
        for row in table.rows:
            parts = []
            for c in config.columns:
                v = row.get(c)
                if v is None:
                    if not config.skip_null:
                        parts.append("")
                else:
                    parts.append(cast_to_string(v))
            new_row = dict(row)
            new_row[config.new_column] = config.separator.join(parts)
            rows.append({n: new_row.get(n) for n in out_names})
        return _with_columns(table, out_names, rows)


# =========================
# Reshape
# =========================

@dataclass(frozen=True)
class UnpivotConfig:
    id_columns: Tuple[str, ...]
    value_columns: Tuple[str, ...]
    variable_column_name: str = "variable"
    value_column_name: str = "value"

    @classmethod
    def from_params(cls, params: Dict[str, Any], op: str = "unpivot") -> "UnpivotConfig":
        example = (
            "{'id_columns': ['Name'], 'value_columns': ['Jan', 'Feb'], "
            "'variable_column_name': 'Month', 'value_column_name': 'Sales'}"
        )
        id_cols = _param_str_list(op, params, "id_columns", required=False)
        value_cols = _param_str_list(op, params, "value_columns", example=example)
        var_name = params.get("variable_column_name", "variable")
        val_name = params.get("value_column_name", "value")
        for key, v in (("variable_column_name", var_name), ("value_column_name", val_name)):
            if not isinstance(v, str) or not v.strip():
                raise DetoxUserError("E_UNPIVOT_PARAMS", f"unpivot params.{key} must be a non-empty string.", hint=example)
        all_cols = id_cols + value_cols
        if len(set(all_cols)) != len(all_cols):
            raise DetoxUserError("E_UNPIVOT_PARAMS", "ID columns and value columns must not overlap.", hint=example)
        if var_name == val_name:
            raise DetoxUserError(
                "E_UNPIVOT_PARAMS", "Variable column and value column must have different names.", hint=example
            )
        for key, v in (("variable", var_name), ("value", val_name)):
            if v in id_cols:
                raise DetoxUserError(
                    "E_UNPIVOT_PARAMS", f"The {key} column name {v!r} conflicts with an ID column.", hint=example
                )
        return cls(tuple(id_cols), tuple(value_cols), var_name, val_name)


@register_transform("unpivot")
class UnpivotTransform(TransformImpl):
    config_cls = UnpivotConfig

    @classmethod
    def apply(cls, table: Table, *, config: UnpivotConfig, context: StepContext) -> Table:
        _require_columns("unpivot", config.id_columns + config.value_columns, table.column_names)
        out_names = list(config.id_columns) + [config.variable_column_name, config.value_column_name]
        rows = []
        for row in table.rows:
            for vc in config.value_columns:
                new_row = {c: row.get(c) for c in config.id_columns}
                new_row[config.variable_column_name] = vc
                new_row[config.value_column_name] = row.get(vc)
                rows.append(new_row)
        return _with_columns(table, out_names, rows)


PIVOT_AGGREGATIONS = ("first", "last", "sum", "mean", "count")


def _numeric_values(values: List[Any]) -> List[float]:
    return [_to_float(v) for v in values if is_number(v)]


def aggregate(values: List[Any], how: str) -> Any:
    if not values:
        return None
    if how == "first":
        return values[0]
    if how == "last":
        return values[-1]
    if how == "count":
        return len(values)
    nums = _numeric_values(values)
    if not nums:
        return None
    total = sum(nums)
    if how == "sum":
        return total
    return total / len(nums)


@dataclass(frozen=True)
class PivotConfig:
    index_columns: Tuple[str, ...]
    column_source: str
    value_source: str
    aggregation: str = "last"

    @classmethod
    def from_params(cls, params: Dict[str, Any], op: str = "pivot") -> "PivotConfig":
        example = "{'index_columns': ['Name'], 'column_source': 'Month', 'value_source': 'Sales'}"
        index_cols = _param_str_list(op, params, "index_columns", example=example)
        column_source = _param_str(op, params, "column_source", example=example)
        value_source = _param_str(op, params, "value_source", example=example)
        aggregation = _param_choice(op, params, "aggregation", PIVOT_AGGREGATIONS, default="last")
        if column_source in index_cols:
            raise DetoxUserError("E_PIVOT_PARAMS", "Column source cannot be an index column.", hint=example)
        if value_source in index_cols:
            raise DetoxUserError("E_PIVOT_PARAMS", "Value source cannot be an index column.", hint=example)
        if column_source == value_source:
            raise DetoxUserError("E_PIVOT_PARAMS", "Column source and value source must be different.", hint=example)
        return cls(tuple(index_cols), column_source, value_source, aggregation)


@register_transform("pivot")
class PivotTransform(TransformImpl):
    config_cls = PivotConfig

    @classmethod
    def apply(cls, table: Table, *, config: PivotConfig, context: StepContext) -> Table:
        _require_columns(
            "pivot", list(config.index_columns) + [config.column_source, config.value_source], table.column_names
        )

        def header_of(row: Dict[str, Any]) -> str:
            v = row.get(config.column_source)
            return "null" if v is None else cast_to_string(v)

        new_headers = sorted({header_of(r) for r in table.rows})
        clash = [h for h in new_headers if h in config.index_columns]
        if clash:
            raise DetoxUserError(
                "E_PIVOT_COLLISION",
                f"Pivoted column name(s) collide with index columns: {clash}.",
                hint="Rename the index column before pivoting.",
            )

        groups: Dict[Tuple[Any, ...], Dict[str, Any]] = {}
        for row in table.rows:
            key = tuple(_cell_key(row.get(c)) for c in config.index_columns)
            group = groups.get(key)
            if group is None:
                group = {"first": row, "cells": {}}
                groups[key] = group
            group["cells"].setdefault(header_of(row), []).append(row.get(config.value_source))

        rows = []
        for group in groups.values():
            new_row = {c: group["first"].get(c) for c in config.index_columns}
            for h in new_headers:
                values = group["cells"].get(h)
                if not values:
                    new_row[h] = None
                elif len(values) == 1 and config.aggregation != "count":
                    new_row[h] = values[0]
                else:
                    new_row[h] = aggregate(values, config.aggregation)
            rows.append(new_row)

        cols = [table.column(c) for c in config.index_columns] + [ColumnMetadata(h) for h in new_headers]
        return Table(rows, cols, list(table.warnings), table.has_default_column_names)


# =========================
# Fill
# =========================

@dataclass(frozen=True)
class FillConfig:
    columns: Tuple[str, ...]
    treat_whitespace_as_empty: bool = False

    @classmethod
    def from_params(cls, params: Dict[str, Any], op: str = "fill_down") -> "FillConfig":
        cols = _param_str_list(op, params, "columns", example="{'columns': ['Region']}")
        return cls(tuple(cols), _param_bool(op, params, "treat_whitespace_as_empty", False))


@register_transform("fill_down")
class FillDownTransform(TransformImpl):
    config_cls = FillConfig

    @classmethod
    def apply(cls, table: Table, *, config: FillConfig, context: StepContext) -> Table:
        _require_columns("fill_down", config.columns, table.column_names)
        last: Dict[str, Any] = {c: None for c in config.columns}
        rows = []
        for row in table.rows:
            new_row = dict(row)
            for c in config.columns:
                v = new_row.get(c)
                if _is_blank(v, whitespace_as_empty=config.treat_whitespace_as_empty):
                    new_row[c] = last[c]
                else:
                    last[c] = v
            rows.append(new_row)
        return table.with_rows(rows)


@register_transform("fill_across")
class FillAcrossTransform(TransformImpl):
    config_cls = FillConfig

    @classmethod
    def apply(cls, table: Table, *, config: FillConfig, context: StepContext) -> Table:
        _require_columns("fill_across", config.columns, table.column_names)
        rows = []
        for row in table.rows:
            new_row = dict(row)
            last = None
            for c in config.columns:
                v = new_row.get(c)
                if _is_blank(v, whitespace_as_empty=config.treat_whitespace_as_empty):
                    new_row[c] = last
                else:
                    last = v
            rows.append(new_row)
        return table.with_rows(rows)


# =========================
# Sort
# =========================

@dataclass(frozen=True)
class SortKey:
    column: str
    direction: str = "asc"


@dataclass(frozen=True)
class SortConfig:
    keys: Tuple[SortKey, ...]
    nulls_position: str = "last"

    @classmethod
    def from_params(cls, params: Dict[str, Any], op: str = "sort") -> "SortConfig":
        example = "{'columns': [{'column': 'Dept', 'direction': 'asc'}, {'column': 'Salary', 'direction': 'desc'}]}"
        raw = params.get("columns")
        if not isinstance(raw, (list, tuple)) or not raw:
            raise DetoxUserError(
                "E_SORT_PARAMS", "sort requires params.columns as a non-empty list of sort keys.", hint=example
            )
        keys = []
        for item in raw:
            if isinstance(item, str):
                item = {"column": item}
            if not isinstance(item, dict):
                raise DetoxUserError("E_SORT_PARAMS", f"Invalid sort key: {item!r}.", hint=example)
            item = _snake_params(item)
            name = item.get("column", item.get("name", item.get("col")))
            if not isinstance(name, str) or not name:
                raise DetoxUserError("E_SORT_PARAMS", f"Sort key {item!r} is missing a column name.", hint=example)
            direction = item.get("direction", item.get("dir")) or "asc"
            if direction not in ("asc", "desc"):
                raise DetoxUserError(
                    "E_SORT_PARAMS", f"Sort direction must be 'asc' or 'desc', got {direction!r}.", hint=example
                )
            keys.append(SortKey(name, direction))
        nulls = _param_choice(op, params, "nulls_position", ("first", "last"), default="last")
        return cls(tuple(keys), nulls)


def _rank_key(v: Any) -> tuple:
    """Total order for present values: numbers, then dates, then booleans, then text."""
    if is_number(v):
        f = _to_float(v)
        return (0, f != f, 0.0 if f != f else f)  # NaN after every number
    if isinstance(v, (datetime, date)):
        d = v if isinstance(v, datetime) else datetime(v.year, v.month, v.day)
        # naive and aware datetimes do not compare; naive ones go first
        return (1, d.tzinfo is not None, d)
    if isinstance(v, bool):
        return (2, int(v))
    s = cast_to_string(v)
    return (3, s.casefold(), s)


def _compare_present(a: Any, b: Any) -> int:
    ka, kb = _rank_key(a), _rank_key(b)
    return (ka > kb) - (ka < kb)


@register_transform("sort")
class SortTransform(TransformImpl):
    config_cls = SortConfig

    @classmethod
    def apply(cls, table: Table, *, config: SortConfig, context: StepContext) -> Table:
        _require_columns("sort", [k.column for k in config.keys], table.column_names)
        null_first = config.nulls_position == "first"

        def cmp(r1: Dict[str, Any], r2: Dict[str, Any]) -> int:
            for key in config.keys:
                a, b = r1.get(key.column), r2.get(key.column)
                a_null, b_null = a is None, b is None
                if a_null and b_null:
                    continue
                if a_null or b_null:
                    # null placement does not flip with direction
                    return (-1 if a_null else 1) * (1 if null_first else -1)
                c = _compare_present(a, b)
                if c:
                    return c if key.direction == "asc" else -c
            return 0

        rows = sorted((dict(r) for r in table.rows), key=functools.cmp_to_key(cmp))
        return table.with_rows(rows)
