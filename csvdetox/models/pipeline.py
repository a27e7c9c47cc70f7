from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from csvdetox.errors import DetoxUserError, StepError
from csvdetox.inference import infer_columns
from csvdetox.models.table import ColumnMetadata, Table
from csvdetox.models.transforms import StepContext, Transform, _transform_from_ir
from csvdetox.schema import _normalize_ir

try:
    import yaml  # type: ignore
except Exception:  # pragma: no cover
    yaml = None

logger = logging.getLogger(__name__)


@dataclass
class StepResult:
    """Outcome of one executed step."""
    step_index: int
    op: str
    step_id: Optional[str] = None
    success: bool = True
    rows_before: int = 0
    rows_after: int = 0
    columns_after: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    cast_errors: Optional[int] = None
    skipped_rows: Optional[int] = None
    error: Optional[str] = None

    @property
    def rows_affected(self) -> int:
        return abs(self.rows_after - self.rows_before)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "stepIndex": self.step_index,
            "stepId": self.step_id,
            "op": self.op,
            "success": self.success,
            "rowsAffected": self.rows_affected,
            "columnsAfter": list(self.columns_after),
            "warnings": list(self.warnings),
        }
        if self.cast_errors is not None:
            d["castErrors"] = self.cast_errors
        if self.skipped_rows is not None:
            d["skippedRows"] = self.skipped_rows
        if self.error is not None:
            d["error"] = self.error
        return d


@dataclass
class ExecutionResult:
    """Table after the last successful step, per-step outcomes and column snapshots.

    `type_evolution[0]` is the base table's columns; entry i+1 is the snapshot after step i.
    When a step fails, `error` holds the StepError and `table` is the output of the step before it.
    """
    table: Table
    step_results: List[StepResult] = field(default_factory=list)
    type_evolution: List[List[ColumnMetadata]] = field(default_factory=list)
    error: Optional[StepError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def failed_step_index(self) -> Optional[int]:
        return None if self.error is None else self.error.step_index

    def raise_for_error(self) -> "ExecutionResult":
        if self.error is not None:
            raise self.error
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table.to_dict(),
            "stepResults": [s.to_dict() for s in self.step_results],
            "typeEvolution": [[c.to_dict() for c in cols] for cols in self.type_evolution],
            "error": None if self.error is None else self.error.to_dict(),
        }


def refresh_columns(table: Table) -> Table:
    """Re-run type inference over every column, keeping column order."""
    return Table(
        list(table.rows),
        infer_columns(table.rows, table.column_names),
        list(table.warnings),
        table.has_default_column_names,
    )


@dataclass
class Pipeline:
    """An ordered list of steps replayed over a base table.

    The pipeline never mutates the base table or its own step list; each run produces a fresh
    ExecutionResult.
    """
    steps: List[Transform] = field(default_factory=list)

    def then(self, step: Transform) -> "Pipeline":
        if not isinstance(step, Transform):
            raise DetoxUserError(
                "E_PIPELINE_STEP",
                "Pipeline.then expects a Transform.",
                hint="Example: pipe.then(Transform('trim', params={'columns': ['name']}))",
            )
        return Pipeline(self.steps + [step])

    def __len__(self) -> int:
        return len(self.steps)

    def __str__(self) -> str:
        parts = [f"Pipeline(steps={len(self.steps)})"]
        for s in self.steps:
            parts.append(f"  -> {s}")
        return "\n".join(parts)

    def preflight(self) -> None:
        """Validate every step's op and params without touching any data."""
        for i, step in enumerate(self.steps):
            if not isinstance(step, Transform):
                raise DetoxUserError(
                    "E_PIPELINE_STEP_TYPE",
                    f"Pipeline step #{i} is not a Transform.",
                    hint="Build steps with Transform(op, params) or Pipeline.from_ir(...).",
                )
            try:
                step.config()
            except DetoxUserError as e:
                raise StepError(i, step.id, step.op, e) from e

    def run(self, table: Table, *, strict: bool = False) -> ExecutionResult:
        """Apply every step. Same as `run_until(table, len(steps) - 1)`."""
        return self.run_until(table, len(self.steps) - 1, strict=strict)

    def run_until(self, table: Table, stop_index: Optional[int], *, strict: bool = False) -> ExecutionResult:
        """Apply steps 0..stop_index (inclusive) to `table`.

        `stop_index` of -1 or None returns the base table unchanged. Indexes beyond the last step
        are clamped. Execution stops at the first failing step: the result keeps everything up to
        the previous step and `error` names the failure. With `strict=True` the StepError is raised
        instead.
        """
        if stop_index is None:
            stop_index = -1
        if isinstance(stop_index, bool) or not isinstance(stop_index, int) or stop_index < -1:
            raise DetoxUserError(
                "E_STOP_INDEX",
                f"stop_index must be an integer >= -1, got {stop_index!r}.",
                hint="Use -1 to preview the base table, or a step index to stop after that step.",
            )

        base = Table(list(table.rows), list(table.columns), list(table.warnings), table.has_default_column_names)
        result = ExecutionResult(table=base, type_evolution=[list(base.columns)])
        last = min(stop_index, len(self.steps) - 1)

        current = base
        for i in range(last + 1):
            step = self.steps[i]
            op = getattr(step, "op", type(step).__name__)
            step_id = getattr(step, "id", None)
            ctx = StepContext()
            logger.debug("Running step #%d (%s)", i, op)
            try:
                if not isinstance(step, Transform):
                    raise DetoxUserError(
                        "E_PIPELINE_STEP_TYPE",
                        f"Pipeline step #{i} is not a Transform.",
                    )
                out = refresh_columns(step.apply(current, context=ctx))
            except Exception as e:
                err = StepError(i, step_id, op, e)
                logger.warning("%s", err.message)
                result.step_results.append(
                    StepResult(
                        step_index=i,
                        op=op,
                        step_id=step_id,
                        success=False,
                        rows_before=current.row_count,
                        rows_after=current.row_count,
                        columns_after=current.column_names,
                        error=err.message,
                    )
                )
                result.error = err
                if strict:
                    raise err from e
                break

            result.step_results.append(
                StepResult(
                    step_index=i,
                    op=op,
                    step_id=step_id,
                    rows_before=current.row_count,
                    rows_after=out.row_count,
                    columns_after=out.column_names,
                    warnings=list(ctx.warnings),
                    cast_errors=ctx.stats.get("cast_errors"),
                    skipped_rows=ctx.stats.get("skipped_rows"),
                )
            )
            result.type_evolution.append(list(out.columns))
            current = out

        result.table = current
        return result

    def to_ir(self) -> Dict[str, Any]:
        """Serialize this pipeline to a YAML-friendly IR (dict)."""
        return {"csvdetox": 0, "steps": [s.to_ir() for s in self.steps]}

    @classmethod
    def from_ir(cls, ir: Union[Dict[str, Any], List[Any]]) -> "Pipeline":
        """Deserialize a pipeline from IR (a dict, or a bare list of persisted steps)."""
        ir = _normalize_ir(ir)
        return cls([_transform_from_ir(s) for s in ir["steps"]])

    def to_yaml(self, path: Optional[Union[str, Path]] = None) -> str:
        """Dump IR to YAML string. If `path` is provided, also write the file."""
        if yaml is None:
            raise DetoxUserError(
                "E_YAML_IMPORT",
                "PyYAML is not available; cannot serialize to YAML.",
                hint="Install dependency: pip install pyyaml",
            )
        text = yaml.safe_dump(self.to_ir(), sort_keys=False)
        if path is not None:
            Path(path).write_text(text, encoding="utf-8")
        return text

    @classmethod
    def from_yaml(cls, text_or_path: Union[str, Path]) -> "Pipeline":
        """Load pipeline from YAML string or file path."""
        if yaml is None:
            raise DetoxUserError(
                "E_YAML_IMPORT",
                "PyYAML is not available; cannot parse YAML.",
                hint="Install dependency: pip install pyyaml",
            )
        if isinstance(text_or_path, Path) or (
            isinstance(text_or_path, str) and "\n" not in text_or_path and Path(text_or_path).is_file()
        ):
            text = Path(text_or_path).read_text(encoding="utf-8")
        else:
            text = str(text_or_path)
        try:
            ir = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise DetoxUserError(
                "E_YAML_PARSE",
                f"Failed to parse YAML: {e}",
                hint="Check indentation and quoting.",
            ) from e
        return cls.from_ir(ir)


def run(table: Table, steps: Sequence[Transform], *, strict: bool = False) -> ExecutionResult:
    return Pipeline(list(steps)).run(table, strict=strict)


def run_until(
    table: Table, steps: Sequence[Transform], stop_index: Optional[int], *, strict: bool = False
) -> ExecutionResult:
    return Pipeline(list(steps)).run_until(table, stop_index, strict=strict)
