from csvdetox.casting import CastValidation, validate_cast
from csvdetox.errors import DetoxUserError, ParseError, StepError
from csvdetox.inference import classify, infer_column
from csvdetox.models.pipeline import ExecutionResult, Pipeline, StepResult, run, run_until
from csvdetox.models.sources import Source, parse_bytes
from csvdetox.models.table import ColumnMetadata, ParseResult, Table
from csvdetox.models.transforms import Transform
from csvdetox.options import ParseOptions
from csvdetox.parsers.delimited import parse_delimited
from csvdetox.parsers.workbook import list_sheets, parse_workbook

__all__ = [
    "CastValidation",
    "ColumnMetadata",
    "DetoxUserError",
    "ExecutionResult",
    "ParseError",
    "ParseOptions",
    "ParseResult",
    "Pipeline",
    "Source",
    "StepError",
    "StepResult",
    "Table",
    "Transform",
    "classify",
    "infer_column",
    "list_sheets",
    "parse_bytes",
    "parse_delimited",
    "parse_workbook",
    "run",
    "run_until",
    "validate_cast",
]
