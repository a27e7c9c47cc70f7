"""Spreadsheet workbook parser (openpyxl)."""
from __future__ import annotations

import logging
import zipfile
from io import BytesIO
from typing import Any, List, Optional

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.worksheet.worksheet import Worksheet

from csvdetox.errors import DetoxUserError, ParseError
from csvdetox.models.table import Table
from csvdetox.options import ParseOptions
from csvdetox.parsers.common import build_table, check_window, resolve_headers

logger = logging.getLogger(__name__)


def _open_workbook(data: bytes):
    try:
        # merged_cells is only available on regular (non read-only) worksheets
        return load_workbook(filename=BytesIO(data), data_only=True, read_only=False)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise ParseError(
            "E_READ_ERROR",
            f"Failed to read workbook: {type(e).__name__}: {e}",
            hint="Make sure the file is an .xlsx workbook.",
            cause=e,
        ) from e


def list_sheets(data: bytes) -> List[str]:
    """Sheet names in workbook order."""
    wb = _open_workbook(data)
    try:
        return list(wb.sheetnames)
    finally:
        wb.close()


def _resolve_sheet(wb, options: ParseOptions) -> Worksheet:
    names = list(wb.sheetnames)
    if not names:
        raise ParseError("E_NO_SHEETS", "No sheets found in workbook.")

    if options.sheet_name is not None:
        if options.sheet_name not in names:
            raise ParseError(
                "E_SHEET_NOT_FOUND",
                f"Sheet {options.sheet_name!r} not found.",
                hint="Available sheets: " + ", ".join(names),
            )
        name = options.sheet_name
    elif options.sheet_index is not None:
        if options.sheet_index < 0 or options.sheet_index >= len(names):
            raise ParseError(
                "E_INVALID_SHEET_INDEX",
                f"Sheet index {options.sheet_index} out of range.",
                hint=f"Available: 0-{len(names) - 1}",
            )
        name = names[options.sheet_index]
    else:
        name = names[0]

    ws = wb[name]
    if not isinstance(ws, Worksheet):
        raise ParseError(
            "E_READ_ERROR",
            f"Failed to read sheet {name!r}.",
            hint="Chart sheets and other non-grid sheets cannot be parsed.",
        )
    return ws


def _is_empty_cell(v: Any) -> bool:
    return v is None or v == ""


def reconcile_merged_cells(ws: Worksheet, grid: List[List[Any]], min_row: int, min_col: int) -> int:
    """Copy each merge rectangle's top-left value into its empty cells inside the grid.

    `grid` is the windowed cell values with its top-left at (min_row, min_col). Rectangles that do not
    intersect the window, or whose top-left cell is empty, are skipped. Returns the number of filled cells.
    """
    if not grid:
        return 0
    max_row = min_row + len(grid) - 1
    max_col = min_col + len(grid[0]) - 1
    filled = 0
    for rng in ws.merged_cells.ranges:
        if rng.max_row < min_row or rng.min_row > max_row or rng.max_col < min_col or rng.min_col > max_col:
            continue
        top_left = ws.cell(row=rng.min_row, column=rng.min_col).value
        if _is_empty_cell(top_left):
            continue
        for r in range(max(rng.min_row, min_row), min(rng.max_row, max_row) + 1):
            row = grid[r - min_row]
            for c in range(max(rng.min_col, min_col), min(rng.max_col, max_col) + 1):
                if _is_empty_cell(row[c - min_col]):
                    row[c - min_col] = top_left
                    filled += 1
    return filled


def parse_workbook(data: bytes, options: Optional[ParseOptions] = None) -> Table:
    """Parse one sheet of a workbook into a Table.

    Numeric, boolean and date cells keep their native Python types. Raises ParseError with
    E_NO_SHEETS, E_SHEET_NOT_FOUND, E_INVALID_SHEET_INDEX, E_READ_ERROR, E_EMPTY_SHEET,
    E_INVALID_RANGE, E_EMPTY_RANGE, E_NO_COLUMNS or E_PARSE_ERROR.
    """
    opts = options or ParseOptions()
    try:
        wb = _open_workbook(data)
        try:
            ws = _resolve_sheet(wb, opts)
            check_window(opts)
            sheet_names = list(wb.sheetnames)

            if not any(
                not _is_empty_cell(v) for row in ws.iter_rows(values_only=True) for v in row
            ):
                raise ParseError("E_EMPTY_SHEET", f"Sheet {ws.title!r} is empty.")

            r0 = max(ws.min_row, opts.start_row)
            r1 = ws.max_row if opts.end_row is None else min(ws.max_row, opts.end_row)
            c0 = max(ws.min_column, opts.start_column)
            c1 = ws.max_column if opts.end_column is None else min(ws.max_column, opts.end_column)
            if r0 > r1 or c0 > c1:
                raise ParseError(
                    "E_EMPTY_RANGE",
                    "No data in the specified range.",
                    hint=f"Sheet {ws.title!r} spans rows {ws.min_row}-{ws.max_row}, "
                         f"columns {ws.min_column}-{ws.max_column}.",
                )

            grid = [
                list(row)
                for row in ws.iter_rows(min_row=r0, max_row=r1, min_col=c0, max_col=c1, values_only=True)
            ]
            filled = reconcile_merged_cells(ws, grid, r0, c0)
            if filled:
                logger.debug("Filled %d merged cell(s) on sheet %r", filled, ws.title)
        finally:
            wb.close()

        records = [row for row in grid if any(not _is_empty_cell(v) for v in row)]
        if not records:
            raise ParseError("E_EMPTY_RANGE", "No data in the specified range.")

        warnings: List[str] = []
        headers, synthesized = resolve_headers(records[0], has_headers=opts.has_headers, warnings=warnings)
        data_records = records[1:] if opts.has_headers else records
        if opts.max_rows is not None:
            data_records = data_records[: opts.max_rows]

        if len(sheet_names) > 1:
            warnings.append(
                f"This workbook contains {len(sheet_names)} sheets. "
                f"Currently parsing: {ws.title!r}. "
                f"Available sheets: {', '.join(sheet_names)}"
            )

        table = build_table(headers, data_records, opts, warnings, synthesized=synthesized)
        logger.debug("Parsed %d rows from sheet %r", table.row_count, ws.title)
        return table
    except DetoxUserError:
        raise
    except Exception as e:
        raise ParseError(
            "E_PARSE_ERROR",
            f"Failed to parse workbook: {type(e).__name__}: {e}",
            cause=e,
        ) from e
