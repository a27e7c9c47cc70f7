"""Delimited text (CSV/TSV/...) parser."""
from __future__ import annotations

import csv
import logging
import re
from typing import List, Optional, Tuple, Union

from csvdetox.errors import DetoxUserError, ParseError
from csvdetox.models.table import Table
from csvdetox.options import ParseOptions
from csvdetox.parsers.common import build_table, check_window, clip_columns, resolve_headers

logger = logging.getLogger(__name__)

CANDIDATE_DELIMITERS = (",", ";", "\t", "|")
DEFAULT_DELIMITER = ","
DELIMITER_SAMPLE_LINES = 5

_LINE_SPLIT = re.compile(r"\r?\n")
# csv.reader rejects a bare \r in an unquoted field; it rides through as this private-use char
_CR_STANDIN = "\ue000"


def split_lines(text: str) -> List[str]:
    """Split on newlines and drop blank lines."""
    return [line for line in _LINE_SPLIT.split(text) if line.strip()]


def tokenize_line(line: str, delimiter: str) -> List[str]:
    """Split one line into trimmed fields.

    Double quotes group a field (delimiters inside do not split) and "" inside quotes is a literal quote.
    """
    reader = csv.reader(
        [line.replace("\r", _CR_STANDIN)], delimiter=delimiter, quotechar='"', doublequote=True, skipinitialspace=True
    )
    fields = next(reader, [""])
    return [f.replace(_CR_STANDIN, "\r").strip() for f in fields] if fields else [""]


def detect_delimiter(lines: List[str]) -> str:
    """Pick the candidate that splits every sampled line into the same field count > 1.

    The highest such count wins; ties keep candidate order. Falls back to ','.
    """
    sample = lines[:DELIMITER_SAMPLE_LINES]
    best: Optional[str] = None
    best_count = 1
    for delim in CANDIDATE_DELIMITERS:
        counts = {len(tokenize_line(line, delim)) for line in sample}
        if len(counts) != 1:
            continue
        count = counts.pop()
        if count > best_count:
            best, best_count = delim, count
    return best or DEFAULT_DELIMITER


def _decode(data: Union[str, bytes]) -> Tuple[str, int]:
    """Return (text, number of undecodable byte sequences replaced with U+FFFD)."""
    if isinstance(data, str):
        return (data[1:] if data.startswith("\ufeff") else data), 0
    try:
        return data.decode("utf-8-sig"), 0
    except UnicodeDecodeError:
        text = data.decode("utf-8-sig", errors="replace")
        return text, text.count("\ufffd") - data.decode("utf-8-sig", errors="ignore").count("\ufffd")


def parse_delimited(data: Union[str, bytes], options: Optional[ParseOptions] = None) -> Table:
    """Parse delimited text into a Table.

    Raises ParseError with E_EMPTY_FILE, E_INVALID_RANGE, E_EMPTY_RANGE, E_NO_COLUMNS or E_PARSE_ERROR.
    Malformed rows never raise; they are padded/truncated and reported in `warnings`.
    """
    opts = options or ParseOptions()
    try:
        text, replaced = _decode(data)
        all_lines = split_lines(text)
        if not all_lines:
            raise ParseError("E_EMPTY_FILE", "File is empty.", hint="The file contains no non-blank lines.")

        check_window(opts)

        delimiter = opts.delimiter or detect_delimiter(all_lines)
        logger.debug("Using delimiter %r (%s)", delimiter, "given" if opts.delimiter else "detected")

        first_index = opts.start_row - 1
        last_index = opts.end_row if opts.end_row is not None else len(all_lines)
        lines = all_lines[first_index:last_index]
        if not lines:
            raise ParseError(
                "E_EMPTY_RANGE",
                "No data in the specified row range.",
                hint=f"The file has {len(all_lines)} non-blank line(s); startRow={opts.start_row}.",
            )

        first = clip_columns(tokenize_line(lines[0], delimiter), opts)
        if not first:
            raise ParseError(
                "E_EMPTY_RANGE",
                "No columns in the specified column range.",
                hint=f"startColumn={opts.start_column} is beyond the width of the first row.",
            )

        warnings: List[str] = []
        if replaced:
            warnings.append(
                f"File is not valid UTF-8; {replaced} undecodable byte sequence(s) were replaced with U+FFFD."
            )
        headers, synthesized = resolve_headers(first, has_headers=opts.has_headers, warnings=warnings)
        data_start = 1 if opts.has_headers else 0

        data_lines = lines[data_start:]
        if opts.max_rows is not None:
            data_lines = data_lines[: opts.max_rows]

        records = []
        for i, line in enumerate(data_lines):
            values = clip_columns(tokenize_line(line, delimiter), opts)
            if len(values) != len(headers):
                warnings.append(
                    f"Row {first_index + data_start + i + 1} has {len(values)} columns in range "
                    f"but expected {len(headers)}. This row may be malformed."
                )
            records.append(values)

        table = build_table(headers, records, opts, warnings, synthesized=synthesized)
        logger.debug("Parsed %d delimited rows", table.row_count)
        return table
    except DetoxUserError:
        raise
    except Exception as e:
        raise ParseError(
            "E_PARSE_ERROR",
            f"Failed to parse delimited text: {type(e).__name__}: {e}",
            cause=e,
        ) from e
