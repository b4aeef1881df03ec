"""
Spreadsheet (.xlsx) parser.

Reads the first worksheet only, the way ticket exports are laid out:
the first non-empty row is the header, every following non-empty row is a
record. Blank cells become "" so every record carries every column.

Cell values keep their type where the sorter can use it (int, float);
dates render as ISO text and booleans as "true"/"false". Cells to the right
of the header that hold data are rejected as a RecordError for that row.
"""
from __future__ import annotations

import datetime
import io
import logging

import openpyxl

from app.parsers.base import ParseResult, RecordError, empty_result, normalize_header

logger = logging.getLogger(__name__)


def _cell(value):
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    return str(value)


def _is_blank(row: tuple) -> bool:
    return all(v is None or (isinstance(v, str) and not v.strip()) for v in row)


def _header_width(header: tuple) -> int:
    """Header cells up to the last non-blank one; trailing empty columns are dropped."""
    width = len(header)
    while width and _is_blank(header[width - 1:width]):
        width -= 1
    return width


def parse_tolerant(file_bytes: bytes) -> ParseResult:
    try:
        wb = openpyxl.load_workbook(io.BytesIO(file_bytes), read_only=True, data_only=True)
    except Exception as exc:
        logger.warning("Could not open workbook: %s", exc)
        return empty_result("xlsx", f"Could not read spreadsheet: {exc}")

    try:
        if not wb.worksheets:
            return empty_result("xlsx", "Workbook contains no worksheets.")
        rows = [row for row in wb.worksheets[0].iter_rows(values_only=True) if not _is_blank(row)]
    finally:
        wb.close()

    if not rows:
        return empty_result("xlsx", "First worksheet is empty.")

    width = _header_width(rows[0])
    columns = normalize_header([None if v is None else str(_cell(v)) for v in rows[0][:width]])
    records: list[dict] = []
    errors: list[RecordError] = []

    for idx, row in enumerate(rows[1:]):
        if not _is_blank(row[width:]):
            errors.append(RecordError(
                index=idx,
                reason=f"Row has data beyond the {len(columns)} header column(s)",
                raw_snippet=", ".join(str(_cell(v)) for v in row)[:200],
            ))
            continue
        cells = [_cell(v) for v in row[:width]]
        cells += [""] * (len(columns) - len(cells))
        records.append(dict(zip(columns, cells)))

    warnings: list[str] = []
    if not records and not errors:
        warnings.append("Worksheet has a header row but no data rows.")

    return ParseResult(
        records=records,
        columns=columns,
        errors=errors,
        format_detected="xlsx",
        total_attempted=len(rows) - 1,
        valid_count=len(records),
        failed_count=len(errors),
        warnings=warnings,
    )
