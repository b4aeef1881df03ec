"""
Delimited-text parser (CSV and TSV).

The first non-empty line is the header. Every following non-empty line
becomes one record keyed by the normalized header names:

  - rows shorter than the header are padded with "" for the missing cells
  - rows longer than the header are rejected as a RecordError (the extra
    cells have no column to land in) and parsing continues
  - cell values are kept as strings; the sorter decides numeric handling

Quoting follows the csv module's excel dialect, so quoted fields may contain
the delimiter and embedded newlines.
"""
from __future__ import annotations

import csv
import io

from app.parsers.base import ParseResult, RecordError, empty_result, normalize_header
from app.parsers.detector import decode_bytes

_DELIMITERS = {"csv": ",", "tsv": "\t"}


def parse_tolerant(file_bytes: bytes, fmt: str = "csv") -> ParseResult:
    """Parse CSV or TSV bytes row-by-row, collecting per-row errors."""
    text = decode_bytes(file_bytes)
    reader = csv.reader(io.StringIO(text), delimiter=_DELIMITERS[fmt])

    try:
        rows = [row for row in reader if any(cell.strip() for cell in row)]
    except csv.Error as exc:
        return empty_result(fmt, f"Could not read {fmt.upper()} content: {exc}")

    if not rows:
        return empty_result(fmt, "File contains no header row.")

    columns = normalize_header(rows[0])
    records: list[dict] = []
    errors: list[RecordError] = []

    for idx, row in enumerate(rows[1:]):
        if len(row) > len(columns):
            errors.append(RecordError(
                index=idx,
                reason=f"Row has {len(row)} cells but the header has {len(columns)}",
                raw_snippet=_DELIMITERS[fmt].join(row)[:200],
            ))
            continue
        cells = row + [""] * (len(columns) - len(row))
        records.append(dict(zip(columns, cells)))

    warnings: list[str] = []
    if not records and not errors:
        warnings.append("File has a header row but no data rows.")

    return ParseResult(
        records=records,
        columns=columns,
        errors=errors,
        format_detected=fmt,
        total_attempted=len(rows) - 1,
        valid_count=len(records),
        failed_count=len(errors),
        warnings=warnings,
    )
