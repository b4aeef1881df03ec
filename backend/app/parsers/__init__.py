"""
Parser package public API.

``parse_file(file_bytes)`` is the main entry point for the import pipeline.
It detects the file format and dispatches to the appropriate tolerant parser,
returning a ParseResult regardless of whether some rows are malformed.
"""
from app.parsers.base import ParseResult, RecordError, empty_result
from app.parsers.detector import detect_format
from app.parsers import delimited, json_records, xlsx


def parse_file(file_bytes: bytes) -> ParseResult:
    """
    Detect format and parse file_bytes into a ParseResult.

    Never raises: all errors are captured in ParseResult.errors or
    ParseResult.warnings. The caller is responsible for deciding whether
    a result with valid_count == 0 should be treated as a failure.

    Supported formats:
      xlsx    — Excel workbook, first worksheet
      json    — array of ticket objects
      tsv     — tab-separated with a header row
      csv     — comma-separated with a header row
      unknown — Cannot determine format
    """
    fmt = detect_format(file_bytes)

    if fmt == "xlsx":
        return xlsx.parse_tolerant(file_bytes)

    if fmt == "json":
        return json_records.parse_tolerant(file_bytes)

    if fmt in ("csv", "tsv"):
        return delimited.parse_tolerant(file_bytes, fmt)

    return empty_result(
        "unknown",
        "Unsupported format. Expected an Excel workbook, CSV, TSV or a JSON array of tickets.",
    )


__all__ = ["parse_file", "ParseResult", "RecordError", "detect_format"]
