"""
File format detection for ticket exports.

Determines the most likely format of an uploaded file from its content
(not its extension) so the correct parser can be dispatched.

Supported formats:
  xlsx    — Excel workbook (first worksheet)
  json    — array of ticket objects (issue tracker API dumps)
  tsv     — tab-separated (spreadsheet "copy as text" exports)
  csv     — comma-separated (spreadsheet / issue tracker CSV exports)
  unknown — Cannot determine format

Encoding: we try utf-8-sig → utf-8 → latin-1. Latin-1 never fails, so it
serves as a universal fallback for exports from older spreadsheet tools.
"""
from __future__ import annotations

from typing import Literal

# Maximum bytes examined for format detection (first 4 KB is always enough)
_PROBE_BYTES = 4096

FormatStr = Literal["xlsx", "json", "tsv", "csv", "unknown"]

_ZIP_MAGIC = b"PK\x03\x04"


def decode_bytes(data: bytes) -> str:
    """
    Decode bytes to a Unicode string, trying common encodings in order.

    Encoding priority:
      1. utf-8-sig — UTF-8 with optional BOM (Excel "CSV UTF-8" writes one).
      2. utf-8 — Plain UTF-8 without BOM.
      3. latin-1 — ISO-8859-1; never raises.

    CRLF line endings are normalized to LF.
    """
    for encoding in ("utf-8-sig", "utf-8"):
        try:
            text = data.decode(encoding)
            return text.replace("\r\n", "\n").replace("\r", "\n")
        except UnicodeDecodeError:
            continue
    # Latin-1 accepts all 256 byte values
    text = data.decode("latin-1")
    return text.replace("\r\n", "\n").replace("\r", "\n")


def detect_format(file_bytes: bytes) -> FormatStr:
    """
    Inspect file content and return the detected format string.

    Args:
        file_bytes: Raw bytes from the uploaded file (may be partial).

    Returns:
        One of "xlsx", "json", "tsv", "csv", "unknown".
    """
    if not file_bytes:
        return "unknown"

    # 0. Spreadsheet: .xlsx is a ZIP container
    if file_bytes.startswith(_ZIP_MAGIC):
        return "xlsx"

    text = decode_bytes(file_bytes[:_PROBE_BYTES])
    stripped = text.lstrip()

    # 1. JSON: a top-level array
    if stripped.startswith("["):
        return "json"

    # 2./3. Delimited: decide on the first non-empty line only
    for line in text.splitlines():
        if not line.strip():
            continue
        tabs, commas = line.count("\t"), line.count(",")
        if tabs > commas:
            return "tsv"
        if commas:
            return "csv"
        break

    return "unknown"
