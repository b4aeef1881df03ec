"""
Shared types and utilities for all record parsers.

ParseResult is the single return type from every parser and the dispatcher.
It carries both successfully parsed records and per-row errors, so a single
malformed row never aborts the entire import.

Records are flat dicts keyed by column name with scalar values
(str, int, float or None), the shape the card sorter consumes.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import List


@dataclass
class RecordError:
    """A per-row parse failure.  Not fatal; other rows are still processed."""
    index: int           # 0-based data row position (header excluded)
    reason: str          # human-readable description of why the row failed
    raw_snippet: str     # first 200 chars of the raw row for debugging


@dataclass
class ParseResult:
    """
    Unified result from any parser.

    ``columns`` lists every column name in first-seen order; the field mapper
    offers them as card fields even when some records lack a value.
    """
    records: List[dict]
    columns: List[str]
    errors: List[RecordError]
    format_detected: str    # "xlsx" | "csv" | "tsv" | "json" | "unknown"
    total_attempted: int
    valid_count: int
    failed_count: int
    warnings: List[str] = field(default_factory=list)  # file-level issues

    @property
    def has_warnings(self) -> bool:
        return bool(self.errors) or bool(self.warnings)

    def error_summary(self) -> str:
        """Short human-readable summary of failures."""
        parts: list[str] = []
        if self.valid_count == 0:
            parts.append(
                f"No valid records found in {self.format_detected!r} file."
            )
        else:
            parts.append(
                f"{self.valid_count} record(s) imported"
                + (f" from {self.format_detected.upper()} format" if self.format_detected != "unknown" else "")
                + "."
            )

        if self.failed_count:
            lines = [f"{self.failed_count} row(s) skipped:"]
            for e in self.errors[:10]:  # cap summary at 10 entries
                lines.append(f"  [{e.index}] {e.reason}")
            if len(self.errors) > 10:
                lines.append(f"  … and {len(self.errors) - 10} more")
            parts.append("\n".join(lines))

        if self.warnings:
            parts.append("Warnings: " + "; ".join(self.warnings))

        return "\n".join(parts)


def empty_result(format_detected: str, warning: str) -> ParseResult:
    return ParseResult(
        records=[],
        columns=[],
        errors=[],
        format_detected=format_detected,
        total_attempted=0,
        valid_count=0,
        failed_count=0,
        warnings=[warning],
    )


# ── Shared normalization utilities ────────────────────────────────────────────

def normalize_header(names: list) -> list[str]:
    """
    Clean a header row: strip whitespace, name blank cells "Column N"
    (1-based) and suffix repeated names ("Status", "Status 2", ...).
    """
    result: list[str] = []
    seen: dict[str, int] = {}
    for i, raw in enumerate(names):
        name = (raw or "").strip() or f"Column {i + 1}"
        if name in seen:
            seen[name] += 1
            name = f"{name} {seen[name]}"
        seen.setdefault(name, 1)
        result.append(name)
    return result


def to_scalar(value):
    """Coerce a decoded JSON value to a record scalar."""
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return value
    return json.dumps(value, ensure_ascii=False)
