"""
JSON array parser.

Accepts a top-level array of objects, e.g. a saved issue tracker search.
Each object becomes a record; nested values (arrays, objects) are flattened
to their JSON text so every record stays a flat mapping of scalars.
Array items that are not objects are reported as RecordErrors.
"""
from __future__ import annotations

import json

from app.parsers.base import ParseResult, RecordError, empty_result, to_scalar
from app.parsers.detector import decode_bytes


def parse_tolerant(file_bytes: bytes) -> ParseResult:
    try:
        data = json.loads(decode_bytes(file_bytes))
    except json.JSONDecodeError as exc:
        return empty_result("json", f"Invalid JSON: {exc.msg} (line {exc.lineno})")

    if not isinstance(data, list):
        return empty_result("json", "Expected a JSON array of ticket objects.")

    records: list[dict] = []
    errors: list[RecordError] = []
    columns: dict[str, None] = {}

    for idx, item in enumerate(data):
        if not isinstance(item, dict):
            errors.append(RecordError(
                index=idx,
                reason=f"Expected an object, got {type(item).__name__}",
                raw_snippet=json.dumps(item, ensure_ascii=False)[:200],
            ))
            continue
        record = {str(k): to_scalar(v) for k, v in item.items()}
        for key in record:
            columns.setdefault(key, None)
        records.append(record)

    return ParseResult(
        records=records,
        columns=list(columns),
        errors=errors,
        format_detected="json",
        total_attempted=len(data),
        valid_count=len(records),
        failed_count=len(errors),
    )
