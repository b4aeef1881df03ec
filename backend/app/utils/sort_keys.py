"""Value coercion and comparison primitives for card sorting.

All functions are pure (no I/O) and suitable for unit testing.

Comparison policy
-----------------
natural   digit runs compare as integers; letters compare case- and
          accent-insensitively ("Item 2" < "Item 10", "apple" == "Apple")
numeric   leading-prefix float parse (JavaScript parseFloat rules); when either
          side does not parse, that pair falls back to natural comparison
nulls     None / missing sorts after every value, whatever the direction
"""
from __future__ import annotations

import math
import re
import unicodedata
from functools import cmp_to_key
from typing import Optional

_DIGIT_RUN_RE = re.compile(r"(\d+)")
_FLOAT_PREFIX_RE = re.compile(
    r"^\s*([+-]?(?:Infinity|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?))"
)


def value_to_str(value) -> str:
    """Render a scalar field value as text.

    Integral floats drop their trailing ".0" (spreadsheet cells holding 42
    arrive as 42.0) and booleans render lowercase.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def parse_float(value) -> float:
    """Parse the leading numeric prefix of value; NaN when there is none."""
    if value is None:
        return math.nan
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    m = _FLOAT_PREFIX_RE.match(value_to_str(value))
    if not m:
        return math.nan
    token = m.group(1)
    if token.lstrip("+-") == "Infinity":
        return -math.inf if token.startswith("-") else math.inf
    return float(token)


def _fold(text: str) -> str:
    text = unicodedata.normalize("NFKD", text)
    text = "".join(c for c in text if not unicodedata.combining(c))
    return text.casefold()


def natural_sort_key(value) -> tuple:
    """Key for natural ordering: alternating (text, int, text, ...) chunks."""
    chunks = _DIGIT_RUN_RE.split(_fold(value_to_str(value)))
    return tuple(int(c) if i % 2 else c for i, c in enumerate(chunks))


def natural_compare(a, b) -> int:
    ka, kb = natural_sort_key(a), natural_sort_key(b)
    return (ka > kb) - (ka < kb)


def compare_values(a, b, numeric: bool = False) -> int:
    """Three-way comparison of two non-null field values."""
    if numeric:
        fa, fb = parse_float(a), parse_float(b)
        if not (math.isnan(fa) or math.isnan(fb)):
            if fa == fb:
                return 0
            return -1 if fa < fb else 1
    return natural_compare(a, b)


def sort_simple(results: list, rule) -> list:
    """
    Stable sort of SortedResult items by one record field.

    ``rule`` is a SimpleSortRule (field, direction, numeric). Returns a new
    list; the input list and its items are left untouched.
    """
    field = rule.field
    descending = rule.direction == "desc"

    def _cmp(a, b) -> int:
        av: Optional[object] = a.record.get(field)
        bv: Optional[object] = b.record.get(field)
        if av is None and bv is None:
            return 0
        if av is None:
            return 1
        if bv is None:
            return -1
        result = compare_values(av, bv, rule.numeric)
        return -result if descending else result

    return sorted(results, key=cmp_to_key(_cmp))
