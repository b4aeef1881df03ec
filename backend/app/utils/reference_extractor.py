"""
Identifier extraction from free-text field values.

A pattern is configured as an immutable (source, flags) pair so that it can
cross the template serialization boundary unchanged. Flags use the letters
the card designer has always stored (``g``, ``i``, ``m``, ``s``, ``u``).
``g`` is implied: extraction always returns every match.

A fresh matcher is compiled on every call, so repeated use of the same
pattern across many records can never leak match-position state.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Union

from app.utils.sort_keys import value_to_str

DEFAULT_IDENTIFIER_SOURCE = r"[A-Z]+-\d+"

_FLAG_MAP = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
}
_KNOWN_FLAGS = frozenset("gimsu")

# Browser-syntax named groups and backreferences saved by the card designer
_NAMED_GROUP_RE = re.compile(r"(?<!\\)\(\?<([A-Za-z_]\w*)>")
_NAMED_BACKREF_RE = re.compile(r"(?<!\\)\\k<([A-Za-z_]\w*)>")


def _python_source(source: str) -> str:
    source = _NAMED_GROUP_RE.sub(r"(?P<\1>", source)
    return _NAMED_BACKREF_RE.sub(r"(?P=\1)", source)


@dataclass(frozen=True)
class IdentifierPattern:
    """
    Regular expression stored as source text plus flag letters.

    Construction validates the source and raises ValueError when it does not
    compile. Without the ``u`` flag, ``\\d`` and ``\\w`` match ASCII only.
    """
    source: str = DEFAULT_IDENTIFIER_SOURCE
    flags: str = "g"

    def __post_init__(self):
        # Keep flags canonical: known letters only, "g" always present, no repeats
        letters = {c for c in (self.flags or "") if c in _KNOWN_FLAGS}
        letters.add("g")
        object.__setattr__(self, "flags", "".join(sorted(letters)))
        try:
            self.compile()
        except re.error as exc:
            raise ValueError(f"invalid identifier pattern {self.source!r}: {exc}") from exc

    def compile(self) -> re.Pattern:
        re_flags = 0 if "u" in self.flags else re.ASCII
        for letter in self.flags:
            re_flags |= _FLAG_MAP.get(letter, 0)
        return re.compile(_python_source(self.source), re_flags)

    @classmethod
    def from_dict(cls, d: Union[dict, str, None]) -> "IdentifierPattern":
        """
        Accepts {"source", "flags"}, a bare source string, or None (default).
        A stored pattern that lost its flags is restored as a global matcher.
        """
        if d is None:
            return cls()
        if isinstance(d, str):
            return cls(source=d)
        source = d.get("source") or DEFAULT_IDENTIFIER_SOURCE
        return cls(source=str(source), flags=str(d.get("flags") or "g"))

    def to_dict(self) -> dict:
        return {"source": self.source, "flags": self.flags}


PatternLike = Union[IdentifierPattern, str]


def _as_pattern(pattern: Optional[PatternLike]) -> IdentifierPattern:
    if pattern is None:
        return IdentifierPattern()
    if isinstance(pattern, IdentifierPattern):
        return pattern
    return IdentifierPattern(source=pattern)


def extract_identifiers(value, pattern: Optional[PatternLike] = None) -> list[str]:
    """
    Return every non-overlapping match of pattern in value, left to right.

    Duplicates are kept. None yields an empty list. Whole matches are
    returned even when the pattern contains capture groups.
    """
    if value is None:
        return []
    matcher = _as_pattern(pattern).compile()
    return [m.group(0) for m in matcher.finditer(value_to_str(value))]


def first_identifier(value, pattern: Optional[PatternLike] = None) -> Optional[str]:
    """Return the primary identifier of a key-field value, or None."""
    found = extract_identifiers(value, pattern)
    return found[0] if found else None
