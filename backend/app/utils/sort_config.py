"""
Card sort configuration and result types.

SortConfiguration (stored inside card templates)
-------
rules           ordered chain; each rule re-sorts the previous rule's output
                  simple      field sort (asc/desc, natural or numeric)
                  link-group  cluster records that reference each other
ai_refinement   optional best-effort classifier pass run after the rules

``from_dict`` accepts both the current snake_case layout and the camelCase
layout older templates were saved with; ``to_dict`` always writes the
current layout. Identifier patterns are written as {"source", "flags"} and
restored as global matchers.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Optional, Union

from app.utils.reference_extractor import IdentifierPattern

logger = logging.getLogger(__name__)

Record = dict[str, Any]
Direction = Literal["asc", "desc"]


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SortedResult:
    """One card in print order."""
    record: Record
    original_index: int                        # position in the imported list
    group_id: Optional[str] = None             # link-group rules only
    group_size: Optional[int] = None           # link-group rules only
    ai_group_id: Optional[str] = None          # AI refinement only (advisory)
    ai_similarity_score: Optional[float] = None  # AI refinement only (advisory)

    def to_dict(self) -> dict:
        return {
            "record": self.record,
            "original_index": self.original_index,
            "group_id": self.group_id,
            "group_size": self.group_size,
            "ai_group_id": self.ai_group_id,
            "ai_similarity_score": self.ai_similarity_score,
        }


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def _pick(d: dict, *names: str, default=None):
    """Return the first key of names present in d."""
    for name in names:
        if name in d and d[name] is not None:
            return d[name]
    return default


def _direction(value) -> Direction:
    return "desc" if str(value or "asc").lower() == "desc" else "asc"


@dataclass(frozen=True)
class SimpleSortRule:
    field: str
    direction: Direction = "asc"
    numeric: bool = False

    @classmethod
    def from_dict(cls, d: dict) -> "SimpleSortRule":
        name = d.get("field")
        if not name:
            raise ValueError("simple sort rule requires 'field'")
        return cls(
            field=str(name),
            direction=_direction(d.get("direction")),
            numeric=bool(d.get("numeric", False)),
        )

    def to_dict(self) -> dict:
        return {"field": self.field, "direction": self.direction, "numeric": self.numeric}


@dataclass(frozen=True)
class LinkGroupRule:
    key_field: str
    linked_field: str
    identifier_pattern: IdentifierPattern = field(default_factory=IdentifierPattern)
    sort_within_group: Optional[SimpleSortRule] = None

    @classmethod
    def from_dict(cls, d: dict) -> "LinkGroupRule":
        key_field = _pick(d, "key_field", "keyField")
        linked_field = _pick(d, "linked_field", "linkedIssuesField", "linkedField")
        if not key_field or not linked_field:
            raise ValueError("link-group rule requires 'key_field' and 'linked_field'")
        within = _pick(d, "sort_within_group", "sortWithinGroups")
        return cls(
            key_field=str(key_field),
            linked_field=str(linked_field),
            identifier_pattern=IdentifierPattern.from_dict(
                _pick(d, "identifier_pattern", "issueKeyPattern")
            ),
            sort_within_group=SimpleSortRule.from_dict(within) if within else None,
        )

    def to_dict(self) -> dict:
        return {
            "key_field": self.key_field,
            "linked_field": self.linked_field,
            "identifier_pattern": self.identifier_pattern.to_dict(),
            "sort_within_group": (
                self.sort_within_group.to_dict() if self.sort_within_group else None
            ),
        }


SortRule = Union[SimpleSortRule, LinkGroupRule]

_LINK_RULE_TYPES = {"link-group", "linked-issues"}


def rule_from_dict(d: dict) -> Optional[SortRule]:
    """Build one rule from its tagged dict; unknown types yield None."""
    if not isinstance(d, dict):
        raise ValueError(f"sort rule must be an object, got {type(d).__name__}")
    rule_type = d.get("type")
    if rule_type == "simple":
        return SimpleSortRule.from_dict(_pick(d, "simple", default=d))
    if rule_type in _LINK_RULE_TYPES:
        return LinkGroupRule.from_dict(_pick(d, "link_group", "linkedIssues", default=d))
    logger.warning("Skipping sort rule with unknown type %r", rule_type)
    return None


def rule_to_dict(rule: SortRule) -> dict:
    if isinstance(rule, SimpleSortRule):
        return {"type": "simple", "simple": rule.to_dict()}
    return {"type": "link-group", "link_group": rule.to_dict()}


# ---------------------------------------------------------------------------
# AI refinement
# ---------------------------------------------------------------------------

class AIMode(str, Enum):
    RELATIONSHIP_LINKS = "relationship-links"
    SEMANTIC_CLUSTERING = "semantic-clustering"
    FUZZY_MATCHING = "fuzzy-matching"

    @classmethod
    def parse(cls, value) -> "AIMode":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        if text == "natural-language-links":
            return cls.RELATIONSHIP_LINKS
        return cls(text)


# camelCase prompt keys used by older templates
_LEGACY_PROMPT_KEYS = {
    "naturalLanguageLinks": AIMode.RELATIONSHIP_LINKS,
    "semanticClustering": AIMode.SEMANTIC_CLUSTERING,
    "fuzzyMatching": AIMode.FUZZY_MATCHING,
}


@dataclass
class AIRefinementConfig:
    """Controls the optional classifier pass. Empty prompts fall back to defaults."""
    enabled: bool = False
    mode: AIMode = AIMode.RELATIONSHIP_LINKS
    prompts: dict = field(default_factory=dict)   # AIMode.value -> prompt text
    fields_to_analyze: list = field(default_factory=list)
    identifier_pattern: IdentifierPattern = field(default_factory=IdentifierPattern)

    def prompt_for(self, mode: AIMode) -> Optional[str]:
        return self.prompts.get(mode.value) or None

    @classmethod
    def from_dict(cls, d: dict) -> "AIRefinementConfig":
        prompts: dict = {}
        for key, text in (d.get("prompts") or {}).items():
            mode = _LEGACY_PROMPT_KEYS.get(key)
            if mode is None:
                try:
                    mode = AIMode.parse(key)
                except ValueError:
                    continue
            if text:
                prompts[mode.value] = str(text)
        return cls(
            enabled=bool(d.get("enabled", False)),
            mode=AIMode.parse(d.get("mode") or AIMode.RELATIONSHIP_LINKS),
            prompts=prompts,
            fields_to_analyze=[
                str(f) for f in _pick(d, "fields_to_analyze", "fieldsToAnalyze", default=[])
            ],
            identifier_pattern=IdentifierPattern.from_dict(d.get("identifier_pattern")),
        )

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "mode": self.mode.value,
            "prompts": dict(self.prompts),
            "fields_to_analyze": list(self.fields_to_analyze),
            "identifier_pattern": self.identifier_pattern.to_dict(),
        }


# ---------------------------------------------------------------------------
# Top-level configuration
# ---------------------------------------------------------------------------

@dataclass
class SortConfiguration:
    rules: list = field(default_factory=list)    # list[SortRule]
    ai_refinement: Optional[AIRefinementConfig] = None

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> "SortConfiguration":
        d = d or {}
        rules = []
        for raw in d.get("rules") or []:
            rule = rule_from_dict(raw)
            if rule is not None:
                rules.append(rule)
        ai = _pick(d, "ai_refinement", "aiSort")
        return cls(
            rules=rules,
            ai_refinement=AIRefinementConfig.from_dict(ai) if ai else None,
        )

    def to_dict(self) -> dict:
        return {
            "rules": [rule_to_dict(r) for r in self.rules],
            "ai_refinement": self.ai_refinement.to_dict() if self.ai_refinement else None,
        }
