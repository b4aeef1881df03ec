"""
Grouping strategy discovery.

Shows the classifier a random sample of records and asks which AI
refinement modes and fields would group them well. The suggestions feed
the sort panel; picking one fills in an AIRefinementConfig.

Never raises: a failed or unusable reply yields a single generic
semantic-clustering suggestion over the first few columns.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Optional

from app.services.ai_refinement import Classifier, parse_classifier_json
from app.services.prompts import build_strategy_prompt
from app.utils.sort_config import AIMode

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 50
DEFAULT_CONFIDENCE = 0.7


@dataclass
class GroupingStrategy:
    id: str
    name: str
    description: str
    mode: AIMode
    suggested_fields: list
    confidence: float

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "mode": self.mode.value,
            "suggested_fields": list(self.suggested_fields),
            "confidence": self.confidence,
        }


def fallback_strategy(columns: list) -> GroupingStrategy:
    return GroupingStrategy(
        id="fallback-semantic",
        name="AI Auto-Group",
        description="AI will analyze all fields and group similar tickets together",
        mode=AIMode.SEMANTIC_CLUSTERING,
        suggested_fields=list(columns[:5]),
        confidence=0.6,
    )


def _clamp_confidence(value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not value:
        return DEFAULT_CONFIDENCE
    return max(0.0, min(1.0, float(value)))


def strategy_from_dict(d) -> Optional[GroupingStrategy]:
    """Validate one suggestion; None when it is unusable."""
    if not isinstance(d, dict):
        return None
    fields = d.get("suggestedFields", d.get("suggested_fields"))
    if not d.get("id") or not d.get("name") or not isinstance(fields, list) or not fields:
        return None
    try:
        mode = AIMode.parse(d.get("mode"))
    except ValueError:
        return None
    return GroupingStrategy(
        id=str(d["id"]),
        name=str(d["name"]),
        description=str(d.get("description") or ""),
        mode=mode,
        suggested_fields=[str(f) for f in fields],
        confidence=_clamp_confidence(d.get("confidence")),
    )


def sample_records(records: list, sample_size: int, rng: Optional[random.Random] = None) -> list:
    rng = rng or random.Random()
    if len(records) <= sample_size:
        picked = list(records)
        rng.shuffle(picked)
        return picked
    return rng.sample(records, sample_size)


async def suggest_grouping_strategies(
    records: list,
    columns: list,
    classifier: Optional[Classifier],
    sample_size: int = DEFAULT_SAMPLE_SIZE,
    rng: Optional[random.Random] = None,
) -> list[GroupingStrategy]:
    if not records:
        return []
    if classifier is None:
        logger.warning("No classifier configured; skipping strategy discovery")
        return []

    columns = list(columns) or list(records[0].keys())
    sample = [
        {"_index": i, **{col: record.get(col) for col in columns}}
        for i, record in enumerate(sample_records(records, sample_size, rng))
    ]
    prompt = build_strategy_prompt(columns, sample, len(records))

    try:
        response = await classifier(prompt, sample)
        data = parse_classifier_json(response)
        if not isinstance(data, list):
            raise ValueError(f"expected a list of strategies, got {type(data).__name__}")
    except Exception:
        logger.exception("Strategy discovery failed; using fallback strategy")
        return [fallback_strategy(columns)]

    strategies = [s for s in (strategy_from_dict(item) for item in data) if s is not None]
    logger.info("Classifier suggested %d usable grouping strategies", len(strategies))
    return strategies
