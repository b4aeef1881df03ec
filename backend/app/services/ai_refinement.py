"""
AI refinement of the deterministic card order.

Runs after apply_sorting() and asks an injected classifier to improve the
grouping. The classifier is any async callable ``(prompt, payload) -> str``;
this module never knows which provider answers.

Modes
-----
relationship-links   classifier returns [{"from", "to", "confidence"}]
                     pairs with confidence >= 0.5 become undirected edges;
                     connected components become ``link-group-NNN`` tags.
                     No usable pairs → local identifier scan of the analysed
                     fields; still nothing → base order unchanged.
semantic-clustering  classifier returns {"TICKET-ID": "cluster"}; records are
                     tagged with their cluster, untagged records go last.
fuzzy-matching       classifier returns {"variation": "TICKET-ID"}; matched
                     records get a similarity marker, order is unchanged.

Failure policy
--------------
Classifier errors, timeouts and unparseable responses never reach the
caller: the unmodified base results are returned and the failure is logged.
run_refinement() reports what happened; apply_ai_refinement() returns only
the ordering. Cancellation is not swallowed.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional

from app.services.prompts import (
    DEFAULT_PROMPTS,
    build_mapping_prompt,
    build_relationship_prompt,
)
from app.utils.reference_extractor import PatternLike, extract_identifiers
from app.utils.sort_config import AIMode, AIRefinementConfig, Record, SortedResult
from app.utils.sort_keys import natural_sort_key, value_to_str

logger = logging.getLogger(__name__)

Classifier = Callable[[str, Any], Awaitable[str]]

MIN_RELATIONSHIP_CONFIDENCE = 0.5
FUZZY_MATCH_SCORE = 1.0

KEY_FIELD_CANDIDATES = (
    "Key", "key", "ID", "id", "Issue Key", "Issue ID", "Ticket ID", "Ticket Key",
)
_KEY_HINT_RE = re.compile(r"key|id", re.IGNORECASE)
_FENCE_RE = re.compile(r"^```[\w-]*[ \t]*\n?(.*?)\n?```$", re.DOTALL)

STATUS_SUCCEEDED = "succeeded"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"


class ClassifierResponseError(ValueError):
    """The classifier answered with text that is not usable JSON of the expected shape."""


@dataclass
class RefinementOutcome:
    results: list                    # list[SortedResult]; base results unless succeeded
    status: str                      # 'succeeded' | 'failed' | 'skipped'
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCEEDED


# ---------------------------------------------------------------------------
# Payload preparation
# ---------------------------------------------------------------------------

def find_key_field(results: list) -> str:
    """Guess which field holds the ticket identifier, from the first record."""
    if not results:
        return "Key"
    record: Record = results[0].record
    for candidate in KEY_FIELD_CANDIDATES:
        if candidate in record:
            return candidate
    fields = list(record.keys())
    for name in fields:
        if _KEY_HINT_RE.search(name):
            return name
    return fields[0] if fields else "Key"


def key_text(record: Record, key_field: str) -> Optional[str]:
    """Ticket identifier of a record as text, or None when blank."""
    value = record.get(key_field)
    if value is None:
        return None
    text = value_to_str(value)
    return text or None


def build_classifier_payload(results: list, fields_to_analyze: list, key_field: str) -> list[dict]:
    payload = []
    for index, result in enumerate(results):
        item: dict = {"index": index, key_field: result.record.get(key_field)}
        for name in fields_to_analyze:
            if name != key_field:
                item[name] = result.record.get(name)
        payload.append(item)
    return payload


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

def strip_code_fence(text: str) -> str:
    stripped = text.strip()
    m = _FENCE_RE.match(stripped)
    return m.group(1).strip() if m else stripped


def parse_classifier_json(text, allow_empty: bool = False):
    """Decode a classifier reply, tolerating a markdown code fence around it."""
    if not isinstance(text, str):
        raise ClassifierResponseError(f"classifier returned {type(text).__name__}, expected text")
    body = strip_code_fence(text)
    if not body:
        if allow_empty:
            return None
        raise ClassifierResponseError("classifier returned an empty response")
    try:
        return json.loads(body)
    except json.JSONDecodeError as exc:
        raise ClassifierResponseError(f"classifier response is not valid JSON: {exc}") from exc


def relationships_from_response(data) -> dict[str, list[str]]:
    """Keep well-formed pairs with sufficient confidence; anything else is dropped."""
    if not isinstance(data, list):
        if data is not None:
            logger.warning("Relationship response is %s, not a list; ignoring it", type(data).__name__)
        return {}

    links: dict[str, list[str]] = {}
    for i, item in enumerate(data):
        if not isinstance(item, dict):
            logger.warning("Relationship %d is not an object: %r", i, item)
            continue
        src, dst = item.get("from"), item.get("to")
        if src in (None, "") or dst in (None, ""):
            logger.warning("Relationship %d lacks from/to: %r", i, item)
            continue
        confidence = item.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            continue
        if confidence < MIN_RELATIONSHIP_CONFIDENCE:
            continue
        links.setdefault(value_to_str(src), []).append(value_to_str(dst))
    return links


def _mapping_from_response(data, mode: AIMode) -> dict[str, str]:
    if not isinstance(data, dict):
        raise ClassifierResponseError(
            f"{mode.value} response must be a JSON object, got {type(data).__name__}"
        )
    return {
        str(k): value_to_str(v)
        for k, v in data.items()
        if v is not None and value_to_str(v) != ""
    }


# ---------------------------------------------------------------------------
# Relationship grouping
# ---------------------------------------------------------------------------

def detect_relationships_locally(
    results: list,
    fields_to_analyze: list,
    key_field: str,
    pattern: Optional[PatternLike] = None,
) -> dict[str, list[str]]:
    """Find identifiers of other records mentioned in the analysed fields."""
    known = {k for k in (key_text(r.record, key_field) for r in results) if k}
    links: dict[str, list[str]] = {}

    for result in results:
        own = key_text(result.record, key_field)
        if own is None:
            continue
        found: list[str] = []
        for name in fields_to_analyze:
            for match in extract_identifiers(result.record.get(name), pattern):
                if match in known and match != own and match not in found:
                    found.append(match)
        if found:
            links[own] = found

    logger.info("Local relationship scan found links for %d record(s)", len(links))
    return links


def connected_components(keys: list, links: dict) -> list[list[str]]:
    """
    Undirected connected components over keys, in first-appearance order.

    Edges whose endpoints are not both known keys are ignored.
    """
    graph: dict[str, dict[str, None]] = {}
    for k in keys:
        graph.setdefault(k, {})
    for src, targets in links.items():
        for dst in targets:
            if src in graph and dst in graph:
                graph[src][dst] = None
                graph[dst][src] = None

    visited: set[str] = set()
    components: list[list[str]] = []
    for start in graph:
        if start in visited:
            continue
        component: list[str] = []
        stack = [start]
        while stack:
            node = stack.pop()
            if node in visited:
                continue
            visited.add(node)
            component.append(node)
            stack.extend(n for n in reversed(list(graph[node])) if n not in visited)
        components.append(component)
    return components


def _sort_by_tag(results: list) -> list[SortedResult]:
    """Stable sort by ai_group_id; untagged records go last, tags differing only in case stay apart."""
    return sorted(
        results,
        key=lambda r: (r.ai_group_id is None, natural_sort_key(r.ai_group_id), r.ai_group_id or ""),
    )


def group_by_relationships(results: list, links: dict, key_field: str) -> list[SortedResult]:
    keys = [k for k in (key_text(r.record, key_field) for r in results) if k]
    components = connected_components(keys, links)
    width = max(3, len(str(len(components))))
    tags = {
        key: f"link-group-{i:0{width}d}"
        for i, component in enumerate(components)
        for key in component
    }
    tagged = [
        replace(r, ai_group_id=tags.get(key_text(r.record, key_field)))
        for r in results
    ]
    logger.info("Relationship grouping produced %d group(s)", len(components))
    return _sort_by_tag(tagged)


# ---------------------------------------------------------------------------
# Mode handlers
# ---------------------------------------------------------------------------

async def _ask(classifier: Classifier, prompt: str, payload, timeout: Optional[float]) -> str:
    call = classifier(prompt, payload)
    if timeout is not None:
        return await asyncio.wait_for(call, timeout)
    return await call


async def _refine_relationships(results, config, classifier, key_field, timeout):
    payload = build_classifier_payload(results, config.fields_to_analyze, key_field)
    instructions = config.prompt_for(AIMode.RELATIONSHIP_LINKS) or DEFAULT_PROMPTS[AIMode.RELATIONSHIP_LINKS]
    prompt = build_relationship_prompt(instructions, key_field, payload)

    response = await _ask(classifier, prompt, payload, timeout)
    links = relationships_from_response(parse_classifier_json(response, allow_empty=True))
    if not links:
        logger.warning("Classifier found no usable relationships; scanning fields locally")
        links = detect_relationships_locally(
            results, config.fields_to_analyze, key_field, config.identifier_pattern,
        )
    if not links:
        return results
    return group_by_relationships(results, links, key_field)


async def _refine_clusters(results, config, classifier, key_field, timeout):
    payload = build_classifier_payload(results, config.fields_to_analyze, key_field)
    instructions = config.prompt_for(AIMode.SEMANTIC_CLUSTERING) or DEFAULT_PROMPTS[AIMode.SEMANTIC_CLUSTERING]
    prompt = build_mapping_prompt(instructions, key_field, payload)

    response = await _ask(classifier, prompt, payload, timeout)
    clusters = _mapping_from_response(parse_classifier_json(response), AIMode.SEMANTIC_CLUSTERING)
    tagged = []
    for r in results:
        key = key_text(r.record, key_field)
        tagged.append(replace(r, ai_group_id=clusters.get(key) if key else None))
    return _sort_by_tag(tagged)


async def _refine_fuzzy(results, config, classifier, key_field, timeout):
    payload = build_classifier_payload(results, config.fields_to_analyze, key_field)
    instructions = config.prompt_for(AIMode.FUZZY_MATCHING) or DEFAULT_PROMPTS[AIMode.FUZZY_MATCHING]
    prompt = build_mapping_prompt(instructions, key_field, payload)

    response = await _ask(classifier, prompt, payload, timeout)
    matches = _mapping_from_response(parse_classifier_json(response), AIMode.FUZZY_MATCHING)
    matched = set(matches) | set(matches.values())
    return [
        replace(r, ai_similarity_score=FUZZY_MATCH_SCORE)
        if key_text(r.record, key_field) in matched else r
        for r in results
    ]


_HANDLERS = {
    AIMode.RELATIONSHIP_LINKS: _refine_relationships,
    AIMode.SEMANTIC_CLUSTERING: _refine_clusters,
    AIMode.FUZZY_MATCHING: _refine_fuzzy,
}


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

async def run_refinement(
    base_results: list,
    ai_config: Optional[AIRefinementConfig],
    classifier: Optional[Classifier],
    timeout: Optional[float] = None,
) -> RefinementOutcome:
    if ai_config is None or not ai_config.enabled or classifier is None or not base_results:
        return RefinementOutcome(results=base_results, status=STATUS_SKIPPED)

    key_field = find_key_field(base_results)
    logger.info(
        "AI refinement (%s) over %d record(s) using key field %r",
        ai_config.mode.value, len(base_results), key_field,
    )
    handler = _HANDLERS[ai_config.mode]
    try:
        refined = await handler(list(base_results), ai_config, classifier, key_field, timeout)
    except asyncio.TimeoutError:
        logger.warning("AI refinement timed out after %s s; keeping base order", timeout)
        return RefinementOutcome(results=base_results, status=STATUS_FAILED, error="AI classifier timed out")
    except Exception as exc:
        logger.exception("AI refinement failed; keeping base order")
        return RefinementOutcome(
            results=base_results,
            status=STATUS_FAILED,
            error=str(exc) or type(exc).__name__,
        )
    return RefinementOutcome(results=refined, status=STATUS_SUCCEEDED)


async def apply_ai_refinement(
    base_results: list,
    ai_config: Optional[AIRefinementConfig],
    classifier: Optional[Classifier],
    timeout: Optional[float] = None,
) -> list[SortedResult]:
    """Refine base_results with the classifier; never raises, degrades to base_results."""
    outcome = await run_refinement(base_results, ai_config, classifier, timeout)
    return outcome.results
