"""
Tests for the AI refinement pass.

A scripted classifier (see conftest) replaces the real provider. The core
guarantees: well-formed replies refine the order, and every failure returns
the base results unchanged instead of raising.
"""
import asyncio

import pytest

from app.services.ai_refinement import (
    STATUS_FAILED,
    STATUS_SKIPPED,
    STATUS_SUCCEEDED,
    ClassifierResponseError,
    apply_ai_refinement,
    build_classifier_payload,
    connected_components,
    detect_relationships_locally,
    find_key_field,
    group_by_relationships,
    parse_classifier_json,
    relationships_from_response,
    run_refinement,
)
from app.utils.card_sorter import apply_sorting
from app.utils.sort_config import AIMode, AIRefinementConfig


# ── helpers ───────────────────────────────────────────────────────────────────

_TICKETS = [
    {"Key": "SBT-1", "Summary": "Login page", "Description": "blocked by SBT-3"},
    {"Key": "SBT-2", "Summary": "Export CSV", "Description": ""},
    {"Key": "SBT-3", "Summary": "Auth service", "Description": "needed for login"},
    {"Key": "SBT-4", "Summary": "Export PDF", "Description": "same as SBT-2"},
]


def _base(records=None):
    return apply_sorting(_TICKETS if records is None else records)


def _ai(mode=AIMode.RELATIONSHIP_LINKS, fields=("Summary", "Description"), **kwargs) -> AIRefinementConfig:
    return AIRefinementConfig(enabled=True, mode=mode, fields_to_analyze=list(fields), **kwargs)


def _keys(results) -> list:
    return [r.record.get("Key") for r in results]


# ── helpers under test ───────────────────────────────────────────────────────

class TestFindKeyField:
    def test_prefers_known_names(self):
        assert find_key_field(_base([{"Summary": "x", "Issue Key": "A-1"}])) == "Issue Key"

    def test_falls_back_to_key_like_name(self):
        assert find_key_field(_base([{"Summary": "x", "WorkItemID": "7"}])) == "WorkItemID"

    def test_falls_back_to_first_field(self):
        assert find_key_field(_base([{"Title": "x", "Owner": "y"}])) == "Title"

    def test_empty_input(self):
        assert find_key_field([]) == "Key"


def test_payload_has_index_key_and_fields():
    payload = build_classifier_payload(_base(), ["Summary"], "Key")
    assert payload[1] == {"index": 1, "Key": "SBT-2", "Summary": "Export CSV"}


class TestParseClassifierJson:
    def test_plain_json(self):
        assert parse_classifier_json('{"a": 1}') == {"a": 1}

    def test_fenced_json(self):
        assert parse_classifier_json('```json\n[{"from": "A"}]\n```') == [{"from": "A"}]

    def test_invalid_json_raises(self):
        with pytest.raises(ClassifierResponseError):
            parse_classifier_json("sure! here you go")

    def test_empty_reply(self):
        assert parse_classifier_json("  ", allow_empty=True) is None
        with pytest.raises(ClassifierResponseError):
            parse_classifier_json("")


def test_relationships_filter_confidence_and_shape():
    links = relationships_from_response([
        {"from": "A-1", "to": "A-2", "confidence": 0.9},
        {"from": "A-1", "to": "A-3", "confidence": 0.2},
        {"from": "A-4", "to": "", "confidence": 1.0},
        {"from": "A-5", "to": "A-6", "confidence": "high"},
        "garbage",
        {"from": "A-7", "to": "A-8", "confidence": 0.5},
    ])
    assert links == {"A-1": ["A-2"], "A-7": ["A-8"]}


def test_relationships_from_non_list_is_empty():
    assert relationships_from_response({"from": "A-1"}) == {}


def test_connected_components_are_undirected():
    components = connected_components(
        ["A", "B", "C", "D"],
        {"C": ["A"], "D": ["unknown"]},
    )
    assert components == [["A", "C"], ["B"], ["D"]]


def test_local_scan_finds_known_identifiers_only():
    links = detect_relationships_locally(_base(), ["Description"], "Key")
    assert links == {"SBT-1": ["SBT-3"], "SBT-4": ["SBT-2"]}


def test_group_tags_are_zero_padded_in_discovery_order():
    grouped = group_by_relationships(_base(), {"SBT-1": ["SBT-3"], "SBT-4": ["SBT-2"]}, "Key")
    assert _keys(grouped) == ["SBT-1", "SBT-3", "SBT-2", "SBT-4"]
    assert [r.ai_group_id for r in grouped] == [
        "link-group-000", "link-group-000", "link-group-001", "link-group-001",
    ]


# ── run_refinement: skip paths ───────────────────────────────────────────────

async def test_disabled_config_is_skipped(scripted_classifier):
    classifier = scripted_classifier()
    outcome = await run_refinement(_base(), AIRefinementConfig(enabled=False), classifier)
    assert outcome.status == STATUS_SKIPPED
    assert classifier.calls == []


async def test_missing_classifier_is_skipped():
    outcome = await run_refinement(_base(), _ai(), None)
    assert outcome.status == STATUS_SKIPPED
    assert outcome.results == _base()


async def test_empty_input_is_skipped(scripted_classifier):
    outcome = await run_refinement([], _ai(), scripted_classifier())
    assert outcome.status == STATUS_SKIPPED
    assert outcome.results == []


# ── relationship mode ────────────────────────────────────────────────────────

async def test_relationships_group_records(scripted_classifier):
    classifier = scripted_classifier(
        '[{"from": "SBT-4", "to": "SBT-1", "confidence": 0.8},'
        ' {"from": "SBT-3", "to": "SBT-2", "confidence": 0.95}]'
    )
    outcome = await run_refinement(_base(), _ai(), classifier)
    assert outcome.status == STATUS_SUCCEEDED
    assert _keys(outcome.results) == ["SBT-1", "SBT-4", "SBT-2", "SBT-3"]
    prompt, payload = classifier.calls[0]
    assert '"Key"' in prompt
    assert payload[0]["index"] == 0


async def test_custom_prompt_is_used(scripted_classifier):
    classifier = scripted_classifier("[]")
    config = _ai(prompts={AIMode.RELATIONSHIP_LINKS.value: "Only look at blockers."})
    await run_refinement(_base(), config, classifier)
    assert classifier.calls[0][0].startswith("Only look at blockers.")


async def test_empty_array_uses_local_scan(scripted_classifier):
    base = _base()
    refined = await apply_ai_refinement(base, _ai(), scripted_classifier("[]"))
    expected = group_by_relationships(
        base, detect_relationships_locally(base, ["Summary", "Description"], "Key"), "Key",
    )
    assert refined == expected


async def test_no_relationships_anywhere_keeps_base(scripted_classifier):
    records = [{"Key": "X-1", "Summary": "a"}, {"Key": "X-2", "Summary": "b"}]
    base = _base(records)
    outcome = await run_refinement(base, _ai(fields=["Summary"]), scripted_classifier("[]"))
    assert outcome.results == base


async def test_low_confidence_only_uses_local_scan(scripted_classifier):
    classifier = scripted_classifier('[{"from": "SBT-2", "to": "SBT-3", "confidence": 0.1}]')
    refined = await apply_ai_refinement(_base(), _ai(), classifier)
    assert [r.ai_group_id for r in refined][:2] == ["link-group-000", "link-group-000"]
    assert _keys(refined)[:2] == ["SBT-1", "SBT-3"]


# ── semantic clustering ──────────────────────────────────────────────────────

async def test_clusters_sort_and_untagged_last(scripted_classifier):
    classifier = scripted_classifier('{"SBT-2": "export", "SBT-4": "export", "SBT-1": "auth"}')
    outcome = await run_refinement(_base(), _ai(mode=AIMode.SEMANTIC_CLUSTERING), classifier)
    assert outcome.succeeded
    assert _keys(outcome.results) == ["SBT-1", "SBT-2", "SBT-4", "SBT-3"]
    assert outcome.results[-1].ai_group_id is None


async def test_cluster_reply_must_be_object(scripted_classifier):
    base = _base()
    outcome = await run_refinement(base, _ai(mode=AIMode.SEMANTIC_CLUSTERING), scripted_classifier("[]"))
    assert outcome.status == STATUS_FAILED
    assert outcome.results == base


# ── fuzzy matching ───────────────────────────────────────────────────────────

async def test_fuzzy_marks_matches_without_reordering(scripted_classifier):
    classifier = scripted_classifier('```json\n{"sbt 3": "SBT-3", "the export bug": "SBT-2"}\n```')
    outcome = await run_refinement(_base(), _ai(mode=AIMode.FUZZY_MATCHING), classifier)
    assert _keys(outcome.results) == _keys(_base())
    assert [r.ai_similarity_score for r in outcome.results] == [None, 1.0, 1.0, None]


# ── failure handling ─────────────────────────────────────────────────────────

@pytest.mark.parametrize("reply", [
    RuntimeError("provider down"),
    "this is not json",
])
async def test_failures_return_base_results(scripted_classifier, reply):
    base = _base()
    outcome = await run_refinement(base, _ai(), scripted_classifier(reply))
    assert outcome.status == STATUS_FAILED
    assert outcome.error
    assert outcome.results == base


async def test_timeout_returns_base_results(scripted_classifier):
    base = _base()
    classifier = scripted_classifier("[]", delay=1.0)
    outcome = await run_refinement(base, _ai(), classifier, timeout=0.01)
    assert outcome.status == STATUS_FAILED
    assert "timed out" in outcome.error
    assert outcome.results == base


async def test_apply_ai_refinement_never_raises(scripted_classifier):
    base = _base()
    refined = await apply_ai_refinement(base, _ai(), scripted_classifier(ValueError("boom")))
    assert refined == base


async def test_cancellation_propagates(scripted_classifier):
    task = asyncio.ensure_future(
        run_refinement(_base(), _ai(), scripted_classifier("[]", delay=1.0))
    )
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


async def test_clusters_differing_only_in_case_stay_apart(scripted_classifier):
    classifier = scripted_classifier('{"SBT-1": "auth", "SBT-2": "Auth", "SBT-3": "auth", "SBT-4": "Auth"}')
    outcome = await run_refinement(_base(), _ai(mode=AIMode.SEMANTIC_CLUSTERING), classifier)
    assert [r.ai_group_id for r in outcome.results] == ["Auth", "Auth", "auth", "auth"]
    assert _keys(outcome.results) == ["SBT-2", "SBT-4", "SBT-1", "SBT-3"]
