"""
Unit tests for app.utils.link_graph.

Graph construction (duplicates, dangling references, self-links) and the
two-pass traversal (roots first, then rootless cycles, then orphans).
"""
from __future__ import annotations

from app.utils.link_graph import build_link_graph, group_by_links, traverse_groups
from app.utils.sort_config import LinkGroupRule, SimpleSortRule, SortedResult


def _ticket(key, links="", **extra) -> dict:
    return {"Key": key, "Links": links, **extra}


def _results(*records: dict) -> list[SortedResult]:
    return [SortedResult(record=r, original_index=i) for i, r in enumerate(records)]


def _keys(results) -> list:
    return [r.record.get("Key") for r in results]


_RULE = LinkGroupRule(key_field="Key", linked_field="Links")


# ---------------------------------------------------------------------------
# build_link_graph
# ---------------------------------------------------------------------------

class TestBuildLinkGraph:
    def test_nodes_and_inbound_refs(self):
        graph = build_link_graph(
            _results(_ticket("A-1", "A-2, A-3"), _ticket("A-2"), _ticket("A-3")),
            "Key", "Links",
        )
        assert list(graph.nodes) == ["A-1", "A-2", "A-3"]
        assert graph.nodes["A-1"].linked_identifiers == ["A-2", "A-3"]
        assert graph.inbound_refs == {"A-2": {"A-1"}, "A-3": {"A-1"}}
        assert graph.roots() == ["A-1"]

    def test_record_without_identifier_is_not_a_node(self):
        graph = build_link_graph(_results(_ticket("no key here"), _ticket("A-1")), "Key", "Links")
        assert list(graph.nodes) == ["A-1"]

    def test_primary_identifier_is_first_match(self):
        graph = build_link_graph(_results(_ticket("A-5 (was A-1)")), "Key", "Links")
        assert list(graph.nodes) == ["A-5"]

    def test_duplicate_identifier_last_write_wins(self):
        graph = build_link_graph(
            _results(_ticket("A-1", "A-2"), _ticket("A-2"), _ticket("A-1", "A-3"), _ticket("A-3")),
            "Key", "Links",
        )
        node = graph.nodes["A-1"]
        assert node.position == 2
        assert node.linked_identifiers == ["A-3"]
        assert [pos for pos, _r in node.shadowed] == [0]

    def test_self_link_is_preserved(self):
        graph = build_link_graph(_results(_ticket("A-1", "A-1")), "Key", "Links")
        assert graph.nodes["A-1"].linked_identifiers == ["A-1"]
        assert graph.roots() == []


# ---------------------------------------------------------------------------
# traverse_groups
# ---------------------------------------------------------------------------

class TestTraverseGroups:
    def test_root_group_in_dfs_preorder(self):
        results = _results(
            _ticket("A-1", "A-2, A-4"),
            _ticket("A-2", "A-3"),
            _ticket("A-3"),
            _ticket("A-4"),
        )
        traversal = traverse_groups(build_link_graph(results, "Key", "Links"))
        assert len(traversal.groups) == 1
        assert _keys(traversal.groups[0]) == ["A-1", "A-2", "A-3", "A-4"]
        assert {r.group_id for r in traversal.groups[0]} == {"A-1"}
        assert {r.group_size for r in traversal.groups[0]} == {4}

    def test_isolated_nodes_are_singleton_groups(self):
        traversal = traverse_groups(build_link_graph(_results(_ticket("B-2"), _ticket("B-1")), "Key", "Links"))
        assert [_keys(g) for g in traversal.groups] == [["B-2"], ["B-1"]]
        assert traversal.orphans == []

    def test_rootless_cycle_grouped_in_second_pass(self):
        results = _results(_ticket("R-1"), _ticket("C-1", "C-2"), _ticket("C-2", "C-1"))
        traversal = traverse_groups(build_link_graph(results, "Key", "Links"))
        assert [_keys(g) for g in traversal.groups] == [["R-1"], ["C-1", "C-2"]]

    def test_dangling_reference_ignored(self):
        results = _results(_ticket("A-1", "ZZ-404"))
        traversal = traverse_groups(build_link_graph(results, "Key", "Links"))
        assert [_keys(g) for g in traversal.groups] == [["A-1"]]

    def test_shared_child_visited_once(self):
        results = _results(_ticket("A-1", "C-1"), _ticket("B-1", "C-1"), _ticket("C-1"))
        traversal = traverse_groups(build_link_graph(results, "Key", "Links"))
        assert [_keys(g) for g in traversal.groups] == [["A-1", "C-1"], ["B-1"]]

    def test_orphans_sorted_naturally_after_groups(self):
        results = _results(
            _ticket("no id 10"),
            _ticket("A-1"),
            _ticket("no id 9"),
            {"Summary": "missing key field"},
        )
        traversal = traverse_groups(build_link_graph(results, "Key", "Links"))
        assert _keys(traversal.orphans) == [None, "no id 9", "no id 10"]
        assert all(r.group_id is None and r.group_size is None for r in traversal.orphans)
        assert _keys(traversal.flatten())[0] == "A-1"

    def test_sort_within_group_keeps_group_fields(self):
        results = _results(
            _ticket("A-1", "A-2, A-3", Rank="3"),
            _ticket("A-2", Rank="1"),
            _ticket("A-3", Rank="2"),
        )
        traversal = traverse_groups(
            build_link_graph(results, "Key", "Links"),
            sort_within_group=SimpleSortRule(field="Rank", numeric=True),
        )
        group = traversal.groups[0]
        assert _keys(group) == ["A-2", "A-3", "A-1"]
        assert all(r.group_id == "A-1" and r.group_size == 3 for r in group)


# ---------------------------------------------------------------------------
# group_by_links
# ---------------------------------------------------------------------------

class TestGroupByLinks:
    def test_every_record_emitted_exactly_once(self):
        results = _results(
            _ticket("A-1", "A-2"),
            _ticket("A-2", "A-1"),
            _ticket("A-1", "A-3"),
            _ticket("A-3", "A-3"),
            _ticket(""),
        )
        ordered = group_by_links(results, _RULE)
        assert sorted(r.original_index for r in ordered) == [0, 1, 2, 3, 4]

    def test_shadowed_duplicate_printed_with_its_node(self):
        results = _results(_ticket("A-1"), _ticket("A-2"), _ticket("A-1"))
        ordered = group_by_links(results, _RULE)
        assert [r.original_index for r in ordered] == [0, 2, 1]
        assert ordered[0].group_id == ordered[1].group_id == "A-1"
        assert ordered[0].group_size == 2

    def test_long_chain_does_not_recurse(self):
        n = 5000
        records = [_ticket(f"L-{i}", f"L-{i + 1}" if i + 1 < n else "") for i in range(n)]
        ordered = group_by_links(_results(*records), _RULE)
        assert len(ordered) == n
        assert ordered[-1].record["Key"] == f"L-{n - 1}"
        assert ordered[0].group_size == n
