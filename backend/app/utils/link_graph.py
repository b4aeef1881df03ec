"""
Linked-record grouping for card print order.

Builds a directed reference graph from two record fields and walks it to
keep cards that mention each other next to each other.

Graph
    node  = primary identifier of a record (first identifier in its key field)
    edge  = identifier found in that record's links field
    Records whose key field yields no identifier are not nodes.
    Duplicate primary identifiers: the later record wins the node and its
    outbound links; earlier records are kept on the node as "shadowed" and
    are printed alongside it.

Traversal
    Pass 1 — DFS from every root (node nobody references), in node order.
    Pass 2 — DFS from every node still unvisited; these belong to pure
             cycles (A → B → A) or self-loops and have no root.
    One visited set spans both passes, so each node lands in exactly one
    group and total work is O(nodes + edges). DFS uses an explicit stack
    with the same pre-order as the recursive formulation; long reference
    chains cannot exhaust the interpreter stack.

Orphans
    Every input result not emitted by a group, ordered naturally by the raw
    key-field text and appended after all groups.

Usage:
    graph = build_link_graph(results, "Key", "Linked Issues", pattern)
    traversal = traverse_groups(graph, sort_within_group=rule)
    ordered = traversal.flatten()
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from app.utils.reference_extractor import PatternLike, extract_identifiers
from app.utils.sort_config import LinkGroupRule, SimpleSortRule, SortedResult
from app.utils.sort_keys import natural_sort_key, sort_simple

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------

@dataclass
class GraphNode:
    identifier: str
    result: SortedResult             # record that owns this identifier (last write)
    position: int                    # index of result in the input list
    linked_identifiers: list         # outbound links, duplicates and self-links kept
    shadowed: list = field(default_factory=list)  # [(position, SortedResult)] overwritten earlier

    def members(self) -> list:
        """All (position, result) pairs carried by this node, in input order."""
        return sorted(self.shadowed + [(self.position, self.result)], key=lambda m: m[0])


@dataclass
class LinkGraph:
    nodes: dict                      # identifier -> GraphNode, first-insertion order
    inbound_refs: dict               # identifier -> set of referencing identifiers
    results: list                    # input results, in input order
    key_field: str

    def roots(self) -> list[str]:
        return [ident for ident in self.nodes if ident not in self.inbound_refs]


@dataclass
class TraversalResult:
    groups: list                     # list[list[SortedResult]], discovery order
    orphans: list                    # list[SortedResult], natural key order

    def flatten(self) -> list[SortedResult]:
        ordered = [r for group in self.groups for r in group]
        ordered.extend(self.orphans)
        return ordered


# ---------------------------------------------------------------------------
# Graph construction
# ---------------------------------------------------------------------------

def build_link_graph(
    results: list,
    key_field: str,
    linked_field: str,
    pattern: Optional[PatternLike] = None,
) -> LinkGraph:
    nodes: dict[str, GraphNode] = {}
    inbound: dict[str, set] = {}

    for position, result in enumerate(results):
        keys = extract_identifiers(result.record.get(key_field), pattern)
        if not keys:
            continue
        primary = keys[0]
        linked = extract_identifiers(result.record.get(linked_field), pattern)

        shadowed: list = []
        previous = nodes.get(primary)
        if previous is not None:
            logger.debug(
                "Duplicate identifier %s at position %d overrides position %d",
                primary, position, previous.position,
            )
            shadowed = previous.shadowed + [(previous.position, previous.result)]

        # Re-assigning an existing key keeps its original iteration position
        nodes[primary] = GraphNode(
            identifier=primary,
            result=result,
            position=position,
            linked_identifiers=linked,
            shadowed=shadowed,
        )
        for target in linked:
            inbound.setdefault(target, set()).add(primary)

    return LinkGraph(nodes=nodes, inbound_refs=inbound, results=list(results), key_field=key_field)


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------

def _collect(graph: LinkGraph, start: str, visited: set) -> list:
    """Iterative pre-order DFS from start; returns (position, result) pairs."""
    members: list = []
    stack = [start]
    while stack:
        ident = stack.pop()
        if ident in visited:
            continue
        node = graph.nodes.get(ident)
        if node is None:
            continue  # dangling reference
        visited.add(ident)
        members.extend(node.members())
        stack.extend(reversed(node.linked_identifiers))
    return members


def _finish_group(
    members: list,
    group_id: str,
    sort_within_group: Optional[SimpleSortRule],
) -> list[SortedResult]:
    size = len(members)
    group = [
        SortedResult(
            record=r.record,
            original_index=r.original_index,
            group_id=group_id,
            group_size=size,
        )
        for _pos, r in members
    ]
    if sort_within_group is not None:
        group = sort_simple(group, sort_within_group)
    return group


def traverse_groups(
    graph: LinkGraph,
    sort_within_group: Optional[SimpleSortRule] = None,
) -> TraversalResult:
    visited: set[str] = set()
    emitted: set[int] = set()
    groups: list = []

    def _emit(start: str) -> None:
        members = _collect(graph, start, visited)
        if not members:
            return
        emitted.update(pos for pos, _r in members)
        groups.append(_finish_group(members, start, sort_within_group))

    for root in graph.roots():
        if root not in visited:
            _emit(root)

    for ident in graph.nodes:
        if ident not in visited:
            logger.debug("Grouping rootless cycle starting at %s", ident)
            _emit(ident)

    orphans = [
        SortedResult(record=r.record, original_index=r.original_index)
        for pos, r in enumerate(graph.results)
        if pos not in emitted
    ]
    orphans.sort(key=lambda r: natural_sort_key(r.record.get(graph.key_field)))

    return TraversalResult(groups=groups, orphans=orphans)


def group_by_links(results: list, rule: LinkGroupRule) -> list[SortedResult]:
    """Apply one link-group rule: build the graph, traverse, flatten."""
    graph = build_link_graph(
        results, rule.key_field, rule.linked_field, rule.identifier_pattern,
    )
    traversal = traverse_groups(graph, rule.sort_within_group)
    logger.debug(
        "Link grouping on %r/%r: %d nodes, %d groups, %d orphans",
        rule.key_field, rule.linked_field,
        len(graph.nodes), len(traversal.groups), len(traversal.orphans),
    )
    return traversal.flatten()
