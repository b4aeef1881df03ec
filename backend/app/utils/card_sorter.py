"""Rule chain applier: turns imported records into print order.

Rules compose by re-sorting: rule N is applied to the output of rule N-1.
A simple rule placed after a link-group rule therefore re-sorts the whole
list and breaks up the groups; that ordering is the user's choice.
"""
from __future__ import annotations

import logging
from typing import Optional

from app.utils.link_graph import group_by_links
from app.utils.sort_config import (
    LinkGroupRule,
    Record,
    SimpleSortRule,
    SortConfiguration,
    SortedResult,
    SortRule,
)
from app.utils.sort_keys import sort_simple

logger = logging.getLogger(__name__)


def apply_rule(results: list, rule: SortRule) -> list[SortedResult]:
    if isinstance(rule, SimpleSortRule):
        return sort_simple(results, rule)
    if isinstance(rule, LinkGroupRule):
        return group_by_links(results, rule)
    raise TypeError(f"Unsupported sort rule: {rule!r}")


def apply_sorting(
    records: list[Record],
    config: Optional[SortConfiguration] = None,
) -> list[SortedResult]:
    """
    Produce the deterministic base ordering for a record set.

    Pure and synchronous: identical inputs always yield identical output.
    With no rules the result is the identity ordering.
    """
    results = [SortedResult(record=r, original_index=i) for i, r in enumerate(records)]
    if config is None or not config.rules:
        return results

    for rule in config.rules:
        results = apply_rule(results, rule)
        logger.debug("Applied %s rule: %d results", type(rule).__name__, len(results))
    return results
