"""
Refinement tracker: the AI pass state machine for one record set.

    idle ──refine()──▶ running ──▶ succeeded
      ▲                   │   └──▶ failed
      └── set_inputs() with different content / invalidate()

Only the most recent refinement is authoritative. Every invalidation bumps a
generation counter and cancels the in-flight task; a run that finishes under
an older generation is discarded, so a slow classifier can never overwrite
results computed for inputs the user has since changed.

Successful results are cached under a SHA-256 of the records plus the
serialized configuration (content, never object identity).
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from enum import Enum
from typing import Optional

from app.services.ai_refinement import (
    STATUS_SKIPPED,
    Classifier,
    RefinementOutcome,
    run_refinement,
)
from app.utils.card_sorter import apply_sorting
from app.utils.sort_config import SortConfiguration, SortedResult

logger = logging.getLogger(__name__)


class RefinementState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def compute_content_hash(records: list, config: Optional[SortConfiguration]) -> str:
    """Stable digest of a record set and its sort configuration."""
    payload = {
        "records": records,
        "config": config.to_dict() if config is not None else None,
    }
    blob = json.dumps(payload, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


class RefinementTracker:
    def __init__(self, max_cache_entries: int = 16):
        self._records: list = []
        self._config: Optional[SortConfiguration] = None
        self._content_hash: Optional[str] = None
        self._state = RefinementState.IDLE
        self._results: Optional[list] = None
        self._error: Optional[str] = None
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._cache: dict[str, list] = {}
        self._max_cache_entries = max_cache_entries

    @property
    def state(self) -> RefinementState:
        return self._state

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def content_hash(self) -> Optional[str]:
        return self._content_hash

    def set_inputs(self, records: list, config: Optional[SortConfiguration]) -> bool:
        """Register the current inputs. Returns True when they changed."""
        content_hash = compute_content_hash(records, config)
        self._records = list(records)
        self._config = config
        if content_hash == self._content_hash:
            return False
        self._content_hash = content_hash
        self.invalidate()
        return True

    def invalidate(self) -> None:
        """Drop any AI result and cancel the run in flight."""
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._state = RefinementState.IDLE
        self._results = None
        self._error = None

    def base_results(self) -> list[SortedResult]:
        return apply_sorting(self._records, self._config)

    def current_results(self) -> list[SortedResult]:
        """The AI ordering when one is authoritative, otherwise the base ordering."""
        if self._state == RefinementState.SUCCEEDED and self._results is not None:
            return list(self._results)
        return self.base_results()

    async def refine(
        self,
        classifier: Optional[Classifier],
        timeout: Optional[float] = None,
    ) -> list[SortedResult]:
        """Run one refinement for the current inputs and return the resulting order."""
        cached = self._cache.get(self._content_hash) if self._content_hash else None
        self.invalidate()
        if cached is not None:
            logger.info("Serving cached refinement for %s", self._content_hash[:12])
            self._state = RefinementState.SUCCEEDED
            self._results = cached
            return list(cached)

        generation = self._generation
        content_hash = self._content_hash
        ai_config = self._config.ai_refinement if self._config is not None else None

        self._state = RefinementState.RUNNING
        task = asyncio.ensure_future(
            run_refinement(self.base_results(), ai_config, classifier, timeout)
        )
        self._task = task
        try:
            outcome: RefinementOutcome = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                logger.info("Refinement generation %d was superseded", generation)
                return self.current_results()
            self._task = None
            self._state = RefinementState.IDLE
            raise

        if generation != self._generation:
            logger.info(
                "Discarding stale refinement (generation %d, current %d)",
                generation, self._generation,
            )
            return self.current_results()

        self._task = None
        if outcome.status == STATUS_SKIPPED:
            self._state = RefinementState.IDLE
        elif outcome.succeeded:
            self._state = RefinementState.SUCCEEDED
            self._results = outcome.results
            self._remember(content_hash, outcome.results)
        else:
            self._state = RefinementState.FAILED
            self._error = outcome.error
        return list(outcome.results)

    def _remember(self, content_hash: Optional[str], results: list) -> None:
        if content_hash is None:
            return
        self._cache[content_hash] = results
        while len(self._cache) > self._max_cache_entries:
            self._cache.pop(next(iter(self._cache)))
