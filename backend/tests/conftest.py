"""
Shared pytest fixtures.

All tests are pure unit tests; none needs a network or an AI provider.
The classifier fixture stands in for the injected async classifier: it
replies from a scripted queue and records every (prompt, payload) call so
tests can assert on what was sent.
"""
import asyncio

import pytest


class ScriptedClassifier:
    """Async callable replying with queued responses, in order.

    A queued Exception instance is raised instead of returned. ``delay``
    makes every call sleep first, for timeout and cancellation tests.
    """

    def __init__(self, *responses, delay: float = 0.0):
        self.responses = list(responses)
        self.delay = delay
        self.calls: list[tuple[str, object]] = []

    async def __call__(self, prompt: str, payload) -> str:
        self.calls.append((prompt, payload))
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.responses:
            raise RuntimeError("classifier script exhausted")
        reply = self.responses.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def scripted_classifier():
    """Factory fixture: ``scripted_classifier('[...]', delay=0.1)``."""
    return ScriptedClassifier
