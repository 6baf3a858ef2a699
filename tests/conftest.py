"""Shared fixtures for RuleArena tests."""

import asyncio

import pytest

from rulearena.client import Completion, ProviderError
from rulearena.learning import LearningEngine
from rulearena.models import ModelSpec
from rulearena.orchestrator import Orchestrator
from rulearena.rule_cache import RulePromptCache
from rulearena.storage import InMemoryChatHistory, InMemoryLearningStore

# ---------------------------------------------------------------------------
# Fake model client
# ---------------------------------------------------------------------------


class FakeModelClient:
    """Records every call and answers from a script.

    - failures: model ids that raise ProviderError
    - replies: model id -> text (default "<model_id> answer")
    - delay: seconds each call sleeps, to observe concurrency
    """

    def __init__(self, failures=(), replies=None, delay=0.0, input_tokens=10, output_tokens=20):
        self.failures = set(failures)
        self.replies = replies or {}
        self.delay = delay
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def complete(self, model_id, messages, max_tokens=None, temperature=None):
        self.calls.append(
            {
                "model_id": model_id,
                "messages": messages,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if model_id in self.failures:
                raise ProviderError(model_id, "rate limited")
            return Completion(
                text=self.replies.get(model_id, f"{model_id} answer"),
                input_tokens=self.input_tokens,
                output_tokens=self.output_tokens,
            )
        finally:
            self.in_flight -= 1

    @property
    def called_models(self):
        return [c["model_id"] for c in self.calls]


# ---------------------------------------------------------------------------
# Catalog fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def catalog():
    """Three-model catalog with round per-token rates."""
    models = [
        ModelSpec(
            id="acme/general",
            name="Acme General",
            provider="Acme",
            tier="basic",
            capabilities=("general",),
            input_rate=0.001,
            output_rate=0.002,
            is_default=True,
        ),
        ModelSpec(
            id="acme/coder",
            name="Acme Coder",
            provider="Acme",
            tier="standard",
            capabilities=("coding",),
            input_rate=0.002,
            output_rate=0.004,
        ),
        ModelSpec(
            id="acme/analyst",
            name="Acme Analyst",
            provider="Acme",
            tier="premium",
            capabilities=("analysis", "math"),
            input_rate=0.005,
            output_rate=0.010,
        ),
    ]
    return {m.id: m for m in models}


@pytest.fixture
def model_ids(catalog):
    return list(catalog)


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_client():
    return FakeModelClient()


@pytest.fixture
def store():
    return InMemoryLearningStore()


@pytest.fixture
def history():
    return InMemoryChatHistory()


@pytest.fixture
def rule_cache(store):
    return RulePromptCache(store)


@pytest.fixture
def engine(store, rule_cache):
    return LearningEngine(store, rule_cache=rule_cache)


@pytest.fixture
def make_orchestrator(history, rule_cache, catalog, model_ids):
    """Factory: orchestrator over the test catalog with a given client."""

    def _make(client, available=None):
        available = list(model_ids if available is None else available)
        return Orchestrator(
            client,
            history,
            available_models=lambda _user_id: list(available),
            rule_cache=rule_cache,
            catalog=catalog,
        )

    return _make
