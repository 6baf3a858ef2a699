from __future__ import annotations

from dataclasses import dataclass

from api.config import Settings, settings
from rulearena.client import ModelClient
from rulearena.learning import LearningEngine
from rulearena.models import MODEL_CATALOG
from rulearena.orchestrator import Orchestrator
from rulearena.rule_cache import RulePromptCache
from rulearena.storage import (
    InMemoryChatHistory,
    InMemoryLearningStore,
    JSONLearningStore,
    LearningStore,
)


@dataclass
class AppState:
    """Process-wide collaborators shared by every request"""

    store: LearningStore
    rule_cache: RulePromptCache
    history: InMemoryChatHistory
    engine: LearningEngine
    orchestrator: Orchestrator
    allowed_models: list[str]

    def available_models(self, user_id: str) -> list[str]:
        # Tier gating is external; every caller sees the same list
        return list(self.allowed_models)

    def shutdown(self) -> None:
        self.engine.stop()


def build_state(config: Settings = settings, client=None) -> AppState:
    store: LearningStore = (
        JSONLearningStore(config.STORAGE_PATH) if config.STORAGE_PATH else InMemoryLearningStore()
    )
    rule_cache = RulePromptCache(store, ttl=config.RULE_CACHE_TTL_SECONDS)
    history = InMemoryChatHistory()
    engine = LearningEngine(store, rule_cache=rule_cache, background=config.BACKGROUND_MINING)

    if client is None:
        client = ModelClient(
            api_key=config.OPENROUTER_API_KEY or None,
            base_url=config.OPENROUTER_BASE_URL,
            timeout=config.REQUEST_TIMEOUT_SECONDS,
            default_max_tokens=config.MAX_TOKENS,
            default_temperature=config.TEMPERATURE,
        )

    allowed = [m for m in config.ALLOWED_MODELS if m in MODEL_CATALOG] or list(MODEL_CATALOG)
    orchestrator = Orchestrator(
        client,
        history,
        available_models=lambda _user_id: list(allowed),
        rule_cache=rule_cache,
        history_limit=config.HISTORY_LIMIT,
        max_tokens=config.MAX_TOKENS,
        temperature=config.TEMPERATURE,
    )
    return AppState(
        store=store,
        rule_cache=rule_cache,
        history=history,
        engine=engine,
        orchestrator=orchestrator,
        allowed_models=allowed,
    )
