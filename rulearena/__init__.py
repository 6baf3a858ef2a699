"""RuleArena - Multi-model chat arena that learns rules from user corrections"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rulearena.core import (
    ActiveRule,
    ArenaMode,
    ErrorCategory,
    ErrorPattern,
    EventType,
    LearningEvent,
    OrchestratorResult,
    ProposedRule,
    RuleStatus,
    Severity,
)
from rulearena.learning import LearningEngine
from rulearena.patterns import KeywordClassifier, PatternClassifier
from rulearena.rule_cache import RulePromptCache
from rulearena.stats import LearningStatistics
from rulearena.storage import (
    InMemoryChatHistory,
    InMemoryLearningStore,
    JSONLearningStore,
    LearningStore,
)

if TYPE_CHECKING:
    from rulearena.client import ModelClient as ModelClient
    from rulearena.orchestrator import Orchestrator as Orchestrator

__version__ = "0.1.0"
__all__ = [
    "Orchestrator",
    "ModelClient",
    "LearningEngine",
    "RulePromptCache",
    "ArenaMode",
    "EventType",
    "ErrorCategory",
    "Severity",
    "RuleStatus",
    "LearningEvent",
    "ErrorPattern",
    "ProposedRule",
    "ActiveRule",
    "OrchestratorResult",
    "LearningStatistics",
    "LearningStore",
    "InMemoryLearningStore",
    "JSONLearningStore",
    "InMemoryChatHistory",
    "PatternClassifier",
    "KeywordClassifier",
]


def __getattr__(name: str):
    # Lazy imports to avoid importing openai unless a model client is needed.
    if name == "ModelClient":
        from rulearena.client import ModelClient

        return ModelClient
    if name == "Orchestrator":
        from rulearena.orchestrator import Orchestrator

        return Orchestrator
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
