"""TTL cache for the learned-rules block injected into every system prompt"""

import threading
import time
from collections.abc import Callable
from typing import List, Optional

from rulearena.core import ActiveRule, Severity
from rulearena.storage import LearningStore

DEFAULT_TTL_SECONDS = 300.0

RULES_HEADER = "## Learned rules\nFollow these rules, learned from past corrections:"

SEVERITY_SYMBOLS = {
    Severity.CRITICAL: "🚨",
    Severity.HIGH: "⚠️",
    Severity.MEDIUM: "📌",
    Severity.LOW: "💡",
}


def order_rules(rules: List[ActiveRule]) -> List[ActiveRule]:
    """Active rules only, severity desc then usage_count desc (stable)."""
    active = [r for r in rules if r.is_active]
    return sorted(active, key=lambda r: (-r.severity.rank, -r.usage_count))


def format_rules_prompt(rules: List[ActiveRule]) -> str:
    """Render rules as a numbered list; no rules gives an empty string."""
    ordered = order_rules(rules)
    if not ordered:
        return ""

    lines = [RULES_HEADER]
    for i, rule in enumerate(ordered, start=1):
        symbol = SEVERITY_SYMBOLS.get(rule.severity, "-")
        lines.append(f"{i}. {symbol} [{rule.severity.value}] {rule.instruction}")
    return "\n".join(lines)


class RulePromptCache:
    """
    Single global entry holding the formatted rules prompt.

    Rules are system-wide, so there is one key for all users. Entries expire
    after `ttl` seconds; invalidate() drops the entry immediately so the next
    read rebuilds from the store.
    """

    def __init__(
        self,
        store: LearningStore,
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.store = store
        self.ttl = ttl
        self.clock = clock or time.monotonic
        self._value: Optional[str] = None
        self._expires_at = 0.0
        self._generation = 0
        self._lock = threading.Lock()

    def get_prompt(self) -> str:
        with self._lock:
            if self._value is not None and self.clock() < self._expires_at:
                return self._value
            generation = self._generation

        value = format_rules_prompt(self.store.list_active_rules(active_only=True))

        with self._lock:
            # An invalidate() during the rebuild wins over the rebuilt value
            if generation == self._generation:
                self._value = value
                self._expires_at = self.clock() + self.ttl
        return value

    def invalidate(self) -> None:
        with self._lock:
            self._generation += 1
            self._value = None
            self._expires_at = 0.0

    @property
    def is_cached(self) -> bool:
        with self._lock:
            return self._value is not None and self.clock() < self._expires_at
