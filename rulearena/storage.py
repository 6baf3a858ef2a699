"""Persistence for learning aggregates and chat history."""

import copy
import json
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional

from rulearena.core import (
    ActiveRule,
    ChatTurn,
    ErrorPattern,
    LearningEvent,
    ProposedRule,
    RuleStatus,
)


class LearningStore(ABC):
    """
    Append/query access to the four learning tables.

    - events: insert-only
    - patterns: unique per pattern_key, upserted by the engine
    - proposed rules / active rules: keyed by id
    Implementations must be safe to call from several threads.
    """

    # --- events ---

    @abstractmethod
    def add_event(self, event: LearningEvent) -> LearningEvent:
        pass

    @abstractmethod
    def list_events(self) -> List[LearningEvent]:
        pass

    # --- patterns ---

    @abstractmethod
    def get_pattern(self, pattern_key: str) -> Optional[ErrorPattern]:
        pass

    @abstractmethod
    def save_pattern(self, pattern: ErrorPattern) -> ErrorPattern:
        """Insert or replace the pattern stored under pattern.pattern_key."""
        pass

    @abstractmethod
    def list_patterns(self) -> List[ErrorPattern]:
        pass

    # --- proposed rules ---

    @abstractmethod
    def get_proposed_rule(self, rule_id: str) -> Optional[ProposedRule]:
        pass

    @abstractmethod
    def save_proposed_rule(self, rule: ProposedRule) -> ProposedRule:
        pass

    @abstractmethod
    def list_proposed_rules(self, status: Optional[RuleStatus] = None) -> List[ProposedRule]:
        pass

    # --- active rules ---

    @abstractmethod
    def get_active_rule(self, rule_id: str) -> Optional[ActiveRule]:
        pass

    @abstractmethod
    def save_active_rule(self, rule: ActiveRule) -> ActiveRule:
        pass

    @abstractmethod
    def list_active_rules(self, active_only: bool = True) -> List[ActiveRule]:
        pass

    @abstractmethod
    def save_approval(self, rule: ProposedRule, active: ActiveRule) -> ActiveRule:
        """Persist an approved proposal and its ActiveRule together, or neither."""
        pass


class InMemoryLearningStore(LearningStore):
    """Thread-safe in-process store. Reads return copies."""

    def __init__(self):
        self.lock = threading.RLock()
        self._events: List[LearningEvent] = []
        self._patterns: Dict[str, ErrorPattern] = {}
        self._proposed: Dict[str, ProposedRule] = {}
        self._active: Dict[str, ActiveRule] = {}

    def _changed(self) -> None:
        """Hook called after every write"""

    def add_event(self, event: LearningEvent) -> LearningEvent:
        with self.lock:
            if any(e.id == event.id for e in self._events):
                raise ValueError(f"Event {event.id} already recorded")
            self._events.append(event)
            self._changed()
        return event

    def list_events(self) -> List[LearningEvent]:
        with self.lock:
            return list(self._events)

    def get_pattern(self, pattern_key: str) -> Optional[ErrorPattern]:
        with self.lock:
            pattern = self._patterns.get(pattern_key)
            return copy.deepcopy(pattern) if pattern else None

    def save_pattern(self, pattern: ErrorPattern) -> ErrorPattern:
        with self.lock:
            existing = self._patterns.get(pattern.pattern_key)
            if existing is not None and existing.id != pattern.id:
                raise ValueError(
                    f"Pattern key {pattern.pattern_key!r} already belongs to {existing.id}"
                )
            self._patterns[pattern.pattern_key] = copy.deepcopy(pattern)
            self._changed()
        return pattern

    def list_patterns(self) -> List[ErrorPattern]:
        with self.lock:
            return [copy.deepcopy(p) for p in self._patterns.values()]

    def get_proposed_rule(self, rule_id: str) -> Optional[ProposedRule]:
        with self.lock:
            rule = self._proposed.get(rule_id)
            return copy.deepcopy(rule) if rule else None

    def save_proposed_rule(self, rule: ProposedRule) -> ProposedRule:
        with self.lock:
            self._proposed[rule.id] = copy.deepcopy(rule)
            self._changed()
        return rule

    def list_proposed_rules(self, status: Optional[RuleStatus] = None) -> List[ProposedRule]:
        with self.lock:
            return [
                copy.deepcopy(r)
                for r in self._proposed.values()
                if status is None or r.status == status
            ]

    def get_active_rule(self, rule_id: str) -> Optional[ActiveRule]:
        with self.lock:
            rule = self._active.get(rule_id)
            return copy.deepcopy(rule) if rule else None

    def save_active_rule(self, rule: ActiveRule) -> ActiveRule:
        with self.lock:
            self._active[rule.id] = copy.deepcopy(rule)
            self._changed()
        return rule

    def list_active_rules(self, active_only: bool = True) -> List[ActiveRule]:
        with self.lock:
            return [
                copy.deepcopy(r)
                for r in self._active.values()
                if r.is_active or not active_only
            ]

    def save_approval(self, rule: ProposedRule, active: ActiveRule) -> ActiveRule:
        with self.lock:
            previous = self._proposed.get(rule.id)
            self._proposed[rule.id] = copy.deepcopy(rule)
            self._active[active.id] = copy.deepcopy(active)
            try:
                self._changed()
            except Exception:
                if previous is None:
                    self._proposed.pop(rule.id, None)
                else:
                    self._proposed[rule.id] = previous
                self._active.pop(active.id, None)
                raise
        return active

    def to_dict(self) -> dict:
        with self.lock:
            return {
                "events": [e.to_dict() for e in self._events],
                "patterns": [p.to_dict() for p in self._patterns.values()],
                "proposed_rules": [r.to_dict() for r in self._proposed.values()],
                "active_rules": [r.to_dict() for r in self._active.values()],
            }


class JSONLearningStore(InMemoryLearningStore):
    """In-memory store mirrored to <storage_path>/learning.json after each write."""

    FILENAME = "learning.json"

    def __init__(self, storage_path):
        super().__init__()
        self.storage_path = Path(storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)
        self.filepath = self.storage_path / self.FILENAME
        self.load()

    def _changed(self) -> None:
        self.save()

    def save(self) -> None:
        with self.lock:
            tmp_path = self.filepath.with_suffix(".json.tmp")
            with open(tmp_path, "w") as f:
                json.dump(self.to_dict(), f, indent=2, default=str)
            tmp_path.replace(self.filepath)

    def load(self) -> None:
        """Load persisted aggregates if the file exists."""
        if not self.filepath.exists():
            return

        with open(self.filepath) as f:
            data = json.load(f)

        with self.lock:
            self._events = [LearningEvent.from_dict(e) for e in data.get("events", [])]
            self._patterns = {
                p["pattern_key"]: ErrorPattern.from_dict(p) for p in data.get("patterns", [])
            }
            self._proposed = {
                r["id"]: ProposedRule.from_dict(r) for r in data.get("proposed_rules", [])
            }
            self._active = {
                r["id"]: ActiveRule.from_dict(r) for r in data.get("active_rules", [])
            }


class InMemoryChatHistory:
    """Reference chat-history provider: chat_id -> ordered turns."""

    def __init__(self):
        self._turns: Dict[str, List[ChatTurn]] = defaultdict(list)
        self.lock = threading.Lock()

    def append(self, chat_id: str, role: str, content: str) -> ChatTurn:
        turn = ChatTurn(role=role, content=content)
        with self.lock:
            self._turns[chat_id].append(turn)
        return turn

    def get_recent_turns(self, chat_id: str, limit: int = 20) -> List[ChatTurn]:
        """Last `limit` turns, oldest first."""
        if limit <= 0:
            return []
        with self.lock:
            return list(self._turns.get(chat_id, [])[-limit:])

    def clear(self, chat_id: str) -> None:
        with self.lock:
            self._turns.pop(chat_id, None)
