"""Learning engine: records user signals, mines patterns, proposes rules.

Events are stored first. Mining runs afterwards, either inline or on a
background worker, and its failures never reach the caller.
"""

import logging
import queue
import threading
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Dict, List, Optional

from rulearena.core import (
    ActiveRule,
    CorrectionPayload,
    ErrorCategory,
    ErrorPattern,
    EventType,
    FeedbackPayload,
    LearningEvent,
    ProposedRule,
    RuleStatus,
)
from rulearena.patterns import (
    GENERAL_ERROR_KEY,
    KeywordClassifier,
    PatternClassifier,
    tokenize,
    truncate,
)
from rulearena.prompts import render_rule_template
from rulearena.rule_cache import RulePromptCache, format_rules_prompt
from rulearena.stats import LearningStatistics, compute_statistics
from rulearena.storage import LearningStore

logger = logging.getLogger(__name__)

PROPOSAL_THRESHOLD = 3
MAX_PROPOSALS_PER_SCAN = 5
MAX_PATTERN_EXAMPLES = 20
RULE_EXAMPLE_COUNT = 5
CONFIDENCE_SCALE = 10.0
MIN_VIOLATION_WORD_LENGTH = 4


class LearningError(Exception):
    """Base class for rule lifecycle errors"""


class RuleNotFoundError(LearningError, KeyError):
    def __init__(self, rule_id: str):
        super().__init__(rule_id)
        self.rule_id = rule_id

    def __str__(self) -> str:
        return f"Rule {self.rule_id} not found"


class RuleAlreadyProcessedError(LearningError):
    def __init__(self, rule_id: str, status: RuleStatus):
        super().__init__(f"Rule {rule_id} already {status.value.lower()}")
        self.rule_id = rule_id
        self.status = status


class InvalidRejectionError(LearningError, ValueError):
    """Rejection without a reason"""


class KeyedLocks:
    """One lock per key, created on first use"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def get(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock


class MiningWorker:
    """Background thread consuming events from a queue.

    join() blocks until every submitted event has been handled.
    """

    def __init__(self, handler: Callable[[LearningEvent], None], name: str = "rulearena-mining"):
        self.handler = handler
        self.name = name
        self.queue: "queue.Queue[Optional[LearningEvent]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def submit(self, event: LearningEvent) -> None:
        self.queue.put(event)

    def join(self) -> None:
        self.queue.join()

    def stop(self, timeout: float = 5.0) -> None:
        """Handle what is already queued, then exit the thread."""
        if self._thread is None:
            return
        self.queue.put(None)
        self._thread.join(timeout=timeout)
        self._thread = None

    def _run(self) -> None:
        while True:
            event = self.queue.get()
            try:
                if event is None:
                    return
                self.handler(event)
            except Exception:
                logger.exception("Mining worker failed on event %s", getattr(event, "id", None))
            finally:
                self.queue.task_done()


class LearningEngine:
    """
    Turns corrections and feedback into error patterns and proposed rules.

    Pattern upserts are serialized per pattern key. Proposal scans are
    serialized globally so a pattern's latch is never read stale. Approval
    and rejection share one lock so a rule leaves PENDING exactly once.
    """

    def __init__(
        self,
        store: LearningStore,
        rule_cache: Optional[RulePromptCache] = None,
        classifier: Optional[PatternClassifier] = None,
        proposal_threshold: int = PROPOSAL_THRESHOLD,
        max_proposals_per_scan: int = MAX_PROPOSALS_PER_SCAN,
        max_examples: int = MAX_PATTERN_EXAMPLES,
        background: bool = False,
    ):
        """
        Args:
            store: Persistence for events, patterns and rules.
            rule_cache: Cache invalidated whenever the set of active rules changes.
            classifier: Pattern key / category strategy. Defaults to keyword buckets.
            proposal_threshold: Occurrences needed before a pattern is proposed.
            max_proposals_per_scan: Upper bound of proposals per scan.
            max_examples: Most recent examples and memberships kept per pattern.
            background: Mine on a worker thread instead of inside record_error().
        """
        self.store = store
        self.rule_cache = rule_cache
        self.classifier = classifier or KeywordClassifier()
        self.proposal_threshold = proposal_threshold
        self.max_proposals_per_scan = max_proposals_per_scan
        self.max_examples = max_examples

        self._key_locks = KeyedLocks()
        self._proposal_lock = threading.Lock()
        self._decision_lock = threading.Lock()

        self.worker: Optional[MiningWorker] = None
        if background:
            self.worker = MiningWorker(self._mine)
            self.worker.start()

    # ========================================
    # Worker lifecycle
    # ========================================

    def start(self) -> None:
        if self.worker is None:
            self.worker = MiningWorker(self._mine)
        self.worker.start()

    def stop(self) -> None:
        if self.worker is not None:
            self.worker.stop()

    def join(self) -> None:
        """Wait until queued mining work is done (no-op when mining inline)."""
        if self.worker is not None and self.worker.is_running:
            self.worker.join()

    # ========================================
    # Recording
    # ========================================

    def record_error(self, event: LearningEvent) -> LearningEvent:
        """Persist the event, then mine it. Only the insert can fail."""
        self.store.add_event(event)
        logger.debug("Recorded %s event %s for %s", event.type.value, event.id, event.model_id)

        if self.worker is not None and self.worker.is_running:
            self.worker.submit(event)
        else:
            self._mine(event)
        return event

    def record_correction(
        self,
        user_id: str,
        model_id: str,
        original: str,
        corrected: Optional[str],
        feedback: Optional[str] = None,
        chat_id: Optional[str] = None,
    ) -> LearningEvent:
        payload = CorrectionPayload(original=original, corrected=corrected, feedback=feedback)
        return self.record_error(
            self._new_event(EventType.CORRECTION, user_id, model_id, payload, chat_id)
        )

    def record_feedback(
        self,
        user_id: str,
        model_id: str,
        is_positive: bool,
        reason: Optional[str] = None,
        excerpt: str = "",
        chat_id: Optional[str] = None,
    ) -> LearningEvent:
        payload = FeedbackPayload(is_positive=is_positive, reason=reason, excerpt=excerpt)
        return self.record_error(
            self._new_event(EventType.FEEDBACK, user_id, model_id, payload, chat_id)
        )

    def record_regeneration(
        self,
        user_id: str,
        model_id: str,
        original: str,
        regenerated: Optional[str] = None,
        reason: Optional[str] = None,
        chat_id: Optional[str] = None,
    ) -> LearningEvent:
        payload = CorrectionPayload(original=original, corrected=regenerated, feedback=reason)
        return self.record_error(
            self._new_event(EventType.REGENERATION, user_id, model_id, payload, chat_id)
        )

    def record_report(
        self,
        user_id: str,
        model_id: str,
        reason: str,
        excerpt: str = "",
        chat_id: Optional[str] = None,
    ) -> LearningEvent:
        payload = FeedbackPayload(is_positive=False, reason=reason, excerpt=excerpt)
        return self.record_error(
            self._new_event(EventType.REPORT, user_id, model_id, payload, chat_id)
        )

    @staticmethod
    def _new_event(event_type, user_id, model_id, payload, chat_id) -> LearningEvent:
        return LearningEvent(
            id=str(uuid.uuid4()),
            type=event_type,
            model_id=model_id,
            user_id=user_id,
            content=payload,
            chat_id=chat_id,
        )

    def _mine(self, event: LearningEvent) -> None:
        try:
            if self.analyze_event(event) is not None:
                self.propose_rules(event.model_id)
        except Exception:
            logger.exception("Pattern mining failed for event %s", event.id)

    # ========================================
    # Pattern mining
    # ========================================

    def analyze_event(self, event: LearningEvent) -> Optional[ErrorPattern]:
        """Upsert the pattern this event belongs to.

        Positive feedback is not an error signal and returns None.
        """
        if isinstance(event.content, FeedbackPayload) and event.content.is_positive:
            return None

        original, corrected, feedback = event.text_fields()
        if isinstance(event.content, CorrectionPayload) and not corrected:
            key, category = GENERAL_ERROR_KEY, ErrorCategory.INSTRUCTION
        else:
            try:
                key = self.classifier.pattern_key(original, corrected)
                category = self.classifier.classify(
                    " ".join(t for t in (original, corrected, feedback) if t)
                )
            except Exception as e:
                logger.warning("Classification failed for event %s: %s", event.id, e)
                key, category = GENERAL_ERROR_KEY, ErrorCategory.INSTRUCTION

        example = {"original": truncate(original), "corrected": truncate(corrected)}
        now = datetime.now()

        with self._key_locks.get(key):
            pattern = self.store.get_pattern(key)
            if pattern is None:
                pattern = ErrorPattern(
                    id=str(uuid.uuid4()),
                    pattern_key=key,
                    category=category,
                    model_ids=[event.model_id],
                    user_ids=[event.user_id],
                    examples=[example],
                    first_seen=now,
                    last_seen=now,
                )
            else:
                pattern.occurrences += 1
                pattern.examples = (pattern.examples + [example])[-self.max_examples :]
                pattern.model_ids = self._remember(pattern.model_ids, event.model_id)
                pattern.user_ids = self._remember(pattern.user_ids, event.user_id)
                pattern.last_seen = now
            self.store.save_pattern(pattern)

        return pattern

    def _remember(self, members: List[str], value: str) -> List[str]:
        """Move value to the most recent end, keeping at most max_examples."""
        members = [m for m in members if m != value] + [value]
        return members[-self.max_examples :]

    def propose_rules(self, model_id: Optional[str] = None) -> List[ProposedRule]:
        """Propose rules for patterns that crossed the threshold.

        Only patterns seen for `model_id` are scanned when it is given.
        """
        proposals = []
        with self._proposal_lock:
            candidates = [
                p
                for p in self.store.list_patterns()
                if p.occurrences >= self.proposal_threshold
                and not p.has_proposed_rule
                and (model_id is None or model_id in p.model_ids)
            ]
            candidates.sort(key=lambda p: p.occurrences, reverse=True)

            for candidate in candidates[: self.max_proposals_per_scan]:
                with self._key_locks.get(candidate.pattern_key):
                    pattern = self.store.get_pattern(candidate.pattern_key)
                    if pattern is None or pattern.has_proposed_rule:
                        continue

                    rule = self._build_rule(pattern)
                    self.store.save_proposed_rule(rule)
                    pattern.has_proposed_rule = True
                    self.store.save_pattern(pattern)

                logger.info(
                    "Proposed rule %s for pattern %r (%s, %d occurrences)",
                    rule.id,
                    pattern.pattern_key,
                    pattern.category.value,
                    pattern.occurrences,
                )
                proposals.append(rule)
        return proposals

    def _build_rule(self, pattern: ErrorPattern) -> ProposedRule:
        template = render_rule_template(pattern.category, pattern.pattern_key, pattern.occurrences)
        return ProposedRule(
            id=str(uuid.uuid4()),
            title=template["title"],
            description=template["description"],
            instruction=template["instruction"],
            category=pattern.category,
            severity=template["severity"],
            confidence=min(pattern.occurrences / CONFIDENCE_SCALE, 1.0),
            trigger_pattern_id=pattern.id,
            examples=[dict(e) for e in pattern.examples[-RULE_EXAMPLE_COUNT:]],
            affected_models=list(pattern.model_ids),
        )

    # ========================================
    # Rule lifecycle
    # ========================================

    def _get_pending(self, rule_id: str) -> ProposedRule:
        rule = self.store.get_proposed_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        if rule.is_terminal:
            raise RuleAlreadyProcessedError(rule_id, rule.status)
        return rule

    def approve_rule(self, rule_id: str, approved_by: str) -> ActiveRule:
        """PENDING -> APPROVED. Creates the ActiveRule snapshot."""
        with self._decision_lock:
            rule = self._get_pending(rule_id)

            active = ActiveRule(
                id=str(uuid.uuid4()),
                proposed_rule_id=rule.id,
                title=rule.title,
                instruction=rule.instruction,
                category=rule.category,
                severity=rule.severity,
                approved_by=approved_by,
                examples=[dict(e) for e in rule.examples],
            )
            rule.status = RuleStatus.APPROVED
            rule.decided_at = datetime.now()
            rule.decided_by = approved_by
            self.store.save_approval(rule, active)

        if self.rule_cache is not None:
            self.rule_cache.invalidate()
        logger.info("Rule %s approved by %s as active rule %s", rule_id, approved_by, active.id)
        return active

    def reject_rule(
        self, rule_id: str, reason: str, rejected_by: Optional[str] = None
    ) -> ProposedRule:
        """PENDING -> REJECTED. A non-empty reason is required."""
        if not reason or not reason.strip():
            raise InvalidRejectionError("A rejection reason is required")

        with self._decision_lock:
            rule = self._get_pending(rule_id)
            rule.status = RuleStatus.REJECTED
            rule.rejection_reason = reason.strip()
            rule.decided_at = datetime.now()
            rule.decided_by = rejected_by
            self.store.save_proposed_rule(rule)

        logger.info("Rule %s rejected: %s", rule_id, rule.rejection_reason)
        return rule

    def deactivate_rule(self, active_rule_id: str) -> ActiveRule:
        """Soft delete. Deactivating an inactive rule changes nothing."""
        with self._decision_lock:
            rule = self.store.get_active_rule(active_rule_id)
            if rule is None:
                raise RuleNotFoundError(active_rule_id)
            if not rule.is_active:
                return rule
            rule.is_active = False
            self.store.save_active_rule(rule)

        if self.rule_cache is not None:
            self.rule_cache.invalidate()
        logger.info("Active rule %s deactivated", active_rule_id)
        return rule

    # ========================================
    # Queries
    # ========================================

    def get_pending_rules(self) -> List[ProposedRule]:
        """Highest confidence first, newest first on ties"""
        rules = self.store.list_proposed_rules(status=RuleStatus.PENDING)
        rules.sort(key=lambda r: r.created_at, reverse=True)
        rules.sort(key=lambda r: r.confidence, reverse=True)
        return rules

    def get_active_rules(self) -> List[ActiveRule]:
        return self.store.list_active_rules(active_only=True)

    def get_patterns(self) -> List[ErrorPattern]:
        patterns = self.store.list_patterns()
        patterns.sort(key=lambda p: p.occurrences, reverse=True)
        return patterns

    def get_rules_prompt(self) -> str:
        if self.rule_cache is not None:
            return self.rule_cache.get_prompt()
        return format_rules_prompt(self.store.list_active_rules(active_only=True))

    def get_statistics(self) -> LearningStatistics:
        return compute_statistics(self.store)

    def find_rule_violations(self, content: str, model_id: Optional[str] = None) -> List[Dict]:
        """Lexical check of a response against the bad examples of active rules.

        An example counts as matched when more than half of its words longer
        than 3 characters appear in the content. With `model_id`, rules whose
        proposal only involved other models are skipped.
        """
        content_words = set(tokenize(content))
        violations = []

        for rule in self.store.list_active_rules(active_only=True):
            if model_id is not None:
                origin = self.store.get_proposed_rule(rule.proposed_rule_id)
                if origin and origin.affected_models and model_id not in origin.affected_models:
                    continue

            for example in rule.examples:
                words = [
                    w
                    for w in tokenize(example.get("original"))
                    if len(w) >= MIN_VIOLATION_WORD_LENGTH
                ]
                if not words:
                    continue
                hits = sum(1 for w in words if w in content_words)
                if hits > len(words) / 2:
                    violations.append(
                        {
                            "rule_id": rule.id,
                            "title": rule.title,
                            "severity": rule.severity.value,
                            "instruction": rule.instruction,
                        }
                    )
                    break
        return violations
