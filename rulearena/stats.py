"""Read-only aggregation over the learning store"""

from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

from rulearena.core import ErrorCategory, EventType, RuleStatus
from rulearena.storage import LearningStore

RECENT_ACTIVITY_BUCKETS = 7


@dataclass
class LearningStatistics:
    total_events: int = 0
    events_by_type: Dict[str, int] = field(default_factory=dict)
    patterns_by_category: Dict[str, int] = field(default_factory=dict)
    events_by_model: Dict[str, int] = field(default_factory=dict)
    proposed_rules: int = 0
    active_rules: int = 0
    rejected_rules: int = 0
    recent_activity: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def compute_statistics(store: LearningStore) -> LearningStatistics:
    """Derive counts from the store. Nothing is written back.

    recent_activity groups events by their exact created_at value, not by
    calendar day, and keeps the 7 most recent groups, oldest first.
    """
    events = store.list_events()
    patterns = store.list_patterns()
    proposed = store.list_proposed_rules()
    active = store.list_active_rules(active_only=True)

    events_by_type = {t.value: 0 for t in EventType}
    events_by_model: Dict[str, int] = {}
    for event in events:
        events_by_type[event.type.value] += 1
        events_by_model[event.model_id] = events_by_model.get(event.model_id, 0) + 1

    patterns_by_category = {c.value: 0 for c in ErrorCategory}
    for pattern in patterns:
        patterns_by_category[pattern.category.value] += pattern.occurrences

    by_timestamp = Counter(event.created_at for event in events)
    recent = sorted(by_timestamp, reverse=True)[:RECENT_ACTIVITY_BUCKETS]
    recent_activity = [
        {"timestamp": ts.isoformat(), "count": by_timestamp[ts]} for ts in reversed(recent)
    ]

    return LearningStatistics(
        total_events=len(events),
        events_by_type=events_by_type,
        patterns_by_category=patterns_by_category,
        events_by_model=events_by_model,
        proposed_rules=sum(1 for r in proposed if r.status == RuleStatus.PENDING),
        active_rules=len(active),
        rejected_rules=sum(1 for r in proposed if r.status == RuleStatus.REJECTED),
        recent_activity=recent_activity,
    )
