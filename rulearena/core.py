"""Core data structures for RuleArena"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class ArenaMode(Enum):
    """Coordination strategies for a single user turn"""

    AUTO_SELECT = "AUTO_SELECT"  # One call to the best-scoring model
    COLLABORATIVE = "COLLABORATIVE"  # Same prompt to up to 3 models in parallel
    DIVIDE_CONQUER = "DIVIDE_CONQUER"  # 3 templated sub-prompts in parallel
    PROJECT = "PROJECT"  # Planner -> executor -> reviewer, sequential
    TESTER = "TESTER"  # Parallel calls + agreement heuristic


class EventType(Enum):
    """Kinds of learning signal recorded from the chat surface"""

    CORRECTION = "CORRECTION"
    FEEDBACK = "FEEDBACK"
    REGENERATION = "REGENERATION"
    REPORT = "REPORT"


class ErrorCategory(Enum):
    """Fixed error buckets. Declaration order is the classification order."""

    FACTUAL = "FACTUAL"
    FORMATTING = "FORMATTING"
    CODE = "CODE"
    MATH = "MATH"
    TONE = "TONE"
    CONTEXT = "CONTEXT"
    LOGIC = "LOGIC"
    LANGUAGE = "LANGUAGE"
    INSTRUCTION = "INSTRUCTION"


class Severity(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class RuleStatus(Enum):
    """ProposedRule lifecycle. APPROVED and REJECTED are terminal."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


# ============================================================================
# EVENT PAYLOADS
# ============================================================================


@dataclass(frozen=True)
class CorrectionPayload:
    """Original model output and the text the user replaced it with.

    Used by CORRECTION and REGENERATION events.
    """

    original: str
    corrected: Optional[str]
    feedback: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "kind": "correction",
            "original": self.original,
            "corrected": self.corrected,
            "feedback": self.feedback,
        }


@dataclass(frozen=True)
class FeedbackPayload:
    """Thumbs up/down or a free-text report about a response.

    Used by FEEDBACK and REPORT events.
    """

    is_positive: bool
    reason: Optional[str] = None
    excerpt: str = ""

    def to_dict(self) -> dict:
        return {
            "kind": "feedback",
            "is_positive": self.is_positive,
            "reason": self.reason,
            "excerpt": self.excerpt,
        }


EventPayload = Union[CorrectionPayload, FeedbackPayload]


def payload_from_dict(data: Dict[str, Any]) -> EventPayload:
    """Restore a tagged payload serialized by ``to_dict()``."""
    kind = data.get("kind")
    if kind == "correction":
        return CorrectionPayload(
            original=data.get("original", ""),
            corrected=data.get("corrected"),
            feedback=data.get("feedback"),
        )
    if kind == "feedback":
        return FeedbackPayload(
            is_positive=bool(data.get("is_positive", False)),
            reason=data.get("reason"),
            excerpt=data.get("excerpt", ""),
        )
    raise ValueError(f"Unknown payload kind: {kind!r}")


# ============================================================================
# LEARNING AGGREGATES
# ============================================================================


@dataclass(frozen=True)
class LearningEvent:
    """
    Append-only log row.
    Never mutated or deleted once stored.
    """

    id: str
    type: EventType
    model_id: str
    user_id: str
    content: EventPayload
    chat_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    def text_fields(self) -> tuple:
        """Return (original, corrected, feedback) text for mining."""
        if isinstance(self.content, CorrectionPayload):
            return self.content.original, self.content.corrected, self.content.feedback
        return self.content.excerpt, None, self.content.reason

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "model_id": self.model_id,
            "user_id": self.user_id,
            "chat_id": self.chat_id,
            "content": self.content.to_dict(),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LearningEvent":
        return cls(
            id=data["id"],
            type=EventType(data["type"]),
            model_id=data["model_id"],
            user_id=data["user_id"],
            chat_id=data.get("chat_id"),
            content=payload_from_dict(data["content"]),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass
class ErrorPattern:
    """
    Recurring error aggregate, unique per pattern_key.

    has_proposed_rule is a one-way latch: once set, the pattern never
    produces a second proposal.
    """

    id: str
    pattern_key: str
    category: ErrorCategory
    occurrences: int = 1
    model_ids: List[str] = field(default_factory=list)
    user_ids: List[str] = field(default_factory=list)
    examples: List[Dict[str, str]] = field(default_factory=list)
    first_seen: datetime = field(default_factory=datetime.now)
    last_seen: datetime = field(default_factory=datetime.now)
    has_proposed_rule: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pattern_key": self.pattern_key,
            "category": self.category.value,
            "occurrences": self.occurrences,
            "model_ids": list(self.model_ids),
            "user_ids": list(self.user_ids),
            "examples": [dict(e) for e in self.examples],
            "first_seen": self.first_seen.isoformat(),
            "last_seen": self.last_seen.isoformat(),
            "has_proposed_rule": self.has_proposed_rule,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ErrorPattern":
        return cls(
            id=data["id"],
            pattern_key=data["pattern_key"],
            category=ErrorCategory(data["category"]),
            occurrences=data.get("occurrences", 1),
            model_ids=list(data.get("model_ids", [])),
            user_ids=list(data.get("user_ids", [])),
            examples=[dict(e) for e in data.get("examples", [])],
            first_seen=datetime.fromisoformat(data["first_seen"]),
            last_seen=datetime.fromisoformat(data["last_seen"]),
            has_proposed_rule=data.get("has_proposed_rule", False),
        )


@dataclass
class ProposedRule:
    """Template-generated rule awaiting admin review"""

    id: str
    title: str
    description: str
    instruction: str
    category: ErrorCategory
    severity: Severity
    confidence: float
    trigger_pattern_id: str
    examples: List[Dict[str, str]] = field(default_factory=list)
    affected_models: List[str] = field(default_factory=list)
    status: RuleStatus = RuleStatus.PENDING
    rejection_reason: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    decided_at: Optional[datetime] = None
    decided_by: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != RuleStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "instruction": self.instruction,
            "category": self.category.value,
            "severity": self.severity.value,
            "confidence": self.confidence,
            "trigger_pattern_id": self.trigger_pattern_id,
            "examples": [dict(e) for e in self.examples],
            "affected_models": list(self.affected_models),
            "status": self.status.value,
            "rejection_reason": self.rejection_reason,
            "created_at": self.created_at.isoformat(),
            "decided_at": _ts(self.decided_at),
            "decided_by": self.decided_by,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProposedRule":
        return cls(
            id=data["id"],
            title=data["title"],
            description=data["description"],
            instruction=data["instruction"],
            category=ErrorCategory(data["category"]),
            severity=Severity(data["severity"]),
            confidence=data["confidence"],
            trigger_pattern_id=data["trigger_pattern_id"],
            examples=[dict(e) for e in data.get("examples", [])],
            affected_models=list(data.get("affected_models", [])),
            status=RuleStatus(data.get("status", "PENDING")),
            rejection_reason=data.get("rejection_reason"),
            created_at=datetime.fromisoformat(data["created_at"]),
            decided_at=_parse_ts(data.get("decided_at")),
            decided_by=data.get("decided_by"),
        )


@dataclass
class ActiveRule:
    """
    Snapshot of an approved ProposedRule.
    Independent of its origin after creation; soft-deleted via is_active.
    """

    id: str
    proposed_rule_id: str
    title: str
    instruction: str
    category: ErrorCategory
    severity: Severity
    approved_by: str
    examples: List[Dict[str, str]] = field(default_factory=list)
    is_active: bool = True
    usage_count: int = 0
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "proposed_rule_id": self.proposed_rule_id,
            "title": self.title,
            "instruction": self.instruction,
            "category": self.category.value,
            "severity": self.severity.value,
            "approved_by": self.approved_by,
            "examples": [dict(e) for e in self.examples],
            "is_active": self.is_active,
            "usage_count": self.usage_count,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ActiveRule":
        return cls(
            id=data["id"],
            proposed_rule_id=data["proposed_rule_id"],
            title=data["title"],
            instruction=data["instruction"],
            category=ErrorCategory(data["category"]),
            severity=Severity(data["severity"]),
            approved_by=data["approved_by"],
            examples=[dict(e) for e in data.get("examples", [])],
            is_active=data.get("is_active", True),
            usage_count=data.get("usage_count", 0),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


# ============================================================================
# ORCHESTRATION
# ============================================================================


@dataclass(frozen=True)
class TokenUsage:
    input: int = 0
    output: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(self.input + other.input, self.output + other.output)

    @property
    def total(self) -> int:
        return self.input + self.output

    def to_dict(self) -> dict:
        return {"input": self.input, "output": self.output}


@dataclass(frozen=True)
class ChatTurn:
    """One prior message of a chat, as sent to the provider"""

    role: str  # "user" | "assistant"
    content: str

    def to_message(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass
class OrchestratorResult:
    """
    Aggregated outcome of one user turn.
    Transient: the caller decides whether to persist it.
    """

    response: str
    model_ids: List[str]
    tokens: TokenUsage = field(default_factory=TokenUsage)
    cost: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def model_id(self) -> str:
        """Contributing models joined with '+'"""
        return "+".join(self.model_ids)

    @property
    def is_error(self) -> bool:
        return bool(self.metadata.get("error", False))

    def to_dict(self) -> dict:
        return {
            "response": self.response,
            "model_id": self.model_id,
            "model_ids": list(self.model_ids),
            "tokens": self.tokens.to_dict(),
            "cost": self.cost,
            "metadata": self.metadata,
        }
