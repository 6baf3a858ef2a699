from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

# --- Arena ---


class ChatRequest(BaseModel):
    content: str
    mode: str = "AUTO_SELECT"  # AUTO_SELECT | COLLABORATIVE | DIVIDE_CONQUER | PROJECT | TESTER
    chat_id: str | None = None
    selected_models: list[str] | None = None


class TokenCounts(BaseModel):
    input: int = 0
    output: int = 0


class ChatResponse(BaseModel):
    chat_id: str
    response: str
    model_id: str
    model_ids: list[str]
    tokens: TokenCounts
    cost: float
    metadata: dict[str, Any] = {}


# --- Learning ---


class CorrectionRequest(BaseModel):
    model_id: str
    original: str
    corrected: str | None = None
    feedback: str | None = None
    chat_id: str | None = None


class FeedbackRequest(BaseModel):
    model_id: str
    is_positive: bool
    reason: str | None = None
    excerpt: str = ""
    chat_id: str | None = None


class RegenerationRequest(BaseModel):
    model_id: str
    original: str
    regenerated: str | None = None
    reason: str | None = None
    chat_id: str | None = None


class ReportRequest(BaseModel):
    model_id: str
    reason: str = Field(min_length=1)
    excerpt: str = ""
    chat_id: str | None = None


class EventResponse(BaseModel):
    ok: bool = True
    event_id: str
    type: str


# --- Rules ---


class RejectRequest(BaseModel):
    reason: str


class CheckRequest(BaseModel):
    content: str
    model_id: str | None = None


class CheckResponse(BaseModel):
    valid: bool
    violations: list[dict[str, Any]]
