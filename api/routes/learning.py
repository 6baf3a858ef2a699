from __future__ import annotations

import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends

from api.deps import get_state, get_user_id
from api.schemas import (
    CorrectionRequest,
    EventResponse,
    FeedbackRequest,
    RegenerationRequest,
    ReportRequest,
)
from api.state import AppState
from rulearena.core import LearningEvent

router = APIRouter(prefix="/api/learning", tags=["learning"])


def _event_response(event: LearningEvent) -> EventResponse:
    return EventResponse(event_id=event.id, type=event.type.value)


# Recording runs in a worker thread; inline mining takes per-key locks


@router.post("/corrections", response_model=EventResponse)
async def record_correction(
    req: CorrectionRequest,
    state: Annotated[AppState, Depends(get_state)],
    user_id: Annotated[str, Depends(get_user_id)],
):
    event = await asyncio.to_thread(
        state.engine.record_correction,
        user_id,
        req.model_id,
        req.original,
        req.corrected,
        req.feedback,
        req.chat_id,
    )
    return _event_response(event)


@router.post("/feedback", response_model=EventResponse)
async def record_feedback(
    req: FeedbackRequest,
    state: Annotated[AppState, Depends(get_state)],
    user_id: Annotated[str, Depends(get_user_id)],
):
    event = await asyncio.to_thread(
        state.engine.record_feedback,
        user_id,
        req.model_id,
        req.is_positive,
        req.reason,
        req.excerpt,
        req.chat_id,
    )
    return _event_response(event)


@router.post("/regenerations", response_model=EventResponse)
async def record_regeneration(
    req: RegenerationRequest,
    state: Annotated[AppState, Depends(get_state)],
    user_id: Annotated[str, Depends(get_user_id)],
):
    event = await asyncio.to_thread(
        state.engine.record_regeneration,
        user_id,
        req.model_id,
        req.original,
        req.regenerated,
        req.reason,
        req.chat_id,
    )
    return _event_response(event)


@router.post("/reports", response_model=EventResponse)
async def record_report(
    req: ReportRequest,
    state: Annotated[AppState, Depends(get_state)],
    user_id: Annotated[str, Depends(get_user_id)],
):
    event = await asyncio.to_thread(
        state.engine.record_report,
        user_id,
        req.model_id,
        req.reason,
        req.excerpt,
        req.chat_id,
    )
    return _event_response(event)


@router.get("/statistics")
async def statistics(state: Annotated[AppState, Depends(get_state)]):
    return state.engine.get_statistics().to_dict()


@router.get("/instructions")
async def instructions(state: Annotated[AppState, Depends(get_state)]):
    """The rules block currently injected into every system prompt."""
    prompt = state.engine.get_rules_prompt()
    return {"instructions": prompt, "active_rules": len(state.engine.get_active_rules())}


@router.get("/patterns")
async def patterns(state: Annotated[AppState, Depends(get_state)]):
    return {"patterns": [p.to_dict() for p in state.engine.get_patterns()]}
