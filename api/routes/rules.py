from __future__ import annotations

import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from api.deps import get_state, get_user_id
from api.schemas import CheckRequest, CheckResponse, RejectRequest
from api.state import AppState
from rulearena.learning import (
    InvalidRejectionError,
    LearningError,
    RuleAlreadyProcessedError,
    RuleNotFoundError,
)

router = APIRouter(prefix="/api/rules", tags=["rules"])


def _http_error(e: LearningError) -> HTTPException:
    if isinstance(e, RuleNotFoundError):
        return HTTPException(404, str(e))
    if isinstance(e, RuleAlreadyProcessedError):
        return HTTPException(409, str(e))
    if isinstance(e, InvalidRejectionError):
        return HTTPException(400, str(e))
    return HTTPException(500, str(e))


@router.get("/proposed")
async def list_proposed(state: Annotated[AppState, Depends(get_state)]):
    return {"rules": [r.to_dict() for r in state.engine.get_pending_rules()]}


@router.get("/active")
async def list_active(state: Annotated[AppState, Depends(get_state)]):
    return {"rules": [r.to_dict() for r in state.engine.get_active_rules()]}


@router.post("/{rule_id}/approve")
async def approve_rule(
    rule_id: str,
    state: Annotated[AppState, Depends(get_state)],
    user_id: Annotated[str, Depends(get_user_id)],
):
    try:
        active = await asyncio.to_thread(state.engine.approve_rule, rule_id, user_id)
    except LearningError as e:
        raise _http_error(e) from e
    return {"ok": True, "active_rule": active.to_dict()}


@router.post("/{rule_id}/reject")
async def reject_rule(
    rule_id: str,
    req: RejectRequest,
    state: Annotated[AppState, Depends(get_state)],
    user_id: Annotated[str, Depends(get_user_id)],
):
    try:
        rule = await asyncio.to_thread(
            state.engine.reject_rule, rule_id, req.reason, rejected_by=user_id
        )
    except LearningError as e:
        raise _http_error(e) from e
    return {"ok": True, "rule": rule.to_dict()}


@router.delete("/active/{rule_id}")
async def deactivate_rule(
    rule_id: str,
    state: Annotated[AppState, Depends(get_state)],
    user_id: Annotated[str, Depends(get_user_id)],
):
    try:
        rule = await asyncio.to_thread(state.engine.deactivate_rule, rule_id)
    except LearningError as e:
        raise _http_error(e) from e
    return {"ok": True, "message": f"Deactivated rule {rule.id}"}


@router.post("/check", response_model=CheckResponse)
async def check_content(req: CheckRequest, state: Annotated[AppState, Depends(get_state)]):
    violations = await asyncio.to_thread(
        state.engine.find_rule_violations, req.content, req.model_id
    )
    return CheckResponse(valid=not violations, violations=violations)
