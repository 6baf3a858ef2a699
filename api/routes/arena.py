from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from api.deps import get_state, get_user_id
from api.schemas import ChatRequest, ChatResponse, TokenCounts
from api.state import AppState
from rulearena.models import get_model
from rulearena.orchestrator import InvalidRequestError

router = APIRouter(prefix="/api/arena", tags=["arena"])


@router.post("/chat", response_model=ChatResponse)
async def chat(
    req: ChatRequest,
    state: Annotated[AppState, Depends(get_state)],
    user_id: Annotated[str, Depends(get_user_id)],
):
    chat_id = req.chat_id or str(uuid.uuid4())
    try:
        result = await state.orchestrator.process_message(
            user_id, chat_id, req.content, req.mode, req.selected_models
        )
    except InvalidRequestError as e:
        raise HTTPException(400, str(e)) from e

    state.history.append(chat_id, "user", req.content)
    state.history.append(chat_id, "assistant", result.response)

    return ChatResponse(
        chat_id=chat_id,
        response=result.response,
        model_id=result.model_id,
        model_ids=result.model_ids,
        tokens=TokenCounts(**result.tokens.to_dict()),
        cost=result.cost,
        metadata=result.metadata,
    )


@router.get("/models")
async def list_available_models(
    state: Annotated[AppState, Depends(get_state)],
    user_id: Annotated[str, Depends(get_user_id)],
):
    models = [get_model(m).to_dict() for m in state.available_models(user_id)]
    return {"models": models}
