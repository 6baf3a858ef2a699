from __future__ import annotations

from typing import Annotated

from fastapi import Header, HTTPException, Request

from api.state import AppState


def get_state(request: Request) -> AppState:
    """The AppState built in the application lifespan."""
    state = getattr(request.app.state, "arena", None)
    if state is None:
        raise HTTPException(503, "Application state not initialised")
    return state


def get_user_id(
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
) -> str:
    """Caller identity, resolved upstream by the authentication layer."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(401, "Missing X-User-Id header")
    return x_user_id.strip()
