from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.config import settings
from api.routes import arena, learning, rules
from api.state import AppState, build_state

logger = logging.getLogger(__name__)


def create_app(state: AppState | None = None) -> FastAPI:
    """Build the API. A prebuilt state is used as is (tests inject fakes)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "arena", None) is None:
            app.state.arena = build_state(settings)
        logger.info(
            "RuleArena API started with %d model(s)", len(app.state.arena.allowed_models)
        )
        yield
        app.state.arena.shutdown()

    app = FastAPI(title="RuleArena", version="0.1.0", lifespan=lifespan)
    app.state.arena = state

    # CORS for dev (Vite on :5173)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(arena.router)
    app.include_router(learning.router)
    app.include_router(rules.router)
    return app


logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()
