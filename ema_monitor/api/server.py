"""Read-only status API over the monitor's in-memory state.

Handlers are async so they run on the same event loop as ingestion and
always see a whole candle/signal, never a half-applied update.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware

from ema_monitor.api.state import AppState, get_state

JsonDict = Dict[str, Any]


def create_app(state: AppState) -> FastAPI:
    app = FastAPI(title="EMA Crossover Signal Monitor", version="0.1.0")
    app.state.app_state = state

    app.add_middleware(
        CORSMiddleware,
        allow_origins=state.cors_origins,
        allow_credentials=False,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.get("/api/status")
    async def status(s: AppState = Depends(get_state)) -> JsonDict:
        return s.monitor.status()

    @app.get("/api/signals")
    async def signals(
        limit: Optional[int] = Query(default=None, ge=1),
        s: AppState = Depends(get_state),
    ) -> JsonDict:
        payload = s.monitor.signals()
        if limit is not None:
            payload["signals"] = payload["signals"][:limit]
        return payload

    @app.get("/health")
    async def health(s: AppState = Depends(get_state)) -> JsonDict:
        return s.monitor.health()

    return app
