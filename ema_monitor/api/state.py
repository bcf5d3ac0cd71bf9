from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from fastapi import Request

from ema_monitor.app.monitor import SignalMonitor


@dataclass
class AppState:
    monitor: SignalMonitor
    cors_origins: List[str] = field(default_factory=lambda: ["*"])


def get_state(request: Request) -> AppState:
    """Per-app state (set by create_app); no module-level singleton."""
    return request.app.state.app_state
