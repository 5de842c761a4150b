"""Dependency injection for FastAPI routes."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request
from fastapi.responses import JSONResponse

from invest_pilot.core.config import PilotConfig
from invest_pilot.session import DashboardSession


@dataclass
class AppState:
    """Shared application state, attached to app.state during lifespan."""

    config: PilotConfig
    session: DashboardSession


def get_app_state(request: Request) -> AppState:
    """Dependency: retrieve AppState from the request."""
    return request.app.state.app_state


def get_config(request: Request) -> PilotConfig:
    """Dependency: retrieve config."""
    return request.app.state.app_state.config


def get_session(request: Request) -> DashboardSession:
    """Dependency: retrieve the dashboard session."""
    return request.app.state.app_state.session


EXEMPT_PATHS = {"/api/health"}


async def api_key_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware: validate X-API-Key header when authentication is enabled."""
    if request.url.path in EXEMPT_PATHS:
        return await call_next(request)

    config = request.app.state.app_state.config
    if config.api.api_key:
        api_key = request.headers.get("X-API-Key")
        if api_key != config.api.api_key:
            return JSONResponse(
                status_code=401,
                content={"error": "Unauthorized", "detail": "Invalid or missing API key"},
            )
    return await call_next(request)
