"""FastAPI application factory."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from invest_pilot.api.deps import AppState, api_key_middleware
from invest_pilot.api.routes import router
from invest_pilot.core.config import PilotConfig, load_config
from invest_pilot.core.exceptions import (
    CacheError,
    ConfigError,
    InvestPilotError,
    LLMError,
    ProviderError,
)
from invest_pilot.session import DashboardSession


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown lifecycle."""
    config = app.state._pending_config or load_config()
    session = app.state._pending_session or await DashboardSession.start(config)

    app.state.app_state = AppState(config=config, session=session)

    stop = asyncio.Event()
    ticker: asyncio.Task | None = None
    if config.dashboard.auto_refresh:
        await session.refresh()
        ticker = asyncio.create_task(
            session.run_forever(stop=stop, immediate=False)
        )

    yield

    stop.set()
    if ticker is not None:
        await ticker
    await session.close()


def create_app(
    config: PilotConfig | None = None,
    session: DashboardSession | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``session`` lets callers supply a prebuilt session (e.g. one wired to
    test feeds) instead of starting one from config.
    """
    import invest_pilot

    app = FastAPI(
        title="Invest Pilot API",
        description="Multi-source market prices with AI fallback",
        version=invest_pilot.__version__,
        lifespan=lifespan,
    )

    # Stash config so lifespan can retrieve it
    app.state._pending_config = config or (session.config if session else None)
    app.state._pending_session = session

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Optional API key middleware
    effective = app.state._pending_config
    if effective and effective.api.api_key:
        app.middleware("http")(api_key_middleware)

    app.include_router(router, prefix="/api")

    # Exception handlers
    @app.exception_handler(InvestPilotError)
    async def pilot_exception_handler(request: Request, exc: InvestPilotError):
        status_map = {
            ConfigError: 400,
            ProviderError: 502,
            LLMError: 502,
            CacheError: 500,
        }
        status = status_map.get(type(exc), 500)
        return JSONResponse(
            status_code=status,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    return app
