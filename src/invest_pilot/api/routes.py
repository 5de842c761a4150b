"""FastAPI route definitions for the Invest Pilot API."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

import invest_pilot
from invest_pilot.api.deps import get_config, get_session
from invest_pilot.api.schemas import (
    AnalysisResponse,
    AssetListResponse,
    ChatRequest,
    ChatResponse,
    HealthResponse,
    HistoryResponse,
    RefreshResponse,
)
from invest_pilot.core.config import PilotConfig
from invest_pilot.core.models import Asset, Language, Timeframe
from invest_pilot.quotes.history import history_for_timeframe
from invest_pilot.session import DashboardSession

router = APIRouter()


def _asset_or_404(session: DashboardSession, asset_id: str) -> Asset:
    asset = session.get(asset_id)
    if asset is None:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown asset '{asset_id}'",
        )
    return asset


# -- Health --


@router.get("/health", response_model=HealthResponse)
async def health_check(
    session: DashboardSession = Depends(get_session),
    config: PilotConfig = Depends(get_config),
):
    """System health, including whether an AI credential is usable."""
    return HealthResponse(
        status="ok",
        version=invest_pilot.__version__,
        cache_backend=str(config.cache.backend.value),
        ai_configured=config.ai.is_configured,
        asset_count=len(session.assets),
        refreshing=session.is_refreshing,
        credential_warning=session.credential_warning,
    )


# -- Assets --


@router.get("/assets", response_model=AssetListResponse)
async def list_assets(
    visible: bool = Query(False, description="Only the configured visible subset"),
    session: DashboardSession = Depends(get_session),
):
    """Current asset collection, without fetching."""
    items = session.visible_assets if visible else session.assets
    return AssetListResponse(total=len(items), items=items)


@router.get("/assets/{asset_id}", response_model=Asset)
async def get_asset(
    asset_id: str,
    session: DashboardSession = Depends(get_session),
):
    """One asset with its history and provenance."""
    return _asset_or_404(session, asset_id)


@router.get("/assets/{asset_id}/history", response_model=HistoryResponse)
async def get_asset_history(
    asset_id: str,
    timeframe: Timeframe = Query(Timeframe.DAY),
    session: DashboardSession = Depends(get_session),
):
    """Period history anchored at the asset's current price."""
    asset = _asset_or_404(session, asset_id)
    return HistoryResponse(
        asset_id=asset.id,
        timeframe=timeframe,
        points=history_for_timeframe(asset.price, timeframe),
    )


@router.get("/assets/{asset_id}/analysis", response_model=AnalysisResponse)
async def get_asset_analysis(
    asset_id: str,
    language: Language | None = Query(None),
    session: DashboardSession = Depends(get_session),
    config: PilotConfig = Depends(get_config),
):
    """AI analysis; degrades to a rule-based result when AI is unavailable."""
    asset = _asset_or_404(session, asset_id)
    analysis = await session.advisor.analyze_asset(
        asset, language or config.dashboard.language
    )
    return AnalysisResponse(asset_id=asset.id, **analysis.model_dump())


# -- Refresh --


@router.post("/refresh", response_model=RefreshResponse)
async def trigger_refresh(session: DashboardSession = Depends(get_session)):
    """Run one reconciliation cycle. Overlapping requests are reported as skipped."""
    outcome = await session.refresh()
    report = outcome.report
    if outcome.skipped or report is None:
        return RefreshResponse(skipped=True, items=outcome.assets)
    return RefreshResponse(
        skipped=report.skipped,
        live=len(report.live),
        ai=len(report.ai),
        cached=len(report.cached),
        offline=len(report.offline),
        duration_seconds=report.duration_seconds,
        items=outcome.assets,
    )


# -- Chat --


@router.post("/chat", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    session: DashboardSession = Depends(get_session),
    config: PilotConfig = Depends(get_config),
):
    """Ask the assistant with live prices as context."""
    selected = session.get(body.asset_id) if body.asset_id else None
    answer = await session.advisor.ask(
        body.query,
        session.assets,
        body.language or config.dashboard.language,
        selected=selected,
    )
    return ChatResponse(answer=answer)
