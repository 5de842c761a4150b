"""API-specific request/response schemas (Pydantic v2)."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from invest_pilot.core.models import Asset, Language, PricePoint, Sentiment, Timeframe


# -- Error --


class ErrorResponse(BaseModel):
    """Standard error envelope."""

    error: str
    detail: str | None = None


# -- Health --


class HealthResponse(BaseModel):
    """System health."""

    status: str
    version: str
    cache_backend: str
    ai_configured: bool
    asset_count: int
    refreshing: bool
    credential_warning: str | None = None


# -- Assets --


class AssetListResponse(BaseModel):
    """Current asset collection."""

    total: int
    items: list[Asset]


class RefreshResponse(BaseModel):
    """Outcome of a refresh request."""

    skipped: bool
    live: int = 0
    ai: int = 0
    cached: int = 0
    offline: int = 0
    duration_seconds: float = 0.0
    items: list[Asset]


class HistoryResponse(BaseModel):
    """Period history series for one asset."""

    asset_id: str
    timeframe: Timeframe
    points: list[PricePoint]


class AnalysisResponse(BaseModel):
    """AI (or rule-based) analysis of one asset."""

    asset_id: str
    summary: str
    sentiment: Sentiment
    key_levels: str
    advice: str
    timestamp: datetime
    fallback: bool


# -- Chat --


class ChatRequest(BaseModel):
    """A question for the assistant."""

    query: str = Field(..., min_length=1, max_length=4000)
    asset_id: str | None = None
    language: Language | None = None


class ChatResponse(BaseModel):
    """Assistant answer, citations already appended."""

    answer: str
