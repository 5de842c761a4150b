"""AI asset analysis and chat, with readable degradation on failure."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime

import httpx

from invest_pilot.ai.llm import LLMProviderBackend, create_provider, parse_json_object
from invest_pilot.core.config import AIConfig
from invest_pilot.core.exceptions import LLMError
from invest_pilot.core.models import Asset, Language, MarketAnalysis, Sentiment

logger = logging.getLogger(__name__)

MAX_CITATIONS = 3
SENTIMENT_THRESHOLD = 0.5

ANALYSIS_PROMPT_TEMPLATE = """Analyze this asset: {name} ({symbol}), current price {price} {unit},
change today {change_percent:+.2f}%.
Current date: {today}. Use web search for recent news if useful.
Output language: {language}.

Respond with ONLY a JSON object with exactly these fields:
- summary: 2-3 sentence market summary
- sentiment: one of "Bullish", "Bearish", "Neutral"
- keyLevels: notable support/resistance levels as a short string
- advice: one short actionable sentence"""

CHAT_PROMPT_TEMPLATE = """You are an investment assistant.
Current system time: {now}. If asked for the date, use this time or search.

Live prices: {context}.
{focus}
Use web search when the user asks about news, today's events, dates, or
prices of assets not in the list above.

User query: {query}"""

_MESSAGES: dict[str, dict[Language, str]] = {
    "network": {
        Language.ZH: "网络连接失败：请检查【API 代理】设置。",
        Language.EN: "Network Error: Check Proxy settings.",
    },
    "invalid_key": {Language.ZH: "API Key 无效", Language.EN: "Invalid API Key"},
    "quota": {Language.ZH: "配额已用尽", Language.EN: "Quota Exceeded"},
    "generic": {Language.ZH: "AI 服务异常", Language.EN: "AI Service Error"},
    "no_key": {Language.ZH: "请先配置 API Key", Language.EN: "Please configure an API Key"},
    "sources": {Language.ZH: "参考来源:", Language.EN: "Sources:"},
}


def readable_error(error: Exception, language: Language) -> str:
    """Map an AI failure to a short user-facing message."""
    kind = "generic"
    if isinstance(error, LLMError):
        status = error.context.get("status_code")
        if error.context.get("network"):
            kind = "network"
        elif status in (401, 403):
            kind = "invalid_key"
        elif status == 429:
            kind = "quota"
    elif isinstance(error, httpx.RequestError):
        kind = "network"
    return _MESSAGES[kind][language]


def sentiment_from_change(change_percent: float) -> Sentiment:
    if change_percent > SENTIMENT_THRESHOLD:
        return Sentiment.BULLISH
    if change_percent < -SENTIMENT_THRESHOLD:
        return Sentiment.BEARISH
    return Sentiment.NEUTRAL


def fallback_analysis(asset: Asset, language: Language) -> MarketAnalysis:
    """Rule-based analysis used whenever the AI backend is unavailable."""
    name = asset.display_name(language)
    if language == Language.ZH:
        summary = f"无法连接 AI。{name} 当前价格 {asset.price}。"
        advice = "请检查网络。"
    else:
        summary = f"AI Unavailable. {name} at {asset.price}."
        advice = "Check network."
    return MarketAnalysis(
        summary=summary,
        sentiment=sentiment_from_change(asset.change_percent),
        key_levels="N/A",
        advice=advice,
        timestamp=datetime.now(UTC),
        fallback=True,
    )


def append_citations(text: str, citations: Sequence[str], language: Language) -> str:
    """Append up to three unique source links to an answer."""
    links = list(dict.fromkeys(c for c in citations if c))[:MAX_CITATIONS]
    if not links:
        return text
    lines = "\n".join(f"- {link}" for link in links)
    return f"{text}\n\n{_MESSAGES['sources'][language]}\n{lines}"


class Advisor:
    """Asset analysis and free-form questions on top of an LLM backend."""

    def __init__(
        self,
        config: AIConfig,
        provider: LLMProviderBackend | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._provider = provider
        self._provider_error: LLMError | None = None
        if self._provider is None and config.is_configured:
            try:
                self._provider = create_provider(config, client)
            except LLMError as e:
                self._provider_error = e
                logger.warning("AI advisor disabled: %s", e)

    @property
    def available(self) -> bool:
        return self._provider is not None

    async def analyze_asset(
        self, asset: Asset, language: Language = Language.ZH
    ) -> MarketAnalysis:
        """Structured analysis of one asset; falls back to a rule-based one."""
        if self._provider is None:
            return fallback_analysis(asset, language)

        prompt = ANALYSIS_PROMPT_TEMPLATE.format(
            name=asset.name,
            symbol=asset.symbol,
            price=asset.price,
            unit=asset.unit,
            change_percent=asset.change_percent,
            today=datetime.now().strftime("%Y-%m-%d"),
            language="Chinese" if language == Language.ZH else "English",
        )
        try:
            reply = await self._provider.query(prompt)
            data = parse_json_object(reply.text)
            sentiment = str(data.get("sentiment", "Neutral")).capitalize()
            return MarketAnalysis(
                summary=str(data.get("summary", "")),
                sentiment=(
                    Sentiment(sentiment)
                    if sentiment in {s.value for s in Sentiment}
                    else Sentiment.NEUTRAL
                ),
                key_levels=str(data.get("keyLevels", data.get("key_levels", "N/A"))),
                advice=str(data.get("advice", "")),
                timestamp=datetime.now(UTC),
            )
        except LLMError as e:
            logger.warning("Analysis for %s fell back: %s", asset.id, e)
            return fallback_analysis(asset, language)

    async def ask(
        self,
        query: str,
        assets: Sequence[Asset],
        language: Language = Language.ZH,
        selected: Asset | None = None,
    ) -> str:
        """Grounded answer to ``query`` using the live prices as context."""
        if self._provider is None:
            return _MESSAGES["no_key"][language]

        context = ", ".join(f"{a.name_cn} ({a.price} {a.unit})" for a in assets)
        focus = (
            f"The user is looking at {selected.name} ({selected.symbol}), "
            f"price {selected.price} {selected.unit}."
            if selected is not None
            else ""
        )
        prompt = CHAT_PROMPT_TEMPLATE.format(
            now=datetime.now().strftime("%Y-%m-%d %H:%M"),
            context=context,
            focus=focus,
            query=query,
        )
        try:
            reply = await self._provider.query(prompt, max_tokens=2048)
        except (LLMError, httpx.HTTPError) as e:
            logger.warning("Chat query failed: %s", e)
            return readable_error(e, language)
        return append_citations(reply.text, reply.citations, language)
