"""Generative-AI backends with web-search grounding behind one protocol."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx

from invest_pilot.core.config import AIConfig
from invest_pilot.core.exceptions import LLMError
from invest_pilot.core.models import LLMProvider

logger = logging.getLogger(__name__)

GEMINI_DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"


def normalize_base_url(override: str | None, default: str) -> str:
    """Resolve a user-supplied proxy base URL.

    The override is trimmed, a trailing slash is dropped, and ``https://``
    is prefixed when no scheme is given. Empty overrides mean ``default``.
    """
    if override is None or not override.strip():
        return default
    base = override.strip().rstrip("/")
    if not base.startswith(("http://", "https://")):
        base = "https://" + base
    return base


@dataclass(frozen=True)
class LLMReply:
    """Model text plus the web sources the answer was grounded on."""

    text: str
    citations: tuple[str, ...] = field(default_factory=tuple)


def _unique(urls: list[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for url in urls:
        if url and url not in seen:
            seen[url] = None
    return tuple(seen)


# --- Provider Protocol ---


@runtime_checkable
class LLMProviderBackend(Protocol):
    """Protocol for LLM API backends."""

    @property
    def name(self) -> str: ...

    async def query(
        self, prompt: str, max_tokens: int = 1024, web_search: bool = True
    ) -> LLMReply: ...


# --- Provider Implementations ---


class GeminiProvider:
    """Gemini ``generateContent`` over REST, with Google Search grounding.

    The HTTP client is injectable and the base URL is resolved once at
    construction, so a proxy is a plain configuration value.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        base_url: str | None = None,
        timeout_seconds: int = 30,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = normalize_base_url(base_url, GEMINI_DEFAULT_BASE_URL)
        self._client = client
        self._timeout = timeout_seconds

    @property
    def name(self) -> str:
        return "gemini"

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}/v1beta/models/{self._model}:generateContent"

    async def query(
        self, prompt: str, max_tokens: int = 1024, web_search: bool = True
    ) -> LLMReply:
        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"maxOutputTokens": max_tokens},
        }
        if web_search:
            payload["tools"] = [{"google_search": {}}]

        try:
            if self._client is not None:
                response = await self._post(self._client, payload)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await self._post(client, payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise LLMError(
                f"Gemini API error {e.response.status_code}",
                context={
                    "provider": self.name,
                    "status_code": e.response.status_code,
                    "response_body": e.response.text[:500],
                },
            ) from e
        except httpx.RequestError as e:
            raise LLMError(
                f"Gemini connection error: {e}",
                context={"provider": self.name, "network": True},
            ) from e
        except ValueError as e:
            raise LLMError(
                f"Gemini returned non-JSON body: {e}",
                context={"provider": self.name},
            ) from e

        return self._parse_reply(data)

    async def _post(
        self, client: httpx.AsyncClient, payload: dict[str, Any]
    ) -> httpx.Response:
        return await client.post(
            self.endpoint,
            json=payload,
            headers={"x-goog-api-key": self._api_key},
            timeout=self._timeout,
        )

    def _parse_reply(self, data: Any) -> LLMReply:
        candidates = data.get("candidates") if isinstance(data, dict) else None
        if not candidates:
            raise LLMError(
                "Gemini response has no candidates",
                context={"provider": self.name, "response_body": str(data)[:500]},
            )
        first = candidates[0]
        parts = (first.get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
        chunks = (first.get("groundingMetadata") or {}).get("groundingChunks") or []
        urls = [
            (c.get("web") or {}).get("uri", "")
            for c in chunks
            if isinstance(c, dict)
        ]
        return LLMReply(text=text, citations=_unique(urls))


class AnthropicAPIProvider:
    """LLM provider using the Anthropic Messages API with the web search tool.

    Requires: pip install anthropic
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-sonnet-4-6",
        base_url: str | None = None,
        timeout_seconds: int = 30,
    ) -> None:
        try:
            import anthropic
        except ImportError:
            raise LLMError(
                "anthropic package not installed. "
                "Install with: pip install invest-pilot[anthropic]",
                context={"provider": "anthropic"},
            )
        kwargs: dict[str, Any] = {"api_key": api_key, "timeout": timeout_seconds}
        if base_url:
            kwargs["base_url"] = normalize_base_url(base_url, "")
        self._client = anthropic.AsyncAnthropic(**kwargs)
        self._model = model

    @property
    def name(self) -> str:
        return "anthropic"

    async def query(
        self, prompt: str, max_tokens: int = 1024, web_search: bool = True
    ) -> LLMReply:
        import anthropic

        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if web_search:
            kwargs["tools"] = [
                {"type": "web_search_20250305", "name": "web_search", "max_uses": 3}
            ]
        try:
            message = await self._client.messages.create(**kwargs)
        except anthropic.APIStatusError as e:
            raise LLMError(
                f"Anthropic API error: {e.message}",
                context={"provider": self.name, "status_code": e.status_code},
            ) from e
        except anthropic.APIConnectionError as e:
            raise LLMError(
                f"Anthropic connection error: {e}",
                context={"provider": self.name, "network": True},
            ) from e

        texts: list[str] = []
        urls: list[str] = []
        for block in message.content:
            if getattr(block, "type", None) != "text":
                continue
            texts.append(block.text)
            for citation in getattr(block, "citations", None) or []:
                urls.append(getattr(citation, "url", "") or "")
        return LLMReply(text="".join(texts), citations=_unique(urls))


class OpenAIAPIProvider:
    """LLM provider using the OpenAI Responses API with web search.

    Requires: pip install openai
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        timeout_seconds: int = 30,
    ) -> None:
        try:
            import openai
        except ImportError:
            raise LLMError(
                "openai package not installed. "
                "Install with: pip install invest-pilot[openai]",
                context={"provider": "openai"},
            )
        kwargs: dict[str, Any] = {"api_key": api_key, "timeout": timeout_seconds}
        if base_url:
            kwargs["base_url"] = normalize_base_url(base_url, "")
        self._client = openai.AsyncOpenAI(**kwargs)
        self._model = model

    @property
    def name(self) -> str:
        return "openai"

    async def query(
        self, prompt: str, max_tokens: int = 1024, web_search: bool = True
    ) -> LLMReply:
        import openai

        kwargs: dict[str, Any] = {
            "model": self._model,
            "input": prompt,
            "max_output_tokens": max_tokens,
        }
        if web_search:
            kwargs["tools"] = [{"type": "web_search_preview"}]
        try:
            response = await self._client.responses.create(**kwargs)
        except openai.APIStatusError as e:
            raise LLMError(
                f"OpenAI API error: {e.message}",
                context={"provider": self.name, "status_code": e.status_code},
            ) from e
        except openai.APIConnectionError as e:
            raise LLMError(
                f"OpenAI connection error: {e}",
                context={"provider": self.name, "network": True},
            ) from e

        urls: list[str] = []
        for item in getattr(response, "output", None) or []:
            for content in getattr(item, "content", None) or []:
                for note in getattr(content, "annotations", None) or []:
                    if getattr(note, "type", None) == "url_citation":
                        urls.append(getattr(note, "url", "") or "")
        return LLMReply(text=response.output_text or "", citations=_unique(urls))


# --- Provider Factory ---


def create_provider(
    config: AIConfig,
    client: httpx.AsyncClient | None = None,
) -> LLMProviderBackend:
    """Create an LLM provider backend from config.

    Raises LLMError when no usable credential is configured.
    """
    api_key = config.effective_api_key
    if api_key is None:
        raise LLMError(
            "No usable AI API key configured",
            context={"provider": str(config.provider)},
        )
    if config.provider == LLMProvider.GEMINI:
        return GeminiProvider(
            api_key=api_key,
            model=config.model,
            base_url=config.base_url,
            timeout_seconds=config.timeout_seconds,
            client=client,
        )
    elif config.provider == LLMProvider.ANTHROPIC:
        return AnthropicAPIProvider(
            api_key=api_key,
            model=config.model,
            base_url=config.base_url,
            timeout_seconds=config.timeout_seconds,
        )
    elif config.provider == LLMProvider.OPENAI:
        return OpenAIAPIProvider(
            api_key=api_key,
            model=config.model,
            base_url=config.base_url,
            timeout_seconds=config.timeout_seconds,
        )
    else:
        raise LLMError(
            f"Unknown LLM provider: {config.provider}",
            context={"provider": str(config.provider)},
        )


# --- Response Parsing ---


def strip_code_fence(raw: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    cleaned = raw.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [line for line in lines if not line.strip().startswith("```")]
        cleaned = "\n".join(lines).strip()
    return cleaned


def parse_json_object(raw: str) -> dict[str, Any]:
    """Parse a model reply as a JSON object.

    Handles markdown code fences and prose around the object.
    """
    cleaned = strip_code_fence(raw)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise LLMError(
                f"Failed to parse LLM response as JSON: {e}",
                context={"response_body": raw[:500], "parse_error": str(e)},
            ) from e
        try:
            data = json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError as inner:
            raise LLMError(
                f"Failed to parse LLM response as JSON: {inner}",
                context={"response_body": raw[:500], "parse_error": str(inner)},
            ) from inner

    if not isinstance(data, dict):
        raise LLMError(
            f"Expected JSON object, got {type(data).__name__}",
            context={"response_body": raw[:500]},
        )
    return data
