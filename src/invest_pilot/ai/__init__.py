"""invest_pilot.ai: grounded LLM backends, price-search fallback, advisor."""

from invest_pilot.ai.advisor import Advisor, fallback_analysis, readable_error
from invest_pilot.ai.llm import (
    AnthropicAPIProvider,
    GeminiProvider,
    LLMProviderBackend,
    LLMReply,
    OpenAIAPIProvider,
    create_provider,
    normalize_base_url,
    parse_json_object,
)
from invest_pilot.ai.price_search import AIPriceSearch, AssetRef, build_price_prompt

__all__ = [
    "AIPriceSearch",
    "Advisor",
    "AnthropicAPIProvider",
    "AssetRef",
    "GeminiProvider",
    "LLMProviderBackend",
    "LLMReply",
    "OpenAIAPIProvider",
    "build_price_prompt",
    "create_provider",
    "fallback_analysis",
    "normalize_base_url",
    "parse_json_object",
    "readable_error",
]
