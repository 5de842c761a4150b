"""Custom exception hierarchy for invest-pilot."""

from typing import Any


class InvestPilotError(Exception):
    """Base exception for all invest-pilot errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(InvestPilotError):
    """Invalid or missing configuration.

    Raised by load_config() during startup. Should be treated as fatal.

    Context keys:
        field: str, the config field that failed validation
        value: Any, the invalid value (redacted for secrets)
    """


class ProviderError(InvestPilotError):
    """A quote feed failed to deliver usable data.

    Policy: log and degrade that provider to "no data" for the affected
    codes. Never propagated to the caller of refresh().

    Context keys:
        provider: str, the adapter name
        url: str, the URL that was being fetched
        status_code: int | None, HTTP status code if applicable
    """


class LLMError(InvestPilotError):
    """Generative-AI backend returned an error or malformed response.

    Policy: the affected chunk degrades to unresolved; other chunks continue.

    Context keys:
        provider: str, "gemini", "anthropic", or "openai"
        status_code: int | None, HTTP status code if applicable
        response_body: str | None, truncated response for debugging
    """


class CacheError(InvestPilotError):
    """Price cache or snapshot read/write failed.

    Policy: swallowed by the store. The cycle proceeds as if the cache
    were empty.

    Context keys:
        operation: str, "load", "save", "load_snapshot", "save_snapshot"
        path: str, file or database involved
    """


class ReconciliationError(InvestPilotError):
    """Unexpected failure inside a refresh cycle.

    Policy: caught at the top of refresh(); the prior asset collection is
    returned unchanged.

    Context keys:
        stage: str, "fetch", "resolve", "fallback", "persist"
    """
