"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, field_validator

from invest_pilot.core.exceptions import ConfigError
from invest_pilot.core.models import (
    CacheBackend,
    Language,
    LLMProvider,
    RefreshScope,
)

# User credentials shorter than this are treated as placeholders
MIN_API_KEY_LENGTH = 11

DEFAULT_VISIBLE_ASSETS = [
    "sh_composite",
    "sh_gold",
    "sh_silver",
    "sh_oil",
    "usd_cny",
    "btc",
    "nasdaq",
    "gold_comex",
    "silver_comex",
]


class ProvidersConfig(BaseModel):
    """Quote feed access configuration."""

    model_config = ConfigDict(frozen=True)

    timeout_seconds: float = 3.0
    max_batch_size: int = 40
    user_agent: str = "Mozilla/5.0 (compatible; invest-pilot/0.1)"

    @field_validator("timeout_seconds")
    @classmethod
    def timeout_bounded(cls, v: float) -> float:
        if v <= 0 or v > 30:
            raise ValueError("timeout_seconds must be in (0, 30]")
        return v

    @field_validator("max_batch_size")
    @classmethod
    def batch_size_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_batch_size must be >= 1")
        return v


class AIConfig(BaseModel):
    """Configuration for the generative-AI backend (price search, advisor)."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    provider: LLMProvider = LLMProvider.GEMINI
    model: str = "gemini-2.5-flash"
    api_key: str | None = None
    default_api_key: str | None = None
    base_url: str | None = None
    chunk_size: int = 3
    max_concurrent: int = 3
    requests_per_minute: int = 30
    timeout_seconds: int = 30

    @field_validator("chunk_size", "max_concurrent", "requests_per_minute")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be >= 1")
        return v

    @field_validator("base_url")
    @classmethod
    def base_url_absolute(cls, v: str | None) -> str | None:
        if v is not None and v.strip().startswith("/"):
            raise ValueError(
                "base_url must be an absolute URL or host name, not a path"
            )
        return v

    @property
    def effective_api_key(self) -> str | None:
        """User credential if usable, else the build-time default."""
        for candidate in (self.api_key, self.default_api_key):
            if candidate and len(candidate.strip()) >= MIN_API_KEY_LENGTH:
                return candidate.strip()
        return None

    @property
    def is_configured(self) -> bool:
        return self.enabled and self.effective_api_key is not None


class CacheConfig(BaseModel):
    """Price cache persistence configuration."""

    model_config = ConfigDict(frozen=True)

    backend: CacheBackend = CacheBackend.JSON
    cache_dir: str = "./data/cache"
    sqlite_path: str = "./data/invest_pilot.db"


class ReconcileConfig(BaseModel):
    """Reconciliation policy knobs."""

    model_config = ConfigDict(frozen=True)

    tolerance: float = 0.01
    scope: RefreshScope = RefreshScope.ALL
    priority_table_path: str | None = None

    @field_validator("tolerance")
    @classmethod
    def tolerance_in_range(cls, v: float) -> float:
        if v < 0 or v >= 1:
            raise ValueError("tolerance must be in [0, 1)")
        return v


class DashboardConfig(BaseModel):
    """Shell-side settings: refresh cadence and the visible subset."""

    model_config = ConfigDict(frozen=True)

    refresh_interval_seconds: int = 300
    # API server refreshes on startup and then on every interval tick
    auto_refresh: bool = True
    visible_assets: list[str] = DEFAULT_VISIBLE_ASSETS
    language: Language = Language.ZH
    history_points: int = 24

    @field_validator("refresh_interval_seconds")
    @classmethod
    def interval_positive(cls, v: int) -> int:
        if v < 5:
            raise ValueError("refresh_interval_seconds must be >= 5")
        return v

    @field_validator("history_points")
    @classmethod
    def points_positive(cls, v: int) -> int:
        if v < 2:
            raise ValueError("history_points must be >= 2")
        return v


class APIConfig(BaseModel):
    """FastAPI server configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = "127.0.0.1"
    port: int = 8000
    api_key: str | None = None


class PilotConfig(BaseModel):
    """Root configuration for invest-pilot."""

    model_config = ConfigDict(frozen=True)

    providers: ProvidersConfig = ProvidersConfig()
    ai: AIConfig = AIConfig()
    cache: CacheConfig = CacheConfig()
    reconcile: ReconcileConfig = ReconcileConfig()
    dashboard: DashboardConfig = DashboardConfig()
    api: APIConfig = APIConfig()


def load_config(
    config_path: str | None = None,
    env_prefix: str = "INVEST_PILOT_",
) -> PilotConfig:
    """Load configuration from environment + YAML file + defaults.

    Resolution order (highest priority first):
    1. Environment variables (INVEST_PILOT_AI__API_KEY, etc.)
    2. YAML file at config_path
    3. Built-in defaults

    Nested keys use double-underscore in env vars:
        INVEST_PILOT_PROVIDERS__TIMEOUT_SECONDS=2.5  ->  providers.timeout_seconds = 2.5
    """
    try:
        yaml_path = _resolve_config_path(config_path)
        base: dict = {}
        if yaml_path is not None:
            base = _load_yaml(yaml_path)

        merged = _merge_env_vars(base, env_prefix)
        return PilotConfig.model_validate(merged)
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(str(e), context={"source": "load_config"}) from e


def _resolve_config_path(explicit: str | None) -> Path | None:
    """Determine config file path."""
    if explicit is not None:
        p = Path(explicit)
        if not p.exists():
            raise ConfigError(
                f"Config file not found: {explicit}",
                context={"field": "config_path", "value": explicit},
            )
        return p

    env_path = os.environ.get("INVEST_PILOT_CONFIG")
    if env_path:
        p = Path(env_path)
        if not p.exists():
            raise ConfigError(
                f"Config file from INVEST_PILOT_CONFIG not found: {env_path}",
                context={"field": "INVEST_PILOT_CONFIG", "value": env_path},
            )
        return p

    default = Path("invest-pilot.yml")
    if default.exists():
        return default

    return None


def _load_yaml(path: Path) -> dict:
    """Load and parse YAML file."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"YAML config must be a mapping, got {type(data).__name__}",
                context={"field": "config_file", "value": str(path)},
            )
        return data
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse YAML config: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e


def _merge_env_vars(base: dict, prefix: str) -> dict:
    """Overlay environment variables onto base config dict.

    Double-underscore separates nesting levels. Comma-separated values for
    list fields (dashboard.visible_assets) are split.
    """
    result = dict(base)

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        remainder = key[len(prefix) :]
        parts = [p.lower() for p in remainder.split("__")]

        # Skip the CONFIG env var itself
        if parts == ["config"]:
            continue

        if parts[-1] == "visible_assets":
            cast_value: object = [v.strip() for v in value.split(",") if v.strip()]
        elif parts[-1] in ("api_key", "default_api_key"):
            # Credentials stay strings even when they look numeric
            cast_value = value
        else:
            cast_value = _auto_cast(value)

        target = result
        for part in parts[:-1]:
            if not isinstance(target.get(part), dict):
                target[part] = {}
            else:
                target[part] = dict(target[part])
            target = target[part]
        target[parts[-1]] = cast_value

    return result


def _auto_cast(value: str) -> str | int | float | bool:
    """Auto-cast string values from environment variables."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value
