"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (PROMPTCONTEXT__CACHE__TTL_SECONDS=600)
  2. promptcontext.yaml     (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional: every tunable of the assembly pipeline has a
documented default and can be overridden on its own.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("promptcontext")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "context-cache.db")

DEFAULT_KNOWN_FRAMEWORKS: list[str] = [
    "react",
    "vue",
    "angular",
    "svelte",
    "nextjs",
    "nuxt",
    "express",
    "fastapi",
    "django",
    "flask",
    "typescript",
    "tailwindcss",
    "pydantic",
    "sqlalchemy",
    "prisma",
    "playwright",
    "vitest",
    "jest",
    "pytest",
]


def _find_config_file() -> str | None:
    """Return the path of the first promptcontext.yaml found, or None."""
    candidates = [
        Path("promptcontext.yaml"),
        Path(platformdirs.user_config_dir("promptcontext")) / "promptcontext.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ServerSettings(BaseModel):
    transport: Literal["stdio", "http"] = "stdio"
    host: str = "0.0.0.0"
    port: int = 8080


class CacheSettings(BaseModel):
    db_path: str = _DEFAULT_DB_PATH
    ttl_seconds: float = Field(default=3600.0, gt=0)
    # Degraded bundles expire sooner so an outage heals out of the cache quickly.
    degraded_ttl_seconds: float = Field(default=300.0, gt=0)
    max_size_bytes: int = Field(default=50 * 1024 * 1024, gt=0)
    cleanup_interval_hours: int = 6


class HotCacheSettings(BaseModel):
    capacity: int = Field(default=1000, gt=0)
    ttl_seconds: float = Field(default=900.0, gt=0)


class BreakerSettings(BaseModel):
    failure_threshold: int = Field(default=5, gt=0)
    window_seconds: float = Field(default=60.0, gt=0)
    cooldown_seconds: float = Field(default=30.0, ge=0)
    half_open_max_calls: int = Field(default=1, gt=0)


class RetrySettings(BaseModel):
    max_retries: int = Field(default=2, ge=0)
    base_delay_seconds: float = Field(default=0.25, ge=0)
    multiplier: float = Field(default=2.0, ge=1)
    max_delay_seconds: float = Field(default=2.0, ge=0)
    jitter: bool = True


class DocsSettings(BaseModel):
    url: str = "https://mcp.context7.com/mcp"
    api_key: str | None = None
    attempt_timeout_seconds: float = Field(default=5.0, gt=0)
    lookup_timeout_seconds: float = Field(default=12.0, gt=0)
    tokens_per_library: int = Field(default=2000, gt=0)
    max_libraries: int = Field(default=3, gt=0)


class FactsSettings(BaseModel):
    timeout_seconds: float = Field(default=2.0, gt=0)
    max_snippets: int = Field(default=10, ge=0)
    snippet_max_chars: int = Field(default=1200, gt=0)


class RankerSettings(BaseModel):
    token_budget: int = Field(default=2000, gt=0)
    framework_boost: float = 0.5
    fact_weight: float = 1.0
    snippet_weight: float = 0.8
    doc_weight: float = 0.6


class AssemblerSettings(BaseModel):
    deadline_seconds: float = Field(default=15.0, gt=0)
    max_request_chars: int = Field(default=8000, gt=0)
    max_tracked_projects: int = Field(default=1024, gt=0)


class DetectorSettings(BaseModel):
    known_frameworks: list[str] = Field(default_factory=lambda: list(DEFAULT_KNOWN_FRAMEWORKS))
    fuzzy_score_cutoff: int = Field(default=88, ge=0, le=100)


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: PROMPTCONTEXT__RANKER__TOKEN_BUDGET=4000
        env_prefix="PROMPTCONTEXT__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    server: ServerSettings = ServerSettings()
    cache: CacheSettings = CacheSettings()
    hot_cache: HotCacheSettings = HotCacheSettings()
    breaker: BreakerSettings = BreakerSettings()
    retry: RetrySettings = RetrySettings()
    docs: DocsSettings = DocsSettings()
    facts: FactsSettings = FactsSettings()
    ranker: RankerSettings = RankerSettings()
    assembler: AssemblerSettings = AssemblerSettings()
    detector: DetectorSettings = DetectorSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
