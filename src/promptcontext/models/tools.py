from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from promptcontext.models.context import ContextBundle


class EnhanceContextInput(BaseModel):
    request: str = Field(min_length=1)
    hints: list[str] = Field(default_factory=list, max_length=20)
    project_id: str | None = Field(default=None, max_length=1024)

    @field_validator("request")
    @classmethod
    def validate_request(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("request must contain non-whitespace text")
        return v


class EnhanceContextOutput(BaseModel):
    bundle: ContextBundle
    cache_hit: bool
    cache_tier: str | None
    degraded: bool
    unavailable_sources: list[str]
    frameworks: list[str]
    elapsed_ms: float


class InvalidateProjectInput(BaseModel):
    project_id: str = Field(min_length=1, max_length=1024)


class InvalidateProjectOutput(BaseModel):
    project_id: str
    deleted: int


class BreakerStatus(BaseModel):
    endpoint: str
    state: str
    recent_failures: int


class HealthOutput(BaseModel):
    status: str  # "ok" | "degraded"
    version: str
    hot_cache_entries: int
    hot_cache_capacity: int
    store_size_bytes: int | None
    store_available: bool
    docs_breaker: BreakerStatus
