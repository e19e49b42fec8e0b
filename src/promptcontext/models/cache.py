from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, model_validator

from promptcontext.models.context import ContextBundle


class CacheEntry(BaseModel):
    """A cached context bundle plus expiry and size metadata."""

    key: str
    bundle: ContextBundle
    created_at: datetime
    expires_at: datetime
    size_bytes: int
    hit_count: int = 0

    @model_validator(mode="after")
    def _check_expiry(self) -> CacheEntry:
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be later than created_at")
        return self

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at
