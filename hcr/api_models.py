from __future__ import annotations

from pydantic import BaseModel, Field


class StatusOut(BaseModel):
    status: str = Field(..., description="ok|degraded|starting|failed|disabled")
    synced: bool = Field(False, description="Pod cache has completed its initial list")
    queue_depth: int = Field(0, ge=0)
    workers: int = Field(0, ge=0)
    detail: str | None = None


class EventOut(BaseModel):
    id: int
    ts: str
    level: str
    namespace: str | None = None
    pod: str | None = None
    message: str


class ReconcileRunOut(BaseModel):
    id: int | None = None
    started_at: str
    finished_at: str | None = None
    examined: int = Field(0, ge=0)
    created: int = Field(0, ge=0)
    updated: int = Field(0, ge=0)
    unchanged: int = Field(0, ge=0)
    skipped: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)
