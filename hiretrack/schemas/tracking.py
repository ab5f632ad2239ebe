from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class CadenceOut(BaseModel):
    last_run: datetime | None = None
    next_run: datetime | None = None


class TrackingStatusOut(BaseModel):
    status: Literal["running", "stopped"]
    started_at: datetime | None = None
    stopped_at: datetime | None = None
    cadences: dict[str, CadenceOut] = Field(default_factory=dict)
    last_cycles: dict[str, dict[str, Any]] = Field(default_factory=dict)
    health: Literal["healthy", "degraded", "down"] | None = None


class TrackingActionOut(BaseModel):
    changed: bool
    status: Literal["running", "stopped"]
