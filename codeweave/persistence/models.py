"""Data models for persisted run history."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class StepRecord(BaseModel):
    """Record of one step invocation. Loops produce several per step index."""

    id: Optional[int] = None
    run_id: str
    step_index: int
    agent_id: str
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    status: Optional[str] = None
    output: Optional[dict[str, Any]] = None


class RunRecord(BaseModel):
    """Persisted workflow run."""

    run_id: str
    template_name: str
    start_index: int = 0
    status: str = "in_progress"
    reason: Optional[str] = None
    created_at: Optional[datetime] = None
    steps: list[StepRecord] = Field(default_factory=list)
