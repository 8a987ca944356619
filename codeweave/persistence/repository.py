"""Repository abstraction for run history persistence."""

from __future__ import annotations

from typing import Protocol

from .models import RunRecord


class RunRepository(Protocol):
    """Protocol for run history backends."""

    async def create_run(self, run_id: str, template_name: str, start_index: int = 0) -> None:
        """Persist a new run."""

    async def mark_step_started(self, run_id: str, step_index: int, agent_id: str) -> int:
        """Record the start of a step invocation and return its record id."""

    async def mark_step_completed(
        self,
        record_id: int,
        status: str,
        output: dict | None = None,
    ) -> None:
        """Record completion of a step invocation."""

    async def mark_run_completed(
        self, run_id: str, status: str = "completed", reason: str | None = None
    ) -> None:
        """Mark the run as finished."""

    async def get_run(self, run_id: str) -> RunRecord | None:
        """Retrieve a run with its step history."""

    async def list_runs(self) -> list[RunRecord]:
        """Return all persisted runs, without step history."""
