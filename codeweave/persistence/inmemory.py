"""In-memory implementation of the run repository."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict

from .models import RunRecord, StepRecord
from .repository import RunRepository


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryRunRepository(RunRepository):
    """Store run history in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._runs: Dict[str, RunRecord] = {}
        self._steps: Dict[int, StepRecord] = {}
        self._step_id = 0

    # ------------------------------------------------------------------
    async def create_run(self, run_id: str, template_name: str, start_index: int = 0) -> None:
        self._runs[run_id] = RunRecord(
            run_id=run_id,
            template_name=template_name,
            start_index=start_index,
            status="in_progress",
            created_at=_now(),
            steps=[],
        )

    async def mark_step_started(self, run_id: str, step_index: int, agent_id: str) -> int:
        self._step_id += 1
        record = StepRecord(
            id=self._step_id,
            run_id=run_id,
            step_index=step_index,
            agent_id=agent_id,
            started_at=_now(),
        )
        self._steps[record.id] = record
        run = self._runs.get(run_id)
        if run:
            run.steps.append(record)
        return record.id

    async def mark_step_completed(
        self,
        record_id: int,
        status: str,
        output: dict | None = None,
    ) -> None:
        step = self._steps.get(record_id)
        if step is None or step.completed_at is not None:
            return
        step.completed_at = _now()
        step.status = status
        step.output = output or {}

    async def mark_run_completed(
        self, run_id: str, status: str = "completed", reason: str | None = None
    ) -> None:
        run = self._runs.get(run_id)
        if run:
            run.status = status
            run.reason = reason

    async def get_run(self, run_id: str) -> RunRecord | None:
        return self._runs.get(run_id)

    async def list_runs(self) -> list[RunRecord]:
        return [run.model_copy(update={"steps": []}) for run in self._runs.values()]
