"""Resuming interrupted runs from the task ledger."""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from ..contracts import WorkflowTemplate
from ..ledger import TaskLedger
from ..utils.retry import schedule_retry
from .engine import WorkflowEngine, WorkflowRunResult

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[], Union[None, Awaitable[None]]]


class RecoveryController:
    """Re-enters the workflow engine at the first unfinished task.

    The ledger on disk is the source of truth: whatever the previous run
    managed to mark done is not repeated.
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        ledger: TaskLedger,
        on_complete: Optional[CompletionCallback] = None,
        max_resume_attempts: Optional[int] = None,
        backoff_base: float = 1.5,
        backoff_jitter: float = 0.5,
    ) -> None:
        self.engine = engine
        self.ledger = ledger
        self.on_complete = on_complete
        self.max_resume_attempts = (
            engine.config.max_resume_attempts
            if max_resume_attempts is None
            else max_resume_attempts
        )
        self.backoff_base = backoff_base
        self.backoff_jitter = backoff_jitter

    def _refresh(self) -> None:
        if self.ledger.path.exists():
            self.ledger.reload()

    async def _complete(self) -> None:
        logger.info("All tasks are done")
        if self.on_complete is not None:
            result = self.on_complete()
            if inspect.isawaitable(result):
                await result

    def resume_index(self, template: WorkflowTemplate) -> Optional[int]:
        """Step index bound to the first open task, or ``None`` when all are done."""
        self._refresh()
        task = self.ledger.first_incomplete()
        if task is None:
            return None
        index = template.index_of_task(task.id)
        if index is None:
            logger.info(f"No step is bound to task {task.id}; resuming from step 0")
            return 0
        return index

    async def recover(
        self,
        template: WorkflowTemplate,
        result: Optional[WorkflowRunResult] = None,
    ) -> Optional[WorkflowRunResult]:
        """Resume ``template`` after ``result`` ended.

        Returns ``None`` after calling the completion callback when every
        task is already done.
        """
        index = self.resume_index(template)
        if index is None:
            await self._complete()
            return None
        if result is not None:
            logger.info(
                f"Resuming '{template.name}' at step {index} after run {result.run_id} "
                f"{result.status}" + (f" ({result.reason})" if result.reason else "")
            )
        return await self.engine.run(
            template, start_index=index, resume_summary=self.ledger.completed_summary()
        )

    async def supervise(self, template: WorkflowTemplate, start_index: int = 0) -> WorkflowRunResult:
        """Run ``template`` and resume it until every task is done.

        Gives up after ``max_resume_attempts`` resumes. A cancelled run is
        never resumed.
        """
        result = await self.engine.run(template, start_index=start_index)
        attempt = 0
        while True:
            if result.cancelled:
                logger.info(f"Run {result.run_id} was cancelled; not resuming")
                return result
            if self.resume_index(template) is None:
                await self._complete()
                return result
            if attempt >= self.max_resume_attempts:
                logger.warning(
                    f"Tasks remain open after {attempt} resume attempts; giving up"
                )
                return result
            attempt += 1
            await schedule_retry(attempt, base=self.backoff_base, jitter=self.backoff_jitter)
            resumed = await self.recover(template, result)
            if resumed is None:
                return result
            result = resumed
