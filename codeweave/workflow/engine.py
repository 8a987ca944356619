"""Sequential workflow execution."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Literal, Optional, Set

from pydantic import BaseModel, Field

from ..config import WeaveConfig
from ..contracts import AgentDefinition, Task, WorkflowStep, WorkflowTemplate
from ..engines.base import Engine, RunOptions
from ..engines.registry import EngineRegistry
from ..errors import ConfigurationError, EngineError, ProcessCancelled, StepFailed
from ..ledger import TaskLedger
from ..memory import MemoryStore
from ..persistence import InMemoryRunRepository, RunRepository
from ..process import CancelToken, EventChannel, OutputCallback
from .acceptance import AcceptanceEvaluator, CompletionMarkerEvaluator
from .loader import validate_template
from .loop import LoopController
from .prompt import build_task_request, compose_prompt

logger = logging.getLogger(__name__)


class StepInvocation(BaseModel):
    """One engine run performed for a workflow step."""

    step_index: int
    agent_id: str
    engine_id: str
    status: Literal["completed", "failed", "cancelled"]
    task_id: Optional[str] = None
    accepted: Optional[bool] = None
    fallback_for: Optional[str] = None
    instance_id: Optional[str] = None
    output: str = ""
    error: Optional[str] = None


class WorkflowRunResult(BaseModel):
    run_id: str
    template_name: str
    status: Literal["completed", "halted"]
    reason: Optional[str] = None
    start_index: int = 0
    cursor: int = 0
    invocations: List[StepInvocation] = Field(default_factory=list)
    loop_counters: Dict[str, int] = Field(default_factory=dict)

    @property
    def cancelled(self) -> bool:
        return self.reason == "cancelled"


@dataclass
class _Binding:
    """The agent settings an invocation runs with."""

    agent_id: str
    prompt_path: str
    model: Optional[str]
    reasoning_effort: Optional[str]
    engine_id: Optional[str]


class WorkflowEngine:
    """Runs a workflow template step by step.

    Steps run strictly one after another; the loop controller is the only
    thing that moves the cursor anywhere but forward.
    """

    def __init__(
        self,
        config: WeaveConfig,
        registry: EngineRegistry,
        catalog: Dict[str, AgentDefinition],
        *,
        ledger: Optional[TaskLedger] = None,
        memory: Optional[MemoryStore] = None,
        repository: Optional[RunRepository] = None,
        evaluator: Optional[AcceptanceEvaluator] = None,
        channel: Optional[EventChannel] = None,
        cancel_token: Optional[CancelToken] = None,
        on_output: Optional[OutputCallback] = None,
        on_error_output: Optional[OutputCallback] = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self.catalog = catalog
        self.ledger = ledger
        self.memory = memory or MemoryStore(config.memory_dir)
        self.repository = repository or InMemoryRunRepository()
        self.evaluator = evaluator or CompletionMarkerEvaluator()
        self.channel = channel
        self.cancel_token = cancel_token
        self.on_output = on_output
        self.on_error_output = on_error_output
        self._authenticated: Set[str] = set()

    def validate(self, template: WorkflowTemplate) -> None:
        validate_template(template, self.catalog, self.registry, self.config.workspace_dir)

    async def run(
        self,
        template: WorkflowTemplate,
        start_index: int = 0,
        resume_summary: Optional[str] = None,
    ) -> WorkflowRunResult:
        """Execute ``template`` from ``start_index`` until the cursor passes the end.

        Raises:
            ConfigurationError: If the template references unknown agents,
                engines or prompt files. Nothing runs in that case.
            ValueError: If ``start_index`` is out of range.
        """
        self.validate(template)
        if not 0 <= start_index <= len(template.steps):
            raise ValueError(
                f"start_index {start_index} outside template of {len(template.steps)} steps"
            )
        await self.registry.sync_config(list(self.catalog.values()))

        run_id = uuid.uuid4().hex
        await self.repository.create_run(run_id, template.name, start_index)
        logger.info(f"Run {run_id}: '{template.name}' starting at step {start_index}")

        loop = LoopController(template, self.config.default_max_iterations)
        completed: Set[int] = set()
        invocations: List[StepInvocation] = []
        status: Literal["completed", "halted"] = "completed"
        reason: Optional[str] = None
        summary = resume_summary
        index = start_index

        try:
            while index < len(template.steps):
                if self.cancel_token is not None and self.cancel_token.cancelled:
                    status, reason = "halted", "cancelled"
                    break
                step = template.steps[index]
                if step.execute_once and index in completed:
                    logger.info(f"Step {index} ({step.agent_id}) runs once per run; skipping")
                    index += 1
                    continue
                if loop.is_skipped(index):
                    logger.info(f"Step {index} ({step.agent_id}) skipped by active loop")
                    index += 1
                    continue

                try:
                    output = await self._run_step(run_id, index, step, invocations, summary)
                except ProcessCancelled:
                    status, reason = "halted", "cancelled"
                    break
                except EngineError as e:
                    logger.error(f"Run {run_id} halted at step {index} ({step.agent_id}): {e}")
                    status, reason = "halted", str(e)
                    break

                summary = None
                completed.add(index)
                index = loop.next_index(index, output)
        except asyncio.CancelledError:
            status, reason = "halted", "cancelled"
            raise
        except Exception as e:
            logger.exception(f"Run {run_id} aborted at step {index}")
            status, reason = "halted", f"{type(e).__name__}: {e}"
            raise
        finally:
            await self.repository.mark_run_completed(run_id, status, reason)

        logger.info(f"Run {run_id} {status}" + (f": {reason}" if reason else ""))
        return WorkflowRunResult(
            run_id=run_id,
            template_name=template.name,
            status=status,
            reason=reason,
            start_index=start_index,
            cursor=index,
            invocations=invocations,
            loop_counters=dict(loop.counters),
        )

    # ------------------------------------------------------------------
    async def _run_step(
        self,
        run_id: str,
        index: int,
        step: WorkflowStep,
        invocations: List[StepInvocation],
        resume_summary: Optional[str],
    ) -> str:
        """Run a step, and its fallback agent if the step did not finish its task."""
        task = self._task_for(step)
        binding = _Binding(
            agent_id=step.agent_id,
            prompt_path=step.prompt_path,
            model=step.model,
            reasoning_effort=step.reasoning_effort,
            engine_id=step.engine or self.catalog[step.agent_id].engine,
        )
        try:
            invocation = await self._invoke(
                run_id, index, binding, task, resume_summary, invocations
            )
        except ProcessCancelled:
            raise
        except EngineError as e:
            if not step.not_completed_fallback:
                raise
            logger.warning(
                f"Step {index} ({step.agent_id}) failed: {e}; "
                f"running fallback {step.not_completed_fallback}"
            )
            return await self._run_fallback(run_id, index, step, task, invocations)

        if invocation.accepted is False and step.not_completed_fallback:
            logger.info(
                f"Task {task.id if task else '-'} not accepted after {step.agent_id}; "
                f"running fallback {step.not_completed_fallback}"
            )
            return await self._run_fallback(run_id, index, step, task, invocations)
        return invocation.output

    async def _run_fallback(
        self,
        run_id: str,
        index: int,
        step: WorkflowStep,
        task: Optional[Task],
        invocations: List[StepInvocation],
    ) -> str:
        agent = self.catalog[step.not_completed_fallback]
        binding = _Binding(
            agent_id=agent.id,
            prompt_path=agent.prompt_path,
            model=agent.model,
            reasoning_effort=agent.reasoning_effort,
            engine_id=agent.engine or step.engine,
        )
        invocation = await self._invoke(
            run_id, index, binding, task, None, invocations, fallback_for=step.agent_id
        )
        return invocation.output

    async def _invoke(
        self,
        run_id: str,
        index: int,
        binding: _Binding,
        task: Optional[Task],
        resume_summary: Optional[str],
        invocations: List[StepInvocation],
        fallback_for: Optional[str] = None,
    ) -> StepInvocation:
        engine = self._engine_for(binding.engine_id)
        record_id = await self.repository.mark_step_started(run_id, index, binding.agent_id)
        invocation = StepInvocation(
            step_index=index,
            agent_id=binding.agent_id,
            engine_id=engine.id,
            status="completed",
            task_id=task.id if task else None,
            fallback_for=fallback_for,
        )
        logger.info(f"Step {index}: running {binding.agent_id} on {engine.id}")

        try:
            await self._ensure_auth(engine)
            prompt = self._prompt_for(binding, task, resume_summary)
            result = await engine.run(
                RunOptions(
                    prompt=prompt,
                    working_dir=self.config.workspace_dir,
                    agent_id=binding.agent_id,
                    model=binding.model,
                    reasoning_effort=binding.reasoning_effort,
                    on_data=self.on_output,
                    on_error_data=self.on_error_output,
                    cancel_token=self.cancel_token,
                    timeout_ms=self.config.timeout_ms,
                    memory=self.memory,
                    channel=self.channel,
                )
            )
            invocation.output = result.stdout
            invocation.instance_id = result.instance_id
            invocation.accepted = self._evaluate(task, result.stdout)
        except EngineError as e:
            await self._record_failure(record_id, invocation, invocations, e, fallback_for)
            raise
        except Exception as e:
            logger.exception(f"Step {index}: {binding.agent_id} raised unexpectedly")
            failure = StepFailed(binding.agent_id, e)
            await self._record_failure(record_id, invocation, invocations, failure, fallback_for)
            raise failure from e

        invocations.append(invocation)
        await self.repository.mark_step_completed(
            record_id,
            "completed",
            {
                "task_id": invocation.task_id,
                "accepted": invocation.accepted,
                "instance_id": invocation.instance_id,
                "fallback_for": fallback_for,
            },
        )
        return invocation

    async def _record_failure(
        self,
        record_id: int,
        invocation: StepInvocation,
        invocations: List[StepInvocation],
        error: EngineError,
        fallback_for: Optional[str],
    ) -> None:
        invocation.status = "cancelled" if isinstance(error, ProcessCancelled) else "failed"
        invocation.error = str(error)
        invocation.instance_id = getattr(error, "instance_id", None) or invocation.instance_id
        invocations.append(invocation)
        await self.repository.mark_step_completed(
            record_id, invocation.status, {"error": str(error), "fallback_for": fallback_for}
        )

    # ------------------------------------------------------------------
    def _engine_for(self, engine_id: Optional[str]) -> Engine:
        if engine_id:
            return self.registry.require(engine_id)
        return self.registry.default()

    async def _ensure_auth(self, engine: Engine) -> None:
        if engine.id in self._authenticated:
            return
        await engine.auth.ensure_auth()
        self._authenticated.add(engine.id)

    def _prompt_for(
        self, binding: _Binding, task: Optional[Task], resume_summary: Optional[str]
    ) -> str:
        path = self.config.resolve(binding.prompt_path)
        try:
            agent_prompt = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Cannot read prompt for {binding.agent_id}: {path}") from e
        memory_path: Optional[Path] = self.memory.path_for(binding.agent_id)
        if not memory_path.exists():
            memory_path = None
        return compose_prompt(agent_prompt, memory_path, build_task_request(task), resume_summary)

    def _task_for(self, step: WorkflowStep) -> Optional[Task]:
        """The task a step works on: its bound task, else the first open one."""
        if self.ledger is None:
            return None
        if step.task_id:
            try:
                return self.ledger.get(step.task_id)
            except KeyError:
                logger.warning(f"Step {step.agent_id} is bound to unknown task {step.task_id}")
                return None
        return self.ledger.first_incomplete()

    def _evaluate(self, task: Optional[Task], output: str) -> bool:
        """Decide acceptance for ``task`` and record it in the ledger."""
        if task is None or self.ledger is None:
            return True
        if self.ledger.path.exists():
            try:
                self.ledger.reload()
            except ConfigurationError as e:
                logger.warning(f"Keeping in-memory ledger; reload failed: {e}")
        try:
            current = self.ledger.get(task.id)
        except KeyError:
            logger.warning(f"Task {task.id} disappeared from the ledger")
            return self.evaluator.evaluate(task, output)
        if current.done:
            return True
        if self.evaluator.evaluate(current, output):
            self.ledger.mark_done(task.id)
            return True
        return False
