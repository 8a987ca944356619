"""Core data contracts for codeweave workflows."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PositiveInt
from pydantic.alias_generators import to_camel

ReasoningEffort = Literal["low", "medium", "high"]
InstanceState = Literal["running", "completed", "error", "terminated"]

TERMINAL_STATES = frozenset({"completed", "error", "terminated"})

_REASONING_ALIASES = AliasChoices(
    "reasoning_effort", "reasoningEffort", "modelReasoningEffort", "model_reasoning_effort"
)


class _Contract(BaseModel):
    """Accepts both snake_case and camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AgentDefinition(_Contract):
    """An agent that can be bound to workflow steps."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow"
    )

    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    model: Optional[str] = None
    reasoning_effort: Optional[ReasoningEffort] = Field(
        default=None, validation_alias=_REASONING_ALIASES
    )
    prompt_path: str
    engine: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.id


class LoopBehavior(_Contract):
    """Rewind the workflow cursor when a step's output matches ``trigger``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    action: Literal["stepBack"] = "stepBack"
    steps: PositiveInt
    trigger: str
    regex: bool = False
    max_iterations: Optional[PositiveInt] = None
    skip: List[str] = Field(default_factory=list)

    def matches(self, output: str) -> bool:
        if not output:
            return False
        if self.regex:
            return re.search(self.trigger, output, re.MULTILINE) is not None
        return self.trigger in output


class ModuleMetadata(_Contract):
    """A named group of steps, optionally carrying a loop behavior."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    behavior: Optional[LoopBehavior] = None


class WorkflowStep(_Contract):
    """Defines one step in a workflow."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        coerce_numbers_to_str=True,
    )

    type: str = "module"
    agent_id: str
    agent_name: str
    prompt_path: str
    model: Optional[str] = None
    reasoning_effort: Optional[ReasoningEffort] = Field(
        default=None, validation_alias=_REASONING_ALIASES
    )
    engine: Optional[str] = None
    module: Optional[ModuleMetadata] = None
    execute_once: bool = False
    not_completed_fallback: Optional[str] = None
    loops: List[LoopBehavior] = Field(default_factory=list)
    task_id: Optional[str] = None

    def loop_behaviors(self) -> List[LoopBehavior]:
        """Step-level loops in declaration order, then the module's behavior."""
        behaviors = list(self.loops)
        if self.module is not None and self.module.behavior is not None:
            behaviors.append(self.module.behavior)
        return behaviors


class WorkflowTemplate(_Contract):
    """Ordered sequence of workflow steps."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    name: str
    steps: List[WorkflowStep] = Field(default_factory=list)

    def index_of_task(self, task_id: str) -> Optional[int]:
        """Return the first step index bound to ``task_id``."""
        for index, step in enumerate(self.steps):
            if step.task_id == task_id:
                return index
        return None


class Instance(BaseModel):
    """One spawned engine invocation."""

    id: str
    agent_id: str
    state: InstanceState = "running"
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: Optional[datetime] = None
    exit_signal: Optional[str] = None
    command: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


class Subtask(_Contract):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        coerce_numbers_to_str=True,
    )

    id: str
    name: str = ""
    details: str = ""
    done: Optional[bool] = None


class Task(_Contract):
    """A planned unit of work tracked by the task ledger."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        coerce_numbers_to_str=True,
    )

    id: str
    name: str = ""
    details: str = ""
    acceptance_criteria: str | List[str] = ""
    phase: Optional[str] = None
    done: bool = False
    subtasks: List[Subtask] = Field(default_factory=list)

    def criteria_lines(self) -> List[str]:
        if isinstance(self.acceptance_criteria, list):
            return [str(item) for item in self.acceptance_criteria]
        return [line for line in self.acceptance_criteria.splitlines() if line.strip()]
