"""Load and validate agent catalogs and workflow templates.

Both are plain data (YAML or JSON, JSON being a subset of YAML). Nothing in
them is executed.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from ..contracts import AgentDefinition, WorkflowTemplate
from ..errors import ConfigurationError

if TYPE_CHECKING:
    from ..engines.registry import EngineRegistry

logger = logging.getLogger(__name__)

# Step keys inherited from the agent definition when the template omits them.
_INHERITED = (
    ("agentName", "agent_name", "name"),
    ("promptPath", "prompt_path", "prompt_path"),
    ("model", "model", "model"),
    ("reasoningEffort", "reasoning_effort", "reasoning_effort"),
    ("engine", "engine", "engine"),
)
_EFFORT_KEYS = (
    "reasoningEffort",
    "reasoning_effort",
    "modelReasoningEffort",
    "model_reasoning_effort",
)


def _read_document(path: Path | str) -> Any:
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"File not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Could not parse {path}: {e}") from e


def load_agent_catalog(path: Path | str) -> Dict[str, AgentDefinition]:
    """Read the agent catalog at ``path`` into a mapping keyed by agent id.

    The document is either a list of agents or a mapping with an ``agents``
    list.
    """

    data = _read_document(path)
    if isinstance(data, dict):
        data = data.get("agents")
    if not isinstance(data, list):
        raise ConfigurationError(f"Agent catalog {path} must contain a list of agents")

    catalog: Dict[str, AgentDefinition] = {}
    problems: List[str] = []
    for position, raw in enumerate(data):
        try:
            agent = AgentDefinition.model_validate(raw)
        except ValidationError as e:
            problems.append(f"agent #{position}: {e}")
            continue
        if agent.id in catalog:
            problems.append(f"duplicate agent id '{agent.id}'")
            continue
        catalog[agent.id] = agent
    if problems:
        raise ConfigurationError(f"Invalid agent catalog {path}", problems)
    logger.debug(f"Loaded {len(catalog)} agents from {path}")
    return catalog


def _step_document(raw: Any, catalog: Dict[str, AgentDefinition]) -> Any:
    """Expand a raw step, filling missing fields from its agent definition."""
    if isinstance(raw, str):
        raw = {"agentId": raw}
    if not isinstance(raw, dict):
        return raw
    step = dict(raw)
    agent_id = step.get("agentId", step.get("agent_id"))
    agent = catalog.get(agent_id) if isinstance(agent_id, str) else None
    if agent is None:
        # Left for validate_template to report as an unknown agent.
        if isinstance(agent_id, str) and "agent_name" not in step:
            step.setdefault("agentName", agent_id)
        if "prompt_path" not in step:
            step.setdefault("promptPath", "")
        return step
    for camel, snake, attr in _INHERITED:
        if camel in step or snake in step:
            continue
        if camel == "reasoningEffort" and any(key in step for key in _EFFORT_KEYS):
            continue
        value = agent.display_name if attr == "name" else getattr(agent, attr)
        if value is not None:
            step[camel] = value
    return step


def parse_template(
    data: Any, catalog: Dict[str, AgentDefinition], default_name: str = "workflow"
) -> WorkflowTemplate:
    if isinstance(data, list):
        data = {"steps": data}
    if not isinstance(data, dict):
        raise ConfigurationError("Workflow template must be a mapping with a 'steps' list")
    document = dict(data)
    document.setdefault("name", default_name)
    document["steps"] = [_step_document(raw, catalog) for raw in document.get("steps") or []]
    try:
        return WorkflowTemplate.model_validate(document)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid workflow template '{document['name']}': {e}") from e


def load_template(path: Path | str, catalog: Dict[str, AgentDefinition]) -> WorkflowTemplate:
    """Read a workflow template; step fields default to the agent's values."""
    path = Path(path)
    return parse_template(_read_document(path), catalog, default_name=path.stem)


def validate_template(
    template: WorkflowTemplate,
    catalog: Dict[str, AgentDefinition],
    registry: Optional["EngineRegistry"] = None,
    workspace: Optional[Path] = None,
) -> None:
    """Check every reference in ``template`` before anything runs.

    Raises:
        ConfigurationError: Listing every unknown agent, engine, fallback or
            skip id and every missing prompt file.
    """

    problems: List[str] = []
    for index, step in enumerate(template.steps):
        label = f"step {index} ({step.agent_id})"
        agent = catalog.get(step.agent_id)
        if agent is None:
            problems.append(f"{label}: unknown agent '{step.agent_id}'")

        engine_id = step.engine or (agent.engine if agent else None)
        if registry is not None and engine_id and engine_id not in registry:
            problems.append(f"{label}: unknown engine '{engine_id}'")

        fallback = step.not_completed_fallback
        if fallback and fallback not in catalog:
            problems.append(f"{label}: unknown fallback agent '{fallback}'")

        for behavior in step.loop_behaviors():
            for skipped in behavior.skip:
                if skipped not in catalog:
                    problems.append(f"{label}: loop skips unknown agent '{skipped}'")

        if workspace is not None:
            prompt = Path(step.prompt_path).expanduser()
            if not prompt.is_absolute():
                prompt = workspace / prompt
            if not prompt.is_file():
                problems.append(f"{label}: prompt file not found: {step.prompt_path}")

    if registry is not None and len(registry) == 0:
        problems.append("no engines are enabled")

    if problems:
        raise ConfigurationError(f"Invalid workflow template '{template.name}'", problems)
