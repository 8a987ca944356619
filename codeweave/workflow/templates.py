"""Tracking of the active workflow template and its generated agent prompts."""

from __future__ import annotations

import hashlib
import json
import logging
import shutil
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel

from ..config import WeaveConfig
from ..contracts import AgentDefinition, WorkflowTemplate
from ..utils.atomic import atomic_write_json, atomic_write_text
from .loader import load_template

logger = logging.getLogger(__name__)

TRACKING_FILE = "template.json"


class TemplateState(BaseModel):
    template: str
    sha256: str


def file_digest(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


class TemplateTracker:
    """Remembers which template the workspace was prepared for.

    Switching templates (or editing the active one) invalidates the
    per-agent prompt artifacts under the state directory, which are then
    regenerated from scratch.
    """

    def __init__(self, config: WeaveConfig) -> None:
        self.config = config

    @property
    def tracking_path(self) -> Path:
        return self.config.state_dir / TRACKING_FILE

    def current(self) -> Optional[TemplateState]:
        try:
            data = json.loads(self.tracking_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except json.JSONDecodeError:
            logger.warning(f"Ignoring unreadable {self.tracking_path}")
            return None
        return TemplateState.model_validate(data)

    def has_changed(self, template_path: Path) -> bool:
        state = self.current()
        if state is None:
            return True
        return state.template != template_path.name or state.sha256 != file_digest(template_path)

    def activate(
        self, template_path: Path | str, catalog: Dict[str, AgentDefinition]
    ) -> WorkflowTemplate:
        """Load ``template_path``, regenerating agent artifacts if it changed."""
        template_path = self.config.resolve(str(template_path))
        template = load_template(template_path, catalog)
        if self.has_changed(template_path) or not self.config.agents_dir.exists():
            self.regenerate(template, catalog)
            atomic_write_json(
                self.tracking_path,
                TemplateState(
                    template=template_path.name, sha256=file_digest(template_path)
                ).model_dump(),
            )
            logger.info(f"Active template set to {template_path.name}")
        return template

    def regenerate(
        self, template: WorkflowTemplate, catalog: Dict[str, AgentDefinition]
    ) -> List[Path]:
        """Rebuild ``<state dir>/agents`` with one prompt file per agent used."""
        agents_dir = self.config.agents_dir
        if agents_dir.exists():
            shutil.rmtree(agents_dir)
        agents_dir.mkdir(parents=True)

        agent_ids: List[str] = []
        for step in template.steps:
            for agent_id in (step.agent_id, step.not_completed_fallback):
                if agent_id and agent_id not in agent_ids:
                    agent_ids.append(agent_id)

        written: List[Path] = []
        for agent_id in agent_ids:
            agent = catalog.get(agent_id)
            if agent is None:
                continue
            source = self.config.resolve(agent.prompt_path)
            if not source.is_file():
                logger.warning(f"Prompt for {agent_id} not found at {source}")
                continue
            target = agents_dir / f"{agent_id}.md"
            atomic_write_text(target, source.read_text(encoding="utf-8"))
            written.append(target)
        logger.info(f"Generated {len(written)} agent prompts in {agents_dir}")
        return written
