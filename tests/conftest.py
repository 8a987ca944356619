"""Shared fixtures: workspaces, agent catalogs and a scripted engine double."""

from __future__ import annotations

import os
import stat
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import pytest

from codeweave.config import WeaveConfig
from codeweave.contracts import AgentDefinition
from codeweave.engines.auth import EngineAuth
from codeweave.engines.base import Engine, EngineMetadata, EngineResult, Invocation, RunOptions
from codeweave.engines.registry import EngineRegistry


class StaticAuth(EngineAuth):
    def __init__(self) -> None:
        self.ensure_calls = 0

    async def is_authenticated(self) -> bool:
        return True

    async def ensure_auth(self) -> bool:
        self.ensure_calls += 1
        return True

    async def clear_auth(self) -> None:
        return None


class ScriptedEngine(Engine):
    """Engine double that answers each agent from a queue of canned outputs.

    ``failures`` maps an agent id to a queue of exceptions (``None`` entries
    mean "succeed this time"). ``after`` maps an agent id to a hook called
    once that agent's run has produced its output.
    """

    METADATA = EngineMetadata(
        id="fake",
        name="Fake",
        cli_binary="fake-agent",
        install_command="pip install fake-agent",
        order=0,
    )

    def __init__(
        self,
        config: WeaveConfig,
        outputs: Optional[Dict[str, Sequence[str]]] = None,
        failures: Optional[Dict[str, Sequence[Optional[BaseException]]]] = None,
        metadata: Optional[EngineMetadata] = None,
        after: Optional[Dict[str, Callable[[], None]]] = None,
    ) -> None:
        super().__init__(config, metadata=metadata)
        self.after = after or {}
        self.outputs = {agent: list(queue) for agent, queue in (outputs or {}).items()}
        self.failures = {agent: list(queue) for agent, queue in (failures or {}).items()}
        self.calls: List[RunOptions] = []
        self.synced: List[List[str]] = []

    def create_auth(self) -> EngineAuth:
        return StaticAuth()

    def build_invocation(self, options, model, effort) -> Invocation:
        return Invocation(self.metadata.command, [], {})

    def format_event(self, event):
        return []

    async def sync_config(self, agents) -> None:
        self.synced.append([agent.id for agent in agents])

    async def run(self, options: RunOptions) -> EngineResult:
        self.calls.append(options)
        errors = self.failures.get(options.agent_id)
        if errors:
            error = errors.pop(0)
            if error is not None:
                raise error
        queue = self.outputs.get(options.agent_id)
        output = queue.pop(0) if queue else f"{options.agent_id} finished"
        if options.agent_id in self.after:
            self.after[options.agent_id]()
        return EngineResult(stdout=output, instance_id=f"{options.agent_id}-{len(self.calls)}")

    @property
    def agent_sequence(self) -> List[str]:
        return [call.agent_id for call in self.calls]


@pytest.fixture
def config(tmp_path: Path) -> WeaveConfig:
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return WeaveConfig(
        workspace_dir=workspace,
        engine_homes={
            "codex": str(tmp_path / "homes" / "codex"),
            "claude": str(tmp_path / "homes" / "claude"),
            "local": str(tmp_path / "homes" / "local"),
        },
        grace_period_s=0.5,
        env=dict(os.environ),
    )


@pytest.fixture
def make_catalog(config: WeaveConfig):
    """Write a prompt file per agent id and return the matching catalog."""

    def factory(*agent_ids: str, engine: Optional[str] = "fake") -> Dict[str, AgentDefinition]:
        prompts = config.workspace_dir / "prompts"
        prompts.mkdir(exist_ok=True)
        catalog = {}
        for agent_id in agent_ids:
            (prompts / f"{agent_id}.md").write_text(f"You are the {agent_id} agent.\n")
            catalog[agent_id] = AgentDefinition(
                id=agent_id,
                name=agent_id.title(),
                prompt_path=f"prompts/{agent_id}.md",
                engine=engine,
            )
        return catalog

    return factory


@pytest.fixture
def scripted_engine(config: WeaveConfig):
    def factory(**kwargs) -> ScriptedEngine:
        return ScriptedEngine(config, **kwargs)

    return factory


@pytest.fixture
def registry_for():
    def factory(*engines: Engine) -> EngineRegistry:
        return EngineRegistry(engines)

    return factory


@pytest.fixture
def fake_cli(tmp_path: Path):
    """Create an executable Python script standing in for a provider CLI."""

    def factory(name: str, body: str) -> Path:
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir(exist_ok=True)
        path = bin_dir / name
        path.write_text(f"#!{sys.executable}\n{body}", encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return factory
