"""OpenAI Codex CLI engine."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from ..contracts import AgentDefinition
from ..utils.atomic import atomic_write_text
from .auth import EngineAuth, FileCredentialAuth
from .base import Engine, EngineMetadata, Invocation, RunOptions, as_dict, preview
from .telemetry import TokenUsage

logger = logging.getLogger(__name__)

PROFILES_BEGIN = "# >>> codeweave profiles >>>"
PROFILES_END = "# <<< codeweave profiles <<<"


def _toml_string(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def render_profiles(agents: Sequence[AgentDefinition], default_model: Optional[str]) -> str:
    """Render one ``[profiles."<agent>"]`` table per agent."""
    lines = [PROFILES_BEGIN]
    for agent in agents:
        if agent.engine not in (None, "codex"):
            continue
        lines.append(f"[profiles.{_toml_string(agent.id)}]")
        lines.append(f"model = {_toml_string(agent.model or default_model or '')}")
        if agent.reasoning_effort:
            lines.append(f"model_reasoning_effort = {_toml_string(agent.reasoning_effort)}")
        lines.append("")
    lines.append(PROFILES_END)
    return "\n".join(lines) + "\n"


def merge_profiles(existing: str, block: str) -> str:
    """Replace the managed block in ``existing``, keeping everything else."""
    pattern = re.compile(
        re.escape(PROFILES_BEGIN) + r".*?" + re.escape(PROFILES_END) + r"\n?", re.DOTALL
    )
    if pattern.search(existing):
        return pattern.sub(lambda _: block, existing, count=1)
    if existing and not existing.endswith("\n"):
        existing += "\n"
    separator = "\n" if existing else ""
    return existing + separator + block


class CodexEngine(Engine):
    METADATA = EngineMetadata(
        id="codex",
        name="Codex",
        description="Authenticate with Codex",
        cli_binary="codex",
        install_command="npm install -g @openai/codex",
        default_model="gpt-5-codex",
        default_reasoning_effort="medium",
        order=1,
        home_env="CODEX_HOME",
        login_args=["login"],
    )

    def create_auth(self) -> EngineAuth:
        return FileCredentialAuth(
            self.metadata, self.config, ["auth.json"], self.metadata.login_args
        )

    def build_invocation(
        self, options: RunOptions, model: Optional[str], effort: Optional[str]
    ) -> Invocation:
        args = [
            "exec",
            "--json",
            "--skip-git-repo-check",
            "--sandbox",
            "danger-full-access",
            "--dangerously-bypass-approvals-and-sandbox",
            "-C",
            str(options.working_dir),
        ]
        if model:
            args.extend(["--model", model])
        if effort:
            args.extend(["-c", f'model_reasoning_effort="{effort}"'])
        args.append(options.prompt)
        return Invocation(self.metadata.command, args, self.base_env(options))

    def format_event(self, event: Dict[str, Any]) -> List[str]:
        kind = event.get("type")
        item = as_dict(event.get("item"))
        item_type = item.get("type")

        if kind == "item.started" and item_type == "command_execution":
            return [f"🔧 COMMAND: {item.get('command', '')}"]

        if kind == "item.completed":
            if item_type == "reasoning":
                return [f"🧠 THINKING: {item.get('text', '')}"]
            if item_type == "command_execution":
                exit_code = item.get("exit_code")
                if exit_code in (0, None):
                    return [f"✅ COMMAND RESULT: {preview(item.get('aggregated_output'))}"]
                return [f"❌ COMMAND FAILED: Exit code {exit_code}"]
            if item_type == "agent_message":
                return [f"💬 MESSAGE: {item.get('text', '')}"]

        if kind == "turn.completed":
            usage = self.extract_usage(event)
            return [f"⏱️  {usage.describe()}"] if usage else []

        if kind == "error":
            return [f"❌ ERROR: {event.get('message', '')}"]
        if kind == "turn.failed":
            error = event.get("error")
            message = error.get("message", "") if isinstance(error, dict) else error
            return [f"❌ ERROR: {message or ''}"]

        return []

    def extract_usage(self, event: Dict[str, Any]) -> Optional[TokenUsage]:
        usage = as_dict(event.get("usage"))
        if event.get("type") != "turn.completed" or not usage:
            return None
        return TokenUsage(
            input_tokens=usage.get("input_tokens") or 0,
            cached_input_tokens=usage.get("cached_input_tokens") or 0,
            output_tokens=usage.get("output_tokens") or 0,
        )

    async def sync_config(self, agents: Sequence[AgentDefinition]) -> None:
        path = self.home / "config.toml"
        block = render_profiles(agents, self.metadata.default_model)

        def write() -> None:
            existing = path.read_text(encoding="utf-8") if path.exists() else ""
            merged = merge_profiles(existing, block)
            if merged != existing:
                atomic_write_text(path, merged)
                logger.info(f"Updated Codex profiles in {path}")

        await asyncio.to_thread(write)
