"""Anthropic Claude CLI engine."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .auth import EngineAuth, FileCredentialAuth
from .base import Engine, EngineMetadata, Invocation, RunOptions, as_dict, dicts, preview
from .telemetry import TokenUsage

logger = logging.getLogger(__name__)

# Claude has no reasoning-effort flag; effort maps to a thinking budget.
THINKING_TOKENS = {"low": 4000, "medium": 10000, "high": 31999}

CREDENTIAL_FILES = [".credentials.json", ".claude.json", ".claude.json.backup"]


class ClaudeEngine(Engine):
    METADATA = EngineMetadata(
        id="claude",
        name="Claude",
        description="Authenticate with Claude",
        cli_binary="claude",
        install_command="npm install -g @anthropic-ai/claude-code",
        default_model="sonnet",
        order=2,
        home_env="CLAUDE_CONFIG_DIR",
        login_args=["setup-token"],
    )

    def create_auth(self) -> EngineAuth:
        return FileCredentialAuth(
            self.metadata,
            self.config,
            CREDENTIAL_FILES,
            self.metadata.login_args,
            incomplete_hint=(
                "Authentication incomplete. Please set CLAUDE_CODE_OAUTH_TOKEN "
                "environment variable."
            ),
        )

    def build_invocation(
        self, options: RunOptions, model: Optional[str], effort: Optional[str]
    ) -> Invocation:
        args = [
            "--print",
            "--output-format",
            "stream-json",
            "--verbose",
            "--dangerously-skip-permissions",
        ]
        if model:
            args.extend(["--model", model])

        env = self.base_env(options)
        if effort in THINKING_TOKENS:
            env["MAX_THINKING_TOKENS"] = str(THINKING_TOKENS[effort])
        token = self.config.oauth_tokens.get(self.metadata.id)
        if token:
            env["CLAUDE_CODE_OAUTH_TOKEN"] = token
        return Invocation(self.metadata.command, args, env, stdin_input=options.prompt)

    def format_event(self, event: Dict[str, Any]) -> List[str]:
        kind = event.get("type")
        lines: List[str] = []

        if kind == "assistant":
            for block in dicts(as_dict(event.get("message")).get("content")):
                block_type = block.get("type")
                if block_type == "thinking":
                    lines.append(f"🧠 THINKING: {block.get('thinking', '')}")
                elif block_type == "text":
                    lines.append(f"💬 MESSAGE: {block.get('text', '')}")
                elif block_type == "tool_use":
                    lines.append(f"🔧 COMMAND: {block.get('name', '')}")
            return lines

        if kind == "user":
            for block in dicts(as_dict(event.get("message")).get("content")):
                if block.get("type") != "tool_result":
                    continue
                if block.get("is_error"):
                    lines.append(f"❌ COMMAND FAILED: {preview(block.get('content'))}")
                else:
                    lines.append(f"✅ COMMAND RESULT: {preview(block.get('content'))}")
            return lines

        if kind == "result":
            usage = self.extract_usage(event)
            if usage:
                lines.append(f"⏱️  {usage.describe()}")
            return lines

        return lines

    def extract_usage(self, event: Dict[str, Any]) -> Optional[TokenUsage]:
        usage = as_dict(event.get("usage"))
        if event.get("type") != "result" or not usage:
            return None
        return TokenUsage(
            input_tokens=usage.get("input_tokens") or 0,
            cached_input_tokens=usage.get("cache_read_input_tokens") or 0,
            output_tokens=usage.get("output_tokens") or 0,
        )
