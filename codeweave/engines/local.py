"""Local OpenAI-compatible model server, reached through curl."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from ..config import EngineOverride
from .auth import EngineAuth, FileCredentialAuth
from .base import Engine, EngineMetadata, Invocation, RunOptions, as_dict, dicts, preview
from .telemetry import TokenUsage

logger = logging.getLogger(__name__)

DEFAULT_API_URI = "http://localhost:1234"
API_PATH = "/v1/responses"
API_KEY = "lm-studio"

LOCAL_MODELS = (
    "auto",
    "qwen3-coder-30b-a3b-instruct",
    "unsloth/glm-4.5-air",
    "openai/gpt-oss-120b",
)

# Model names used in agent catalogs written for hosted engines.
MODEL_MAPPING = {
    "gpt-5-codex": "qwen3-coder-30b-a3b-instruct",
    "gpt-4": "qwen3-coder-30b-a3b-instruct",
    "gpt-4-turbo": "qwen3-coder-30b-a3b-instruct",
    "gpt-3.5-turbo": "qwen3-coder-30b-a3b-instruct",
    "o1-preview": "qwen3-coder-30b-a3b-instruct",
    "o1-mini": "qwen3-coder-30b-a3b-instruct",
    "sonnet": "qwen3-coder-30b-a3b-instruct",
    "claude-sonnet-4.5": "qwen3-coder-30b-a3b-instruct",
    "opus": "qwen3-coder-30b-a3b-instruct",
}

_TOOL_ITEMS = ("mcp_call", "mcp_approval_request", "custom_tool_call", "function_call")


def _first_text(content: Any) -> str:
    for part in content or []:
        if isinstance(part, dict) and part.get("text"):
            return part["text"]
    return ""


class LocalEngine(Engine):
    METADATA = EngineMetadata(
        id="local",
        name="Local",
        description="Local AI models via local server (OpenAI compatible)",
        cli_binary="lms",
        cli_command="curl",
        install_command="Install LM Studio from https://lmstudio.ai/",
        default_model="qwen3-coder-30b-a3b-instruct",
        order=100,
        streams=False,
        home_env="LOCAL_HOME",
        login_args=["status"],
    )

    def create_auth(self) -> EngineAuth:
        return FileCredentialAuth(
            self.metadata,
            self.config,
            ["auth.json"],
            self.metadata.login_args,
            placeholder_after_login=True,
        )

    @property
    def api_uri(self) -> str:
        override = self.config.engines.get(self.metadata.id) or EngineOverride()
        return (override.api_uri or DEFAULT_API_URI).rstrip("/")

    def resolve_model(self, requested: Optional[str]) -> Optional[str]:
        if requested in MODEL_MAPPING:
            return MODEL_MAPPING[requested]
        if requested in LOCAL_MODELS:
            return requested
        if requested:
            logger.debug(f"Unknown local model {requested}; using {self.metadata.default_model}")
        return self.metadata.default_model

    def build_invocation(
        self, options: RunOptions, model: Optional[str], effort: Optional[str]
    ) -> Invocation:
        args = [
            "-sS",
            "-X",
            "POST",
            "-L",
            f"{self.api_uri}{API_PATH}",
            "-H",
            "Content-Type: application/json",
            "-H",
            f"Authorization: Bearer {API_KEY}",
            "--data-binary",
            "@-",
        ]
        body: Dict[str, Any] = {
            "model": model,
            "input": options.prompt,
            "stream": self.metadata.streams,
        }
        if effort:
            body["reasoning"] = {"effort": effort}
        return Invocation(
            self.metadata.command, args, self.base_env(options), stdin_input=json.dumps(body)
        )

    def parse_line(self, line: str) -> Optional[Dict[str, Any]]:
        line = line.strip()
        if line.startswith("data:"):
            line = line[len("data:"):].strip()
        if not line or line == "[DONE]" or line.startswith("event:"):
            return None
        return super().parse_line(line)

    def _format_item(self, item: Dict[str, Any]) -> List[str]:
        item_type = item.get("type")
        if item_type == "reasoning":
            text = _first_text(item.get("content")) or _first_text(item.get("summary"))
            return [f"🧠 THINKING: {text}"]
        if item_type == "message":
            return [f"💬 MESSAGE: {_first_text(item.get('content'))}"]
        if item_type in _TOOL_ITEMS:
            error = item.get("error")
            if error:
                return [f"❌ COMMAND FAILED: {preview(error)}"]
            return [f"✅ COMMAND RESULT: {preview(item.get('name'))}"]
        return []

    def _format_response(self, response: Dict[str, Any]) -> List[str]:
        lines: List[str] = []
        if response.get("status") == "completed":
            for item in dicts(response.get("output")):
                lines.extend(self._format_item(item))
        usage = self.extract_usage(response)
        if usage:
            lines.append(f"⏱️  {usage.describe()}")
        return lines

    def format_event(self, event: Dict[str, Any]) -> List[str]:
        kind = event.get("type")
        if kind == "response.output_item.added":
            item = as_dict(event.get("item"))
            if item.get("type") in _TOOL_ITEMS:
                return [f"🔧 COMMAND: {item.get('name', '')}"]
            return []
        if kind == "response.output_item.done":
            return self._format_item(as_dict(event.get("item")))
        if kind == "response.completed":
            usage = self.extract_usage(as_dict(event.get("response")))
            return [f"⏱️  {usage.describe()}"] if usage else []
        if kind == "error" or (event.get("error") and "output" not in event):
            error = event.get("error") or event
            message = error.get("message") if isinstance(error, dict) else error
            return [f"❌ ERROR: {preview(message)}"]
        if event.get("object") == "response":
            return self._format_response(event)
        return []

    def extract_usage(self, event: Dict[str, Any]) -> Optional[TokenUsage]:
        if event.get("type") == "response.completed":
            event = as_dict(event.get("response"))
        usage = as_dict(event.get("usage"))
        if event.get("object") != "response" or not usage:
            return None
        details = as_dict(usage.get("input_tokens_details"))
        cached = usage.get("cached_input_tokens") or details.get("cached_tokens") or 0
        return TokenUsage(
            input_tokens=max(0, (usage.get("input_tokens") or 0) - cached),
            cached_input_tokens=cached,
            output_tokens=usage.get("output_tokens") or 0,
        )
