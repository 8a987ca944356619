"""Engine abstraction over external coding-agent command line tools."""

from __future__ import annotations

import abc
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from ..config import WeaveConfig
from ..contracts import AgentDefinition, ReasoningEffort
from ..errors import BinaryNotInstalled, MalformedStreamEvent, ProcessNonZeroExit
from ..memory import MemoryStore
from ..process import CancelToken, EventChannel, OutputCallback, ProcessEvent, ProcessRunner
from ..process.runner import _deliver
from .auth import EngineAuth
from .telemetry import TelemetryCapture, TelemetryLog, TokenUsage

logger = logging.getLogger(__name__)


class EngineMetadata(BaseModel):
    """Static identity of an engine."""

    id: str
    name: str
    description: str = ""
    cli_binary: str
    cli_command: Optional[str] = None
    install_command: str
    default_model: Optional[str] = None
    default_reasoning_effort: Optional[ReasoningEffort] = None
    order: int = 50
    streams: bool = True
    home_env: Optional[str] = None
    login_args: List[str] = Field(default_factory=list)

    @property
    def command(self) -> str:
        """Executable actually spawned for runs."""
        return self.cli_command or self.cli_binary


@dataclass
class RunOptions:
    """Everything an engine needs for one invocation."""

    prompt: str
    working_dir: Path
    agent_id: str = "agent"
    model: Optional[str] = None
    reasoning_effort: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    on_data: Optional[OutputCallback] = None
    on_error_data: Optional[OutputCallback] = None
    cancel_token: Optional[CancelToken] = None
    timeout_ms: Optional[int] = None
    memory: Optional[MemoryStore] = None
    channel: Optional[EventChannel] = None


@dataclass
class Invocation:
    command: str
    args: List[str]
    env: Dict[str, str]
    stdin_input: Optional[str] = None

    def display(self, limit: int = 120) -> str:
        parts = [self.command] + [f'"{a}"' if " " in a else a for a in self.args]
        text = " ".join(parts)
        return text if len(text) <= limit else text[:limit] + "..."


def as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def dicts(value: Any) -> List[Dict[str, Any]]:
    """Keep the object entries of a JSON array; anything else yields nothing."""
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, dict)]


class EngineResult(BaseModel):
    """Decoded transcript of a successful run."""

    stdout: str
    stderr: str = ""
    exit_code: int = 0
    instance_id: Optional[str] = None
    usage: TokenUsage = Field(default_factory=TokenUsage)
    memory_path: Optional[str] = None


def preview(text: Any, limit: int = 100) -> str:
    text = str(text or "").strip().replace("\n", " ")
    return text if len(text) <= limit else text[:limit] + "..."


class Engine(abc.ABC):
    """Base class for engine modules.

    Subclasses describe a provider: its ``METADATA``, its credential handling
    (``create_auth``), how to invoke it (``build_invocation``) and how to read
    its streaming protocol (``format_event`` and ``extract_usage``). ``run``
    ties these to the process runner.
    """

    METADATA: EngineMetadata

    def __init__(
        self,
        config: WeaveConfig,
        runner: Optional[ProcessRunner] = None,
        telemetry: Optional[TelemetryLog] = None,
        metadata: Optional[EngineMetadata] = None,
    ) -> None:
        self.config = config
        self.runner = runner or ProcessRunner(
            grace_period_s=config.grace_period_s, plain=config.plain_logs
        )
        self.telemetry = telemetry or TelemetryLog()
        self.metadata = metadata or self.METADATA
        self.auth: EngineAuth = self.create_auth()

    @property
    def id(self) -> str:
        return self.metadata.id

    @property
    def home(self) -> Path:
        return self.config.engine_home(self.metadata.id)

    # ------------------------------------------------------------------
    # Provider hooks
    @abc.abstractmethod
    def create_auth(self) -> EngineAuth:
        raise NotImplementedError

    @abc.abstractmethod
    def build_invocation(
        self, options: RunOptions, model: Optional[str], effort: Optional[str]
    ) -> Invocation:
        raise NotImplementedError

    @abc.abstractmethod
    def format_event(self, event: Dict[str, Any]) -> List[str]:
        """Turn one protocol event into zero or more progress lines."""
        raise NotImplementedError

    def extract_usage(self, event: Dict[str, Any]) -> Optional[TokenUsage]:
        return None

    def parse_line(self, line: str) -> Optional[Dict[str, Any]]:
        """Decode one stdout line into a protocol event.

        Returns ``None`` for lines that carry nothing.

        Raises:
            MalformedStreamEvent: If the line is not a JSON object.
        """
        line = line.strip()
        if not line:
            return None
        try:
            event = json.loads(line)
        except json.JSONDecodeError as e:
            raise MalformedStreamEvent(f"Undecodable line from {self.id}: {line[:80]}") from e
        if not isinstance(event, dict):
            raise MalformedStreamEvent(f"Unexpected event from {self.id}: {line[:80]}")
        return event

    def resolve_model(self, requested: Optional[str]) -> Optional[str]:
        return requested or self.metadata.default_model

    def base_env(self, options: RunOptions) -> Dict[str, str]:
        env = {**self.config.env, **options.env}
        if self.metadata.home_env:
            env[self.metadata.home_env] = str(self.home)
        return env

    async def sync_config(self, agents: Sequence[AgentDefinition]) -> None:
        """Bring provider-side configuration in line with the agent catalog."""
        return None

    # ------------------------------------------------------------------
    async def run(self, options: RunOptions) -> EngineResult:
        """Run the provider CLI and return its decoded transcript.

        Raises:
            ValueError: If the prompt or working directory is missing.
            BinaryNotInstalled: If the provider CLI is not installed.
            ProcessNonZeroExit: If the CLI failed.
            ProcessTimeout: If the CLI outlived its timeout.
            ProcessCancelled: If the run was cancelled.
        """
        if not options.prompt:
            raise ValueError(f"{self.metadata.name} run requires a prompt.")
        if not options.working_dir:
            raise ValueError(f"{self.metadata.name} run requires a working directory.")

        model = self.resolve_model(options.model)
        effort = options.reasoning_effort or self.metadata.default_reasoning_effort
        invocation = self.build_invocation(options, model, effort)
        logger.debug(
            f"{self.metadata.name} runner - prompt length: {len(options.prompt)}, "
            f"lines: {len(options.prompt.splitlines())}"
        )
        logger.debug(f"{self.metadata.name} runner - CLI: {invocation.display()}")

        capture = TelemetryCapture(self.id, model, options.prompt, str(options.working_dir))
        decoded: List[str] = []
        instance_ref: Dict[str, Optional[str]] = {"id": None}
        channel = options.channel

        async def publish(kind: str, data: str = "", exit_code: Optional[int] = None) -> None:
            if channel is not None:
                await channel.publish(
                    ProcessEvent(
                        kind=kind, instance_id=instance_ref["id"], data=data, exit_code=exit_code
                    )
                )

        async def on_stdout(chunk: str) -> None:
            for line in chunk.splitlines():
                try:
                    event = self.parse_line(line)
                    if event is None:
                        continue
                    usage = self.extract_usage(event)
                    texts = self.format_event(event)
                except MalformedStreamEvent as e:
                    logger.debug(str(e))
                    continue
                except (AttributeError, TypeError, KeyError, ValueError) as e:
                    logger.debug(f"Dropping unexpected event from {self.id}: {type(e).__name__}: {e}")
                    continue
                if usage is not None:
                    capture.add_usage(usage)
                for text in texts:
                    decoded.append(text)
                    await _deliver(options.on_data, text + "\n")
                    await publish("stdout", text + "\n")

        async def on_stderr(chunk: str) -> None:
            await _deliver(options.on_error_data, chunk)
            await publish("stderr", chunk)

        async def on_spawn(instance_id: Optional[str]) -> None:
            instance_ref["id"] = instance_id
            await publish("started")

        try:
            result = await self.runner.run(
                invocation.command,
                invocation.args,
                cwd=options.working_dir,
                env=invocation.env,
                stdin_input=invocation.stdin_input,
                on_stdout=on_stdout,
                on_stderr=on_stderr,
                cancel_token=options.cancel_token,
                timeout_ms=options.timeout_ms or self.config.timeout_ms,
                agent_id=options.agent_id,
                on_spawn=on_spawn,
            )
        except BinaryNotInstalled as e:
            logger.error(
                f"{self.metadata.name} CLI not found when executing: {invocation.display()}"
            )
            raise BinaryNotInstalled(
                invocation.command, self.metadata.name, self.metadata.install_command
            ) from e

        await publish("exited", exit_code=result.exit_code)
        self.telemetry.record(capture.finish(result.exit_code))

        if result.exit_code != 0:
            diagnostics = result.diagnostics()
            logger.error(
                f"{self.metadata.name} CLI execution failed with code {result.exit_code}: "
                f"{diagnostics} ({invocation.display()})"
            )
            raise ProcessNonZeroExit(
                f"{self.metadata.name} CLI", result.exit_code, diagnostics
            )

        transcript = "\n".join(decoded)
        memory_path = None
        if options.memory is not None:
            memory_path = str(options.memory.write(options.agent_id, transcript, options.prompt))

        return EngineResult(
            stdout=transcript,
            stderr=result.stderr,
            exit_code=result.exit_code,
            instance_id=result.instance_id,
            usage=capture.usage,
            memory_path=memory_path,
        )
