"""Registry of available engines."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Type

from ..config import WeaveConfig
from ..contracts import AgentDefinition
from ..errors import ConfigurationError
from ..process import ProcessRunner
from .base import Engine
from .claude import ClaudeEngine
from .codex import CodexEngine
from .local import LocalEngine
from .telemetry import TelemetryLog

logger = logging.getLogger(__name__)

# Engines shipped with codeweave. Additional providers are registered
# explicitly on the registry; nothing is discovered from the filesystem.
BUILTIN_ENGINES: tuple[Type[Engine], ...] = (CodexEngine, ClaudeEngine, LocalEngine)


class EngineRegistry:
    """Engines keyed by id, ordered by their metadata ``order``."""

    def __init__(self, engines: Iterable[Engine] = ()) -> None:
        self._engines: Dict[str, Engine] = {}
        for engine in engines:
            self.register(engine)

    def register(self, engine: Engine) -> None:
        if engine.id in self._engines:
            raise ValueError(f"Engine {engine.id} already registered")
        self._engines[engine.id] = engine
        logger.debug(f"Registered engine {engine.id} ({engine.metadata.name})")

    def get(self, engine_id: str) -> Optional[Engine]:
        return self._engines.get(engine_id)

    def require(self, engine_id: str) -> Engine:
        engine = self._engines.get(engine_id)
        if engine is None:
            known = ", ".join(self.ids()) or "none"
            raise ConfigurationError(f"Unknown engine '{engine_id}' (available: {known})")
        return engine

    def __contains__(self, engine_id: object) -> bool:
        return engine_id in self._engines

    def __len__(self) -> int:
        return len(self._engines)

    def ids(self) -> List[str]:
        return [engine.id for engine in self.all()]

    def all(self) -> List[Engine]:
        return sorted(self._engines.values(), key=lambda e: (e.metadata.order, e.id))

    def default(self) -> Engine:
        engines = self.all()
        if not engines:
            raise ConfigurationError("No engines are enabled")
        return engines[0]

    async def sync_config(self, agents: Sequence[AgentDefinition]) -> None:
        """Let every engine refresh its provider configuration before a run."""
        await asyncio.gather(*(engine.sync_config(agents) for engine in self.all()))


def build_registry(
    config: WeaveConfig,
    runner: Optional[ProcessRunner] = None,
    telemetry: Optional[TelemetryLog] = None,
    engine_types: Sequence[Type[Engine]] = BUILTIN_ENGINES,
) -> EngineRegistry:
    """Instantiate ``engine_types`` with the overrides from ``config.engines``."""

    telemetry = telemetry or TelemetryLog()
    registry = EngineRegistry()
    for engine_type in engine_types:
        metadata = engine_type.METADATA
        override = config.engines.get(metadata.id)
        if override is not None:
            if not override.enabled:
                logger.info(f"Engine {metadata.id} disabled by configuration")
                continue
            updates = {
                "cli_command": override.command,
                "default_model": override.default_model,
                "default_reasoning_effort": override.default_reasoning_effort,
                "order": override.order,
            }
            metadata = metadata.model_copy(
                update={k: v for k, v in updates.items() if v is not None}
            )
        registry.register(engine_type(config, runner=runner, telemetry=telemetry, metadata=metadata))
    return registry
