"""Engines: adapters around external coding-agent command line tools."""

from .auth import EngineAuth, FileCredentialAuth
from .base import Engine, EngineMetadata, EngineResult, Invocation, RunOptions
from .claude import ClaudeEngine
from .codex import CodexEngine
from .local import LocalEngine
from .registry import BUILTIN_ENGINES, EngineRegistry, build_registry
from .telemetry import TelemetryCapture, TelemetryLog, TelemetryRecord, TokenUsage

__all__ = [
    "BUILTIN_ENGINES",
    "ClaudeEngine",
    "CodexEngine",
    "Engine",
    "EngineAuth",
    "EngineMetadata",
    "EngineRegistry",
    "EngineResult",
    "FileCredentialAuth",
    "Invocation",
    "LocalEngine",
    "RunOptions",
    "TelemetryCapture",
    "TelemetryLog",
    "TelemetryRecord",
    "TokenUsage",
    "build_registry",
]
