from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_AGENTS_FILE,
    DEFAULT_CONFIG_FILE,
    DEFAULT_GRACE_PERIOD_S,
    DEFAULT_LOOP_MAX_ITERATIONS,
    DEFAULT_RESUME_ATTEMPTS,
    DEFAULT_TEMPLATE_FILE,
    DEFAULT_TIMEOUT_MS,
    ENGINE_HOME_ENV,
    ENGINE_TOKEN_ENV,
    ENV_CONFIG,
    ENV_CWD,
    ENV_DATABASE_URL,
    ENV_PLAIN_LOGS,
    ENV_SKIP_AUTH,
    STATE_DIR_NAME,
)


class EngineOverride(BaseModel):
    """Per-engine settings that replace built-in metadata."""

    enabled: bool = True
    command: Optional[str] = None
    default_model: Optional[str] = None
    default_reasoning_effort: Optional[Literal["low", "medium", "high"]] = None
    order: Optional[int] = None
    home: Optional[str] = None
    api_uri: Optional[str] = None


class WeaveConfig(BaseModel):
    """Top-level configuration, built once per process and passed down."""

    workspace_dir: Path = Field(default_factory=Path.cwd)
    state_dir_name: str = STATE_DIR_NAME
    agents_file: str = DEFAULT_AGENTS_FILE
    template_file: str = DEFAULT_TEMPLATE_FILE
    ledger_file: Optional[str] = None

    skip_auth: bool = False
    plain_logs: bool = False
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    grace_period_s: float = DEFAULT_GRACE_PERIOD_S
    default_max_iterations: int = DEFAULT_LOOP_MAX_ITERATIONS
    max_resume_attempts: int = DEFAULT_RESUME_ATTEMPTS

    database_url: Optional[str] = None
    engines: Dict[str, EngineOverride] = Field(default_factory=dict)
    engine_homes: Dict[str, str] = Field(default_factory=dict)
    oauth_tokens: Dict[str, str] = Field(default_factory=dict)
    # Snapshot of the environment handed to child processes.
    env: Dict[str, str] = Field(default_factory=dict)

    @property
    def state_dir(self) -> Path:
        return self.workspace_dir / self.state_dir_name

    @property
    def memory_dir(self) -> Path:
        return self.state_dir / "memory"

    @property
    def agents_dir(self) -> Path:
        return self.state_dir / "agents"

    @property
    def ledger_path(self) -> Path:
        if self.ledger_file:
            return self.workspace_dir / self.ledger_file
        return self.state_dir / "plan" / "tasks.json"

    def resolve(self, relative: str) -> Path:
        path = Path(relative).expanduser()
        return path if path.is_absolute() else self.workspace_dir / path

    def engine_home(self, engine_id: str) -> Path:
        """Return the credential home directory for ``engine_id``."""
        override = self.engines.get(engine_id)
        raw = (override.home if override and override.home else None) or self.engine_homes.get(
            engine_id
        )
        if raw:
            return Path(raw).expanduser()
        return Path.home() / STATE_DIR_NAME / engine_id


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def load_config(
    path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
) -> WeaveConfig:
    """Load configuration from a YAML file and environment overrides.

    Args:
        path: Optional path to config file. Falls back to CODEWEAVE_CONFIG env
            variable or 'codeweave.yaml' in the workspace directory.
        environ: Environment mapping to read overrides from. Defaults to
            ``os.environ``; this is the only place the process environment is
            consulted.
    """

    env = dict(os.environ if environ is None else environ)
    workspace = Path(env.get(ENV_CWD) or os.getcwd()).expanduser()

    config_path = path or env.get(ENV_CONFIG) or str(workspace / DEFAULT_CONFIG_FILE)
    data: dict = {}
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

    data.setdefault("workspace_dir", workspace)
    config = WeaveConfig(**data)
    if not config.workspace_dir.is_absolute():
        config.workspace_dir = (workspace / config.workspace_dir).resolve()

    if _flag(env.get(ENV_SKIP_AUTH)):
        config.skip_auth = True
    if _flag(env.get(ENV_PLAIN_LOGS)):
        config.plain_logs = True

    env_db_url = env.get(ENV_DATABASE_URL)
    if env_db_url:
        config.database_url = env_db_url

    for engine_id, var in ENGINE_HOME_ENV.items():
        if env.get(var):
            config.engine_homes[engine_id] = env[var]
    for engine_id, var in ENGINE_TOKEN_ENV.items():
        if env.get(var):
            config.oauth_tokens[engine_id] = env[var]

    config.env = env
    return config
