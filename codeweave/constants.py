"""Shared defaults for codeweave."""

DEFAULT_TIMEOUT_MS = 1_800_000
DEFAULT_GRACE_PERIOD_S = 5.0
DEFAULT_LOOP_MAX_ITERATIONS = 10
DEFAULT_RESUME_ATTEMPTS = 3
DIAGNOSTIC_LINE_LIMIT = 10

STATE_DIR_NAME = ".codeweave"
DEFAULT_CONFIG_FILE = "codeweave.yaml"
DEFAULT_AGENTS_FILE = "agents.yaml"
DEFAULT_TEMPLATE_FILE = "workflow.yaml"

ENV_CONFIG = "CODEWEAVE_CONFIG"
ENV_SKIP_AUTH = "CODEWEAVE_SKIP_AUTH"
ENV_PLAIN_LOGS = "CODEWEAVE_PLAIN_LOGS"
ENV_CWD = "CODEWEAVE_CWD"
ENV_DATABASE_URL = "CODEWEAVE_DATABASE_URL"

# Provider home directories and token overrides, keyed by engine id.
ENGINE_HOME_ENV = {
    "codex": "CODEX_HOME",
    "claude": "CLAUDE_CONFIG_DIR",
    "local": "LOCAL_HOME",
}
ENGINE_TOKEN_ENV = {
    "claude": "CLAUDE_CODE_OAUTH_TOKEN",
}
