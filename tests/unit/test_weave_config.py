"""Tests for configuration loading."""

from pathlib import Path

from codeweave.config import load_config


def test_load_config_from_file_and_env(tmp_path):
    config_path = tmp_path / "codeweave.yaml"
    config_path.write_text(
        """
timeout_ms: 60000
default_max_iterations: 4
engines:
  claude:
    enabled: false
  local:
    api_uri: http://gpu-box:1234
"""
    )
    environ = {
        "CODEWEAVE_CONFIG": str(config_path),
        "CODEWEAVE_CWD": str(tmp_path),
        "CODEWEAVE_SKIP_AUTH": "1",
        "CODEX_HOME": str(tmp_path / "codex-home"),
        "CLAUDE_CODE_OAUTH_TOKEN": "token-123",
    }

    config = load_config(environ=environ)

    assert config.timeout_ms == 60000
    assert config.default_max_iterations == 4
    assert config.engines["claude"].enabled is False
    assert config.engines["local"].api_uri == "http://gpu-box:1234"
    assert config.skip_auth is True
    assert config.plain_logs is False
    assert config.workspace_dir == tmp_path
    assert config.engine_home("codex") == tmp_path / "codex-home"
    assert config.oauth_tokens == {"claude": "token-123"}
    assert config.env == environ


def test_defaults_without_file(tmp_path):
    config = load_config(environ={"CODEWEAVE_CWD": str(tmp_path)})

    assert config.state_dir == tmp_path / ".codeweave"
    assert config.ledger_path == tmp_path / ".codeweave" / "plan" / "tasks.json"
    assert config.engine_home("local") == Path.home() / ".codeweave" / "local"
    assert config.database_url is None


def test_explicit_path_and_database_override(tmp_path):
    config_path = tmp_path / "custom.yaml"
    config_path.write_text("database_url: sqlite://runs.db\nplain_logs: false\n")

    config = load_config(
        str(config_path),
        environ={
            "CODEWEAVE_CWD": str(tmp_path),
            "CODEWEAVE_DATABASE_URL": "sqlite://other.db",
            "CODEWEAVE_PLAIN_LOGS": "true",
        },
    )

    assert config.database_url == "sqlite://other.db"
    assert config.plain_logs is True


def test_engine_override_home_wins(tmp_path):
    config_path = tmp_path / "codeweave.yaml"
    config_path.write_text(f"engines:\n  codex:\n    home: {tmp_path / 'override'}\n")

    config = load_config(
        str(config_path),
        environ={"CODEWEAVE_CWD": str(tmp_path), "CODEX_HOME": str(tmp_path / "env")},
    )

    assert config.engine_home("codex") == tmp_path / "override"
