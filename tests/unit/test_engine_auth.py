import pytest

from codeweave.engines import ClaudeEngine, CodexEngine, LocalEngine
from codeweave.engines.auth import PLACEHOLDER_CREDENTIAL
from codeweave.errors import AuthenticationIncomplete, AuthenticationMissing, BinaryNotInstalled


@pytest.fixture
def use_path(config, monkeypatch):
    """Point both this process and spawned logins at a single bin directory."""

    def apply(directory):
        monkeypatch.setenv("PATH", str(directory))
        config.env["PATH"] = str(directory)

    return apply


@pytest.fixture
def empty_path(tmp_path, use_path):
    empty = tmp_path / "empty-bin"
    empty.mkdir()
    use_path(empty)
    return empty


@pytest.mark.asyncio
async def test_oauth_token_counts_as_authenticated(config):
    config.oauth_tokens["claude"] = "token"
    assert await ClaudeEngine(config).auth.is_authenticated()


@pytest.mark.asyncio
async def test_credential_file_counts_as_authenticated(config):
    engine = CodexEngine(config)
    assert not await engine.auth.is_authenticated()
    engine.home.mkdir(parents=True)
    (engine.home / "auth.json").write_text("{}")
    assert await engine.auth.is_authenticated()
    assert await engine.auth.ensure_auth()


@pytest.mark.asyncio
async def test_skip_auth_writes_placeholder(config, empty_path):
    config.skip_auth = True
    engine = CodexEngine(config)
    assert await engine.auth.ensure_auth()
    assert (engine.home / "auth.json").read_text() == PLACEHOLDER_CREDENTIAL


@pytest.mark.asyncio
async def test_missing_cli_names_install_command(config, empty_path):
    with pytest.raises(BinaryNotInstalled) as exc:
        await CodexEngine(config).auth.ensure_auth()
    assert "npm install -g @openai/codex" in str(exc.value)


@pytest.mark.asyncio
async def test_login_failure(config, fake_cli, use_path):
    script = fake_cli("codex", "import sys\nsys.exit(3)\n")
    use_path(script.parent)
    with pytest.raises(AuthenticationMissing):
        await CodexEngine(config).auth.ensure_auth()


@pytest.mark.asyncio
async def test_login_writes_credentials_into_engine_home(config, fake_cli, use_path):
    script = fake_cli(
        "codex",
        "import os, pathlib, sys\n"
        "assert sys.argv[1:] == ['login']\n"
        "home = pathlib.Path(os.environ['CODEX_HOME'])\n"
        "(home / 'auth.json').write_text('{\"token\": 1}')\n",
    )
    use_path(script.parent)
    engine = CodexEngine(config)
    assert await engine.auth.ensure_auth()
    assert (engine.home / "auth.json").exists()


@pytest.mark.asyncio
async def test_login_without_credential_is_incomplete(config, fake_cli, use_path):
    script = fake_cli("claude", "pass\n")
    use_path(script.parent)
    with pytest.raises(AuthenticationIncomplete) as exc:
        await ClaudeEngine(config).auth.ensure_auth()
    assert "CLAUDE_CODE_OAUTH_TOKEN" in str(exc.value)


@pytest.mark.asyncio
async def test_local_login_leaves_placeholder(config, fake_cli, use_path):
    script = fake_cli("lms", "pass\n")
    use_path(script.parent)
    engine = LocalEngine(config)
    assert await engine.auth.ensure_auth()
    assert (engine.home / "auth.json").exists()


@pytest.mark.asyncio
async def test_clear_auth_removes_all_credential_files(config):
    engine = ClaudeEngine(config)
    engine.home.mkdir(parents=True)
    for name in (".credentials.json", ".claude.json", ".claude.json.backup"):
        (engine.home / name).write_text("{}")

    await engine.auth.clear_auth()
    await engine.auth.clear_auth()

    assert list(engine.home.iterdir()) == []
    assert not await engine.auth.is_authenticated()
