"""Credential lifecycle for engine command line tools."""

from __future__ import annotations

import abc
import asyncio
import contextlib
import logging
import shutil
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Sequence

from ..errors import AuthenticationIncomplete, AuthenticationMissing, BinaryNotInstalled

if TYPE_CHECKING:
    from ..config import WeaveConfig
    from .base import EngineMetadata

logger = logging.getLogger(__name__)

PLACEHOLDER_CREDENTIAL = "{}"


class EngineAuth(abc.ABC):
    """Abstract credential lifecycle of one provider."""

    @abc.abstractmethod
    async def is_authenticated(self) -> bool:
        """Return ``True`` when usable credentials exist. Has no side effects."""
        raise NotImplementedError

    @abc.abstractmethod
    async def ensure_auth(self) -> bool:
        """Authenticate if needed.

        Raises:
            BinaryNotInstalled: If the provider CLI is missing.
            AuthenticationMissing: If login failed.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def clear_auth(self) -> None:
        """Remove stored credentials. Never raises."""
        raise NotImplementedError


class FileCredentialAuth(EngineAuth):
    """Credentials stored as files under a per-provider home directory.

    The first entry of ``credential_files`` is the file whose presence means
    "authenticated"; the others are removed on logout as well.
    """

    def __init__(
        self,
        metadata: "EngineMetadata",
        config: "WeaveConfig",
        credential_files: Sequence[str],
        login_args: Sequence[str],
        placeholder_after_login: bool = False,
        incomplete_hint: Optional[str] = None,
    ) -> None:
        self.metadata = metadata
        self.config = config
        self.credential_files = list(credential_files)
        self.login_args = list(login_args)
        self.placeholder_after_login = placeholder_after_login
        self.incomplete_hint = incomplete_hint

    @property
    def home(self) -> Path:
        return self.config.engine_home(self.metadata.id)

    @property
    def credential_path(self) -> Path:
        return self.home / self.credential_files[0]

    def auth_paths(self) -> List[Path]:
        return [self.home / name for name in self.credential_files]

    def oauth_token(self) -> Optional[str]:
        return self.config.oauth_tokens.get(self.metadata.id)

    def is_cli_installed(self) -> bool:
        return shutil.which(self.metadata.cli_binary) is not None

    async def is_authenticated(self) -> bool:
        if self.oauth_token():
            return True
        return self.credential_path.exists()

    def _write_placeholder(self) -> None:
        self.credential_path.parent.mkdir(parents=True, exist_ok=True)
        self.credential_path.write_text(PLACEHOLDER_CREDENTIAL, encoding="utf-8")

    def _login_env(self) -> dict:
        env = dict(self.config.env)
        if self.metadata.home_env:
            env[self.metadata.home_env] = str(self.home)
        return env

    async def ensure_auth(self) -> bool:
        if await self.is_authenticated():
            return True

        if self.config.skip_auth:
            self._write_placeholder()
            logger.info(f"Skipping {self.metadata.name} authentication; placeholder written")
            return True

        binary = self.metadata.cli_binary
        if not self.is_cli_installed():
            logger.error(f"{self.metadata.name} CLI not installed ('{binary}' not on PATH)")
            raise BinaryNotInstalled(binary, self.metadata.name, self.metadata.install_command)

        self.home.mkdir(parents=True, exist_ok=True)
        login = " ".join([binary, *self.login_args])
        logger.info(f"Running {self.metadata.name} authentication ({login}) in {self.home}")
        try:
            proc = await asyncio.create_subprocess_exec(
                binary, *self.login_args, env=self._login_env()
            )
            exit_code = await proc.wait()
        except FileNotFoundError as e:
            raise BinaryNotInstalled(
                binary, self.metadata.name, self.metadata.install_command
            ) from e

        if exit_code != 0:
            raise AuthenticationMissing(f"'{login}' exited with code {exit_code}")

        if self.credential_path.exists():
            return True
        if self.placeholder_after_login:
            self._write_placeholder()
            return True
        raise AuthenticationIncomplete(
            self.incomplete_hint
            or f"Authentication incomplete. Run '{login}' and try again."
        )

    async def clear_auth(self) -> None:
        for path in self.auth_paths():
            with contextlib.suppress(OSError):
                path.unlink(missing_ok=True)
