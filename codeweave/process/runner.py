"""Child process execution with streaming, timeout and cancellation."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, List, Mapping, Optional, Sequence, Union

from ..constants import DEFAULT_GRACE_PERIOD_S, DEFAULT_TIMEOUT_MS, DIAGNOSTIC_LINE_LIMIT
from ..errors import BinaryNotInstalled, ProcessCancelled, ProcessTimeout
from ..instances import InstanceTracker
from .events import EventChannel, ProcessEvent
from .normalize import normalize_output

logger = logging.getLogger(__name__)

OutputCallback = Callable[[str], Union[None, Awaitable[None]]]

# Protocol lines (a whole JSON response on one line) can be large.
_STREAM_LIMIT = 16 * 1024 * 1024


class CancelToken:
    """Cooperative cancellation signal shared with a running process."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class ProcessResult:
    exit_code: int
    stdout: str
    stderr: str
    instance_id: Optional[str] = None

    def diagnostics(self, limit: int = DIAGNOSTIC_LINE_LIMIT) -> str:
        """First ``limit`` lines of stderr, or stdout when stderr is empty."""
        output = self.stderr.strip() or self.stdout.strip() or "no error output"
        return "\n".join(output.splitlines()[:limit])


async def _deliver(callback: Optional[OutputCallback], text: str) -> None:
    if callback is None:
        return
    result = callback(text)
    if inspect.isawaitable(result):
        await result


class ProcessRunner:
    """Runs one external command per call and reports a single outcome."""

    def __init__(
        self,
        tracker: Optional[InstanceTracker] = None,
        grace_period_s: float = DEFAULT_GRACE_PERIOD_S,
        plain: bool = False,
    ) -> None:
        self.tracker = tracker
        self.grace_period_s = grace_period_s
        self.plain = plain

    async def run(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        cwd: Union[str, Path],
        env: Optional[Mapping[str, str]] = None,
        stdin_input: Optional[str] = None,
        on_stdout: Optional[OutputCallback] = None,
        on_stderr: Optional[OutputCallback] = None,
        cancel_token: Optional[CancelToken] = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        agent_id: Optional[str] = None,
        channel: Optional[EventChannel] = None,
        plain: Optional[bool] = None,
        on_spawn: Optional[Callable[[Optional[str]], Union[None, Awaitable[None]]]] = None,
    ) -> ProcessResult:
        """Spawn ``command`` and wait for it to finish.

        Output lines are normalized and delivered to ``on_stdout`` and
        ``on_stderr`` (and ``channel``) as they arrive. The call returns only
        after the child exited and both pipes were drained.

        Raises:
            ValueError: If ``cwd`` is not an existing directory.
            BinaryNotInstalled: If ``command`` cannot be found.
            ProcessTimeout: If the child outlived ``timeout_ms``.
            ProcessCancelled: If ``cancel_token`` fired first.
        """
        workdir = Path(cwd)
        if not workdir.is_dir():
            raise ValueError(f"Working directory does not exist: {workdir}")

        plain = self.plain if plain is None else plain
        instance_id: Optional[str] = None
        if self.tracker is not None:
            instance = self.tracker.spawn(agent_id or Path(command).name, command=command)
            instance_id = instance.id

        logger.debug(f"Spawning {command} with {len(args)} args in {workdir}")
        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                *args,
                cwd=str(workdir),
                env=dict(env) if env is not None else None,
                stdin=asyncio.subprocess.PIPE
                if stdin_input is not None
                else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_STREAM_LIMIT,
            )
        except FileNotFoundError as e:
            self._finish(instance_id, "error")
            raise BinaryNotInstalled(command) from e
        except OSError:
            self._finish(instance_id, "error")
            raise

        if on_spawn is not None:
            spawned = on_spawn(instance_id)
            if inspect.isawaitable(spawned):
                await spawned
        if channel is not None:
            await channel.publish(ProcessEvent(kind="started", instance_id=instance_id))

        stdout_chunks: List[str] = []
        stderr_chunks: List[str] = []

        async def pump(
            stream: Optional[asyncio.StreamReader],
            chunks: List[str],
            callback: Optional[OutputCallback],
            kind: str,
        ) -> None:
            if stream is None:
                return
            while True:
                raw = await stream.readline()
                if not raw:
                    break
                text = normalize_output(raw.decode("utf-8", errors="replace"), plain=plain)
                chunks.append(text)
                await _deliver(callback, text)
                if channel is not None:
                    await channel.publish(
                        ProcessEvent(kind=kind, instance_id=instance_id, data=text)
                    )

        async def feed_stdin() -> None:
            if stdin_input is None or proc.stdin is None:
                return
            # A child that exits without reading its input is not an error here.
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                proc.stdin.write(stdin_input.encode("utf-8"))
                await proc.stdin.drain()
            proc.stdin.close()

        async def communicate() -> int:
            tasks = [
                asyncio.ensure_future(feed_stdin()),
                asyncio.ensure_future(pump(proc.stdout, stdout_chunks, on_stdout, "stdout")),
                asyncio.ensure_future(pump(proc.stderr, stderr_chunks, on_stderr, "stderr")),
            ]
            try:
                await asyncio.gather(*tasks)
            except BaseException:
                # A failing callback must not leave the sibling pumps reading.
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
            return await proc.wait()

        io_task = asyncio.ensure_future(communicate())
        waiters = {io_task}
        cancel_task: Optional[asyncio.Future] = None
        if cancel_token is not None:
            cancel_task = asyncio.ensure_future(cancel_token.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=timeout_ms / 1000,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            signal_name = await self._terminate(proc)
            await self._drain(io_task)
            self._finish(instance_id, "terminated", signal_name)
            raise
        finally:
            if cancel_task is not None and not cancel_task.done():
                cancel_task.cancel()

        if io_task in done:
            try:
                exit_code = io_task.result()
            except Exception as e:
                signal_name = await self._terminate(proc)
                self._finish(instance_id, "error", signal_name)
                logger.warning(f"{command} aborted: {type(e).__name__}: {e}")
                raise
            self._finish(instance_id, "completed" if exit_code == 0 else "error")
            if channel is not None:
                await channel.publish(
                    ProcessEvent(kind="exited", instance_id=instance_id, exit_code=exit_code)
                )
            logger.debug(f"{command} exited with code {exit_code}")
            return ProcessResult(
                exit_code=exit_code,
                stdout=normalize_output("".join(stdout_chunks)),
                stderr=normalize_output("".join(stderr_chunks)),
                instance_id=instance_id,
            )

        cancelled = cancel_task is not None and cancel_task in done
        signal_name = await self._terminate(proc)
        await self._drain(io_task)
        self._finish(instance_id, "terminated", signal_name)
        if channel is not None:
            await channel.publish(
                ProcessEvent(kind="exited", instance_id=instance_id, exit_code=proc.returncode)
            )
        if cancelled:
            logger.info(f"{command} cancelled ({signal_name})")
            raise ProcessCancelled(command, instance_id=instance_id)
        logger.warning(f"{command} timed out after {timeout_ms}ms ({signal_name})")
        raise ProcessTimeout(command, timeout_ms, instance_id=instance_id)

    async def _terminate(self, proc: asyncio.subprocess.Process) -> Optional[str]:
        """SIGTERM, then SIGKILL once the grace period runs out."""
        if proc.returncode is not None:
            return None
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.grace_period_s)
            return "SIGTERM"
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            return "SIGKILL"

    async def _drain(self, io_task: asyncio.Future) -> None:
        done, _ = await asyncio.wait({io_task}, timeout=self.grace_period_s)
        if io_task in done:
            if not io_task.cancelled():
                io_task.exception()
        else:
            io_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await io_task

    def _finish(self, instance_id: Optional[str], state: str, signal_name: Optional[str] = None) -> None:
        if self.tracker is not None and instance_id is not None:
            self.tracker.finish(instance_id, state, exit_signal=signal_name)
