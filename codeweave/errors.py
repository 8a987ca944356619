"""Error taxonomy for codeweave."""

from __future__ import annotations

from typing import Optional


class CodeweaveError(Exception):
    """Base class for all codeweave errors."""


class ConfigurationError(CodeweaveError):
    """Invalid agent catalog, template or engine reference.

    Raised before any step executes and fatal to the whole run.
    """

    def __init__(self, message: str, problems: Optional[list[str]] = None) -> None:
        self.problems = problems or []
        if self.problems:
            message = message + "\n" + "\n".join(f"  - {p}" for p in self.problems)
        super().__init__(message)


class InstanceStateError(CodeweaveError):
    """An instance was asked to leave a terminal state."""


class EngineError(CodeweaveError):
    """Base class for failures scoped to a single workflow step."""


class BinaryNotInstalled(EngineError):
    """The engine's command line binary could not be found."""

    def __init__(
        self,
        command: str,
        engine_name: Optional[str] = None,
        install_command: Optional[str] = None,
    ) -> None:
        self.command = command
        self.engine_name = engine_name
        self.install_command = install_command
        if engine_name and install_command:
            message = (
                f"'{command}' is not available on this system. "
                f"Please install {engine_name} first:\n  {install_command}"
            )
        else:
            message = f"'{command}' is not available on this system."
        super().__init__(message)


class AuthenticationMissing(EngineError):
    """The engine has no usable credentials."""


class AuthenticationIncomplete(AuthenticationMissing):
    """Login ran but did not leave a credential behind."""


class ProcessError(EngineError):
    """Base class for child process failures."""


class ProcessNonZeroExit(ProcessError):
    def __init__(self, command: str, exit_code: int, diagnostics: str = "") -> None:
        self.command = command
        self.exit_code = exit_code
        self.diagnostics = diagnostics
        message = f"{command} exited with code {exit_code}"
        if diagnostics:
            message += f"\n{diagnostics}"
        super().__init__(message)


class ProcessTimeout(ProcessError):
    def __init__(self, command: str, timeout_ms: int, instance_id: Optional[str] = None) -> None:
        self.command = command
        self.timeout_ms = timeout_ms
        self.instance_id = instance_id
        super().__init__(f"{command} timed out after {timeout_ms}ms")


class ProcessCancelled(ProcessError):
    def __init__(self, command: str, instance_id: Optional[str] = None) -> None:
        self.command = command
        self.instance_id = instance_id
        super().__init__(f"{command} was cancelled")


class MalformedStreamEvent(EngineError):
    """A single protocol line could not be decoded."""


class StepFailed(EngineError):
    """An unexpected error escaped while a step was running."""

    def __init__(self, agent_id: str, cause: BaseException) -> None:
        self.agent_id = agent_id
        self.cause = cause
        super().__init__(f"{agent_id} failed: {type(cause).__name__}: {cause}")


class LoopBudgetExhausted(CodeweaveError):
    """A loop trigger matched after reaching its iteration limit."""

    def __init__(self, trigger_id: str, max_iterations: int) -> None:
        self.trigger_id = trigger_id
        self.max_iterations = max_iterations
        super().__init__(
            f"Loop trigger {trigger_id} reached its limit of {max_iterations} iterations"
        )
