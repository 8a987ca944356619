"""Command line interface for running codeweave workflows."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from pathlib import Path
from typing import NoReturn, Optional

import typer

from codeweave.config import WeaveConfig, load_config
from codeweave.contracts import WorkflowTemplate
from codeweave.engines import Engine, EngineRegistry, build_registry
from codeweave.errors import CodeweaveError
from codeweave.instances import InstanceTracker
from codeweave.ledger import TaskLedger
from codeweave.persistence import get_repository
from codeweave.process import CancelToken, ProcessRunner
from codeweave.workflow import (
    RecoveryController,
    TemplateTracker,
    WorkflowEngine,
    WorkflowRunResult,
    load_agent_catalog,
)

app = typer.Typer(help="CLI for codeweave workflows")

# Command groups
engine_app = typer.Typer(help="Commands for inspecting engines")
auth_app = typer.Typer(help="Commands for engine authentication")
template_app = typer.Typer(help="Commands for managing the active template")
runs_app = typer.Typer(help="Commands for inspecting run history")

app.add_typer(engine_app, name="engine")
app.add_typer(auth_app, name="auth")
app.add_typer(template_app, name="template")
app.add_typer(runs_app, name="runs")

logger = logging.getLogger(__name__)


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to codeweave.yaml (default: CODEWEAVE_CONFIG)"
    ),
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
) -> None:
    """codeweave CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = load_config(str(config) if config else None)


def _fail(message: str) -> NoReturn:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _registry(config: WeaveConfig) -> EngineRegistry:
    runner = ProcessRunner(
        InstanceTracker(), grace_period_s=config.grace_period_s, plain=config.plain_logs
    )
    return build_registry(config, runner=runner)


def _engine(config: WeaveConfig, engine_id: str) -> Engine:
    try:
        return _registry(config).require(engine_id)
    except CodeweaveError as e:
        _fail(str(e))


def _load_ledger(config: WeaveConfig) -> Optional[TaskLedger]:
    if not config.ledger_path.exists():
        return None
    return TaskLedger.load(config.ledger_path)


def _echo_output(text: str) -> None:
    typer.echo(text, nl=False)


def _echo_error(text: str) -> None:
    typer.echo(text, nl=False, err=True)


def _report(result: WorkflowRunResult) -> None:
    typer.echo(f"Run {result.run_id}: {result.status}")
    if result.status != "completed":
        _fail(f"Halted at step {result.cursor}: {result.reason}")


def _prepare(
    config: WeaveConfig, template_path: Optional[Path], cancel_token: CancelToken
) -> tuple[WorkflowEngine, Optional[RecoveryController], WorkflowTemplate]:
    catalog = load_agent_catalog(config.resolve(config.agents_file))
    template = TemplateTracker(config).activate(
        template_path or config.template_file, catalog
    )
    ledger = _load_ledger(config)
    engine = WorkflowEngine(
        config,
        _registry(config),
        catalog,
        ledger=ledger,
        repository=get_repository(config=config),
        cancel_token=cancel_token,
        on_output=_echo_output,
        on_error_output=_echo_error,
    )
    recovery = RecoveryController(engine, ledger) if ledger is not None else None
    return engine, recovery, template


def _install_cancel(cancel_token: CancelToken) -> None:
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, cancel_token.cancel)
        loop.add_signal_handler(signal.SIGTERM, cancel_token.cancel)


@app.command("run")
def run(
    ctx: typer.Context,
    template: Optional[Path] = typer.Option(None, "--template", "-t", help="Workflow template"),
    start: int = typer.Option(0, "--start", help="Step index to start from"),
    supervise: bool = typer.Option(
        True, "--supervise/--no-supervise", help="Resume automatically while tasks remain"
    ),
) -> None:
    """
    Run a workflow template against the workspace.

    Example:
        codeweave run
        codeweave run --template workflows/feature.yaml --no-supervise
    """
    config: WeaveConfig = ctx.obj

    async def execute() -> WorkflowRunResult:
        cancel_token = CancelToken()
        _install_cancel(cancel_token)
        engine, recovery, workflow = _prepare(config, template, cancel_token)
        if supervise and recovery is not None:
            return await recovery.supervise(workflow, start_index=start)
        return await engine.run(workflow, start_index=start)

    try:
        result = asyncio.run(execute())
    except (CodeweaveError, ValueError) as e:
        _fail(str(e))
    _report(result)


@app.command("resume")
def resume(
    ctx: typer.Context,
    template: Optional[Path] = typer.Option(None, "--template", "-t", help="Workflow template"),
) -> None:
    """Resume at the step bound to the first unfinished task."""
    config: WeaveConfig = ctx.obj

    async def execute() -> Optional[WorkflowRunResult]:
        cancel_token = CancelToken()
        _install_cancel(cancel_token)
        _, recovery, workflow = _prepare(config, template, cancel_token)
        if recovery is None:
            raise CodeweaveError(f"No task ledger at {config.ledger_path}")
        return await recovery.recover(workflow)

    try:
        result = asyncio.run(execute())
    except CodeweaveError as e:
        _fail(str(e))
    if result is None:
        typer.echo("All tasks are done")
        return
    _report(result)


@app.command("tasks")
def tasks(ctx: typer.Context) -> None:
    """List the tasks of the task ledger."""
    config: WeaveConfig = ctx.obj
    try:
        ledger = _load_ledger(config)
    except CodeweaveError as e:
        _fail(str(e))
    if ledger is None or not ledger.tasks:
        typer.echo("No tasks found")
        return
    for task in ledger.tasks:
        mark = "x" if task.done else " "
        typer.echo(f"[{mark}] {task.id}\t{task.name}")


@engine_app.command("list")
def engine_list(ctx: typer.Context) -> None:
    """List enabled engines in selection order."""
    registry = _registry(ctx.obj)
    if len(registry) == 0:
        typer.echo("No engines enabled")
        return
    for engine in registry.all():
        meta = engine.metadata
        typer.echo(f"{meta.id}\t{meta.name}\t{meta.command}\t{meta.default_model or '-'}")


@auth_app.command("status")
def auth_status(ctx: typer.Context, engine_id: Optional[str] = typer.Argument(None)) -> None:
    """Show whether engines have usable credentials."""
    config: WeaveConfig = ctx.obj
    engines = [_engine(config, engine_id)] if engine_id else _registry(config).all()
    for engine in engines:
        authenticated = asyncio.run(engine.auth.is_authenticated())
        state = "authenticated" if authenticated else "not authenticated"
        typer.echo(f"{engine.id}: {state}")


@auth_app.command("login")
def auth_login(ctx: typer.Context, engine_id: str) -> None:
    """Authenticate an engine, running its interactive login if needed."""
    engine = _engine(ctx.obj, engine_id)
    try:
        asyncio.run(engine.auth.ensure_auth())
    except CodeweaveError as e:
        _fail(str(e))
    typer.echo(f"{engine.metadata.name} authenticated")


@auth_app.command("logout")
def auth_logout(ctx: typer.Context, engine_id: str) -> None:
    """Remove stored credentials of an engine."""
    engine = _engine(ctx.obj, engine_id)
    asyncio.run(engine.auth.clear_auth())
    typer.echo(f"{engine.metadata.name} credentials removed")


@template_app.command("use")
def template_use(ctx: typer.Context, template_path: Path) -> None:
    """Make ``template_path`` the active template and regenerate agent prompts."""
    config: WeaveConfig = ctx.obj
    tracker = TemplateTracker(config)
    try:
        catalog = load_agent_catalog(config.resolve(config.agents_file))
        changed = tracker.has_changed(config.resolve(str(template_path)))
        template = tracker.activate(template_path, catalog)
    except (CodeweaveError, OSError) as e:
        _fail(str(e))
    if changed:
        typer.echo(f"Active template: {template.name} ({len(template.steps)} steps)")
    else:
        typer.echo(f"Template {template.name} already active")


@runs_app.command("list")
def runs_list(ctx: typer.Context) -> None:
    """List recorded runs with their status."""
    repo = get_repository(config=ctx.obj)
    runs = asyncio.run(repo.list_runs())
    if not runs:
        typer.echo("No runs found")
        return
    for run_record in runs:
        typer.echo(f"{run_record.run_id}\t{run_record.template_name}\t{run_record.status}")


@runs_app.command("show")
def runs_show(ctx: typer.Context, run_id: str) -> None:
    """Show the step history of a run."""
    repo = get_repository(config=ctx.obj)
    run_record = asyncio.run(repo.get_run(run_id))
    if run_record is None:
        typer.echo("Run not found")
        raise typer.Exit(code=1)
    typer.echo(f"Run {run_record.run_id} ({run_record.template_name}): {run_record.status}")
    if run_record.reason:
        typer.echo(f"Reason: {run_record.reason}")
    for step in run_record.steps:
        typer.echo(
            f"- [{step.step_index}] {step.agent_id}: {step.status or 'running'}"
            + (
                f" ({step.started_at} -> {step.completed_at})"
                if step.started_at or step.completed_at
                else ""
            )
        )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
