import asyncio

import pytest

from codeweave.errors import ConfigurationError, ProcessCancelled, ProcessNonZeroExit
from codeweave.ledger import TaskLedger
from codeweave.memory import MemoryStore
from codeweave.persistence import InMemoryRunRepository
from codeweave.process import CancelToken
from codeweave.workflow import WorkflowEngine, parse_template


def failing_test_step(**loop):
    return {"agentId": "test", "loops": [{"action": "stepBack", "trigger": "FAIL", **loop}]}


@pytest.fixture
def build_workflow(config, make_catalog, scripted_engine, registry_for):
    """Return (engine double, workflow engine, template) for a step list."""

    def factory(steps, agents=None, engine_kwargs=None, **workflow_kwargs):
        agent_ids = agents or sorted(
            {s if isinstance(s, str) else s["agentId"] for s in steps}
        )
        catalog = make_catalog(*agent_ids)
        fake = scripted_engine(**(engine_kwargs or {}))
        workflow_kwargs.setdefault("repository", InMemoryRunRepository())
        workflow = WorkflowEngine(config, registry_for(fake), catalog, **workflow_kwargs)
        template = parse_template({"name": "feature", "steps": steps}, catalog)
        return fake, workflow, template

    return factory


def write_ledger(config, tasks):
    ledger = TaskLedger(config.ledger_path, {"tasks": tasks})
    ledger.save()
    return ledger


@pytest.mark.asyncio
async def test_loop_back_until_tests_pass(build_workflow):
    fake, workflow, template = build_workflow(
        ["plan", "build", failing_test_step(steps=1, maxIterations=2)],
        engine_kwargs={"outputs": {"test": ["1 FAIL", "FAIL again", "all PASS"]}},
    )

    result = await workflow.run(template)

    assert fake.agent_sequence == ["plan", "build", "test", "build", "test", "build", "test"]
    assert result.status == "completed"
    assert result.cursor == 3
    assert result.loop_counters == {"2:0": 2}


@pytest.mark.asyncio
async def test_loop_budget_exhausted_moves_on(build_workflow):
    fake, workflow, template = build_workflow(
        ["build", failing_test_step(steps=1, maxIterations=1), "deploy"],
        engine_kwargs={"outputs": {"test": ["FAIL", "FAIL"]}},
    )

    result = await workflow.run(template)

    assert fake.agent_sequence == ["build", "test", "build", "test", "deploy"]
    assert result.status == "completed"


@pytest.mark.asyncio
async def test_execute_once_steps_are_not_replayed(build_workflow):
    fake, workflow, template = build_workflow(
        [{"agentId": "plan", "executeOnce": True}, "build", failing_test_step(steps=2)],
        engine_kwargs={"outputs": {"test": ["FAIL", "PASS"]}},
    )

    await workflow.run(template)

    assert fake.agent_sequence == ["plan", "build", "test", "build", "test"]


@pytest.mark.asyncio
async def test_loop_skip_list_bypasses_agents_while_replaying(build_workflow):
    fake, workflow, template = build_workflow(
        ["plan", "build", "docs", failing_test_step(steps=2, skip=["docs"])],
        engine_kwargs={"outputs": {"test": ["FAIL", "PASS"]}},
    )

    await workflow.run(template)

    assert fake.agent_sequence == ["plan", "build", "docs", "test", "build", "test"]


@pytest.mark.asyncio
async def test_engine_error_halts_run(build_workflow):
    repository = InMemoryRunRepository()
    fake, workflow, template = build_workflow(
        ["plan", "build", "test"],
        engine_kwargs={"failures": {"build": [ProcessNonZeroExit("Fake CLI", 1, "boom")]}},
        repository=repository,
    )

    result = await workflow.run(template)

    assert fake.agent_sequence == ["plan", "build"]
    assert result.status == "halted"
    assert result.cursor == 1
    assert "exited with code 1" in result.reason
    assert [i.status for i in result.invocations] == ["completed", "failed"]

    run = await repository.get_run(result.run_id)
    assert run.status == "halted"
    assert [(s.agent_id, s.status) for s in run.steps] == [
        ("plan", "completed"),
        ("build", "failed"),
    ]


@pytest.mark.asyncio
async def test_failed_step_runs_fallback_agent(build_workflow):
    fake, workflow, template = build_workflow(
        [{"agentId": "build", "notCompletedFallback": "fixer"}, "test"],
        agents=["build", "fixer", "test"],
        engine_kwargs={"failures": {"build": [ProcessNonZeroExit("Fake CLI", 2)]}},
    )

    result = await workflow.run(template)

    assert fake.agent_sequence == ["build", "fixer", "test"]
    assert result.status == "completed"
    fallback = result.invocations[1]
    assert (fallback.agent_id, fallback.fallback_for, fallback.step_index) == ("fixer", "build", 0)


@pytest.mark.asyncio
async def test_prompt_removed_mid_run_halts_the_run(config, build_workflow):
    repository = InMemoryRunRepository()
    build_prompt = config.workspace_dir / "prompts" / "build.md"
    fake, workflow, template = build_workflow(
        ["plan", "build", "test"],
        engine_kwargs={"after": {"plan": build_prompt.unlink}},
        repository=repository,
    )

    result = await workflow.run(template)

    assert fake.agent_sequence == ["plan"]
    assert result.status == "halted"
    assert result.cursor == 1
    assert "Cannot read prompt for build" in result.reason
    failed = result.invocations[1]
    assert (failed.agent_id, failed.status) == ("build", "failed")
    assert "ConfigurationError" in failed.error

    run = await repository.get_run(result.run_id)
    assert run.status == "halted"
    assert [(s.agent_id, s.status) for s in run.steps] == [
        ("plan", "completed"),
        ("build", "failed"),
    ]


@pytest.mark.asyncio
async def test_unexpected_step_error_runs_fallback(build_workflow):
    fake, workflow, template = build_workflow(
        [{"agentId": "build", "notCompletedFallback": "fixer"}, "test"],
        agents=["build", "fixer", "test"],
        engine_kwargs={
            "failures": {"build": [AttributeError("'str' object has no attribute 'get'")]}
        },
    )

    result = await workflow.run(template)

    assert fake.agent_sequence == ["build", "fixer", "test"]
    assert result.status == "completed"
    assert result.invocations[0].status == "failed"
    assert "AttributeError" in result.invocations[0].error


@pytest.mark.asyncio
async def test_unexpected_step_error_without_fallback_halts(build_workflow):
    fake, workflow, template = build_workflow(
        ["plan", "build"],
        engine_kwargs={"failures": {"plan": [ValueError("bad stream")]}},
    )

    result = await workflow.run(template)

    assert fake.agent_sequence == ["plan"]
    assert result.status == "halted"
    assert result.reason == "plan failed: ValueError: bad stream"


@pytest.mark.asyncio
async def test_task_cancellation_still_closes_the_run(build_workflow):
    repository = InMemoryRunRepository()
    fake, workflow, template = build_workflow(
        ["plan", "build"],
        engine_kwargs={"failures": {"plan": [asyncio.CancelledError()]}},
        repository=repository,
    )

    with pytest.raises(asyncio.CancelledError):
        await workflow.run(template)

    [run] = await repository.list_runs()
    assert (run.status, run.reason) == ("halted", "cancelled")


@pytest.mark.asyncio
async def test_unaccepted_task_runs_fallback_and_marks_done(config, build_workflow):
    ledger = write_ledger(config, [{"id": "T1", "name": "Add login", "done": False}])
    fake, workflow, template = build_workflow(
        [{"agentId": "build", "taskId": "T1", "notCompletedFallback": "fixer"}],
        agents=["build", "fixer"],
        engine_kwargs={"outputs": {"build": ["halfway there"], "fixer": ["TASK_COMPLETED"]}},
        ledger=ledger,
    )

    result = await workflow.run(template)

    assert fake.agent_sequence == ["build", "fixer"]
    assert [i.accepted for i in result.invocations] == [False, True]
    assert TaskLedger.load(config.ledger_path).get("T1").done is True
    assert "Current task: T1 - Add login" in fake.calls[0].prompt


@pytest.mark.asyncio
async def test_task_marked_done_by_agent_is_accepted(config, build_workflow):
    ledger = write_ledger(config, [{"id": "T1", "done": False}])

    fake, workflow, template = build_workflow(
        [{"agentId": "build", "taskId": "T1", "notCompletedFallback": "fixer"}],
        agents=["build", "fixer"],
        ledger=ledger,
    )
    # The agent updates tasks.json itself while it runs.
    write_ledger(config, [{"id": "T1", "done": True}])

    result = await workflow.run(template)

    assert fake.agent_sequence == ["build"]
    assert result.invocations[0].accepted is True


@pytest.mark.asyncio
async def test_cancellation_halts_with_cancelled_reason(build_workflow):
    fake, workflow, template = build_workflow(
        ["plan", "build"],
        engine_kwargs={"failures": {"plan": [ProcessCancelled("Fake CLI", "plan-1")]}},
    )

    result = await workflow.run(template)

    assert result.cancelled
    assert result.status == "halted"
    assert fake.agent_sequence == ["plan"]
    assert result.invocations[0].status == "cancelled"
    assert result.invocations[0].instance_id == "plan-1"


@pytest.mark.asyncio
async def test_cancelled_token_stops_before_next_step(build_workflow):
    token = CancelToken()
    token.cancel()
    fake, workflow, template = build_workflow(["plan"], cancel_token=token)

    result = await workflow.run(template)

    assert result.cancelled
    assert fake.calls == []


@pytest.mark.asyncio
async def test_invalid_template_fails_before_anything_runs(
    config, make_catalog, scripted_engine, registry_for
):
    catalog = make_catalog("plan")
    fake = scripted_engine()
    repository = InMemoryRunRepository()
    workflow = WorkflowEngine(config, registry_for(fake), catalog, repository=repository)
    template = parse_template(
        {"steps": ["plan", "ghost", {"agentId": "plan", "engine": "nope"}]}, catalog
    )

    with pytest.raises(ConfigurationError) as exc:
        await workflow.run(template)

    assert "step 1 (ghost): unknown agent 'ghost'" in exc.value.problems
    assert "step 2 (plan): unknown engine 'nope'" in exc.value.problems
    assert fake.calls == []
    assert fake.synced == []
    assert await repository.list_runs() == []


@pytest.mark.asyncio
async def test_start_index_out_of_range(build_workflow):
    _, workflow, template = build_workflow(["plan"])
    with pytest.raises(ValueError):
        await workflow.run(template, start_index=5)


@pytest.mark.asyncio
async def test_prompt_carries_memory_and_resume_summary(config, build_workflow):
    memory = MemoryStore(config.memory_dir)
    memory.write("build", "💬 MESSAGE: wired the router")
    fake, workflow, template = build_workflow(["build", "test"], memory=memory)

    await workflow.run(template, resume_summary="Completed tasks:\n- T1: Add login")

    first, second = (call.prompt for call in fake.calls)
    assert first.startswith("You are the build agent.")
    assert str(memory.path_for("build")) in first
    assert first.endswith("Resuming an interrupted run.\nCompleted tasks:\n- T1: Add login")
    assert "Resuming" not in second
    assert str(memory.path_for("test")) not in second


@pytest.mark.asyncio
async def test_engine_setup_happens_once_per_run(build_workflow):
    fake, workflow, template = build_workflow(["plan", "build", "plan"])

    await workflow.run(template)

    assert fake.auth.ensure_calls == 1
    assert fake.synced == [["build", "plan"]]
    assert all(call.working_dir == workflow.config.workspace_dir for call in fake.calls)
