import pytest

from codeweave.errors import ProcessCancelled
from codeweave.ledger import TaskLedger
from codeweave.workflow import RecoveryController, WorkflowEngine, parse_template

STEPS = [
    {"agentId": "plan", "taskId": "T1"},
    {"agentId": "build", "taskId": "T2"},
    "review",
]


@pytest.fixture
def setup(config, make_catalog, scripted_engine, registry_for):
    def factory(tasks, engine_kwargs=None, **recovery_kwargs):
        ledger = TaskLedger(config.ledger_path, {"tasks": tasks})
        ledger.save()
        catalog = make_catalog("plan", "build", "review")
        fake = scripted_engine(**(engine_kwargs or {}))
        workflow = WorkflowEngine(config, registry_for(fake), catalog, ledger=ledger)
        recovery_kwargs.setdefault("backoff_base", 0)
        recovery_kwargs.setdefault("backoff_jitter", 0)
        recovery = RecoveryController(workflow, ledger, **recovery_kwargs)
        return fake, recovery, parse_template({"name": "feature", "steps": STEPS}, catalog)

    return factory


@pytest.mark.asyncio
async def test_recover_starts_at_first_unfinished_task(setup):
    fake, recovery, template = setup(
        [
            {"id": "T1", "name": "Plan the feature", "done": True},
            {"id": "T2", "name": "Build it", "done": False},
        ],
        engine_kwargs={"outputs": {"build": ["TASK_COMPLETED"]}},
    )

    result = await recovery.recover(template)

    assert result.start_index == 1
    assert fake.agent_sequence == ["build", "review"]
    assert "Resuming an interrupted run.\nCompleted tasks:\n- T1: Plan the feature" in (
        fake.calls[0].prompt
    )


@pytest.mark.asyncio
async def test_unbound_open_task_resumes_from_first_step(setup):
    fake, recovery, template = setup(
        [{"id": "T1", "done": True}, {"id": "T2", "done": True}, {"id": "T9", "done": False}]
    )
    assert recovery.resume_index(template) == 0


@pytest.mark.asyncio
async def test_recover_with_everything_done_calls_completion(setup):
    completed = []

    async def on_complete():
        completed.append(True)

    fake, recovery, template = setup(
        [{"id": "T1", "done": True}, {"id": "T2", "done": True}], on_complete=on_complete
    )

    assert await recovery.recover(template) is None
    assert completed == [True]
    assert fake.calls == []


@pytest.mark.asyncio
async def test_supervise_resumes_until_tasks_are_done(setup):
    completed = []
    fake, recovery, template = setup(
        [{"id": "T1", "done": False}, {"id": "T2", "done": False}],
        engine_kwargs={
            "outputs": {
                "plan": ["TASK_COMPLETED"],
                "build": ["still compiling", "TASK_COMPLETED"],
            }
        },
        on_complete=lambda: completed.append(True),
    )

    result = await recovery.supervise(template)

    assert fake.agent_sequence == ["plan", "build", "review", "build", "review"]
    assert result.start_index == 1
    assert completed == [True]
    assert TaskLedger.load(recovery.ledger.path).all_done()


@pytest.mark.asyncio
async def test_supervise_gives_up_after_max_attempts(setup):
    completed = []
    fake, recovery, template = setup(
        [{"id": "T1", "done": True}, {"id": "T2", "done": False}],
        max_resume_attempts=2,
        on_complete=lambda: completed.append(True),
    )

    result = await recovery.supervise(template, start_index=1)

    assert fake.agent_sequence == ["build", "review"] * 3
    assert result.status == "completed"
    assert completed == []


@pytest.mark.asyncio
async def test_cancelled_run_is_not_resumed(setup):
    fake, recovery, template = setup(
        [{"id": "T1", "done": False}],
        engine_kwargs={"failures": {"plan": [ProcessCancelled("Fake CLI")]}},
    )

    result = await recovery.supervise(template)

    assert result.cancelled
    assert fake.agent_sequence == ["plan"]
