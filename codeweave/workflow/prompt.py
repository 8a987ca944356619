"""Prompt composition for workflow steps."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from ..contracts import Task

COMPLETION_MARKER = "TASK_COMPLETED"


def build_task_request(task: Optional[Task], completion_marker: str = COMPLETION_MARKER) -> str:
    """Describe ``task`` to the agent, or return an empty request."""
    if task is None:
        return ""
    lines = [f"Current task: {task.id}" + (f" - {task.name}" if task.name else "")]
    if task.phase:
        lines.append(f"Phase: {task.phase}")
    if task.details:
        lines.extend(["", task.details.strip()])
    criteria = task.criteria_lines()
    if criteria:
        lines.extend(["", "Acceptance criteria:"])
        lines.extend(f"- {line.lstrip('- ').strip()}" for line in criteria)
    open_subtasks = [s for s in task.subtasks if not s.done]
    if open_subtasks:
        lines.extend(["", "Subtasks:"])
        lines.extend(f"- {s.id}: {s.name}" if s.name else f"- {s.id}" for s in open_subtasks)
    lines.extend(
        [
            "",
            f"When the task meets every acceptance criterion, end your reply with {completion_marker}.",
        ]
    )
    return "\n".join(lines)


def compose_prompt(
    agent_prompt: str,
    memory_path: Optional[Path] = None,
    task_request: str = "",
    resume_summary: Optional[str] = None,
) -> str:
    """Join the prompt parts in their fixed order.

    The agent's own prompt comes first, then the pointer to its memory file,
    then the task request (followed by the resume summary, if any).
    """

    parts = [agent_prompt.strip()]
    if memory_path is not None:
        parts.append(
            f"Your notes from previous runs are stored in {memory_path}. "
            "Read them before you start."
        )
    request = task_request.strip()
    if resume_summary:
        summary = f"Resuming an interrupted run.\n{resume_summary.strip()}"
        request = f"{request}\n\n{summary}" if request else summary
    if request:
        parts.append(request)
    return "\n\n".join(part for part in parts if part)
