"""Acceptance checks deciding whether a step finished its task."""

from __future__ import annotations

from typing import Protocol

from ..contracts import Task
from .prompt import COMPLETION_MARKER

# Progress lines that report what the agent did rather than what it said.
ACTIVITY_PREFIXES = (
    "🧠 THINKING:",
    "🔧 COMMAND:",
    "✅ COMMAND RESULT:",
    "❌ COMMAND FAILED:",
    "❌ ERROR:",
    "⏱️",
)


class AcceptanceEvaluator(Protocol):
    """Decides whether ``output`` satisfies ``task``."""

    def evaluate(self, task: Task, output: str) -> bool:
        """Return ``True`` when the task is complete."""


class CompletionMarkerEvaluator:
    """Accepts a task when the agent says the completion marker.

    Only message lines count: a marker quoted in reasoning, a command line
    or a command's output does not complete the task.
    """

    def __init__(self, marker: str = COMPLETION_MARKER) -> None:
        self.marker = marker

    def evaluate(self, task: Task, output: str) -> bool:
        for line in (output or "").splitlines():
            if line.lstrip().startswith(ACTIVITY_PREFIXES):
                continue
            if self.marker in line:
                return True
        return False
