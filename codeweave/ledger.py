"""Persisted task plan with completion tracking."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .contracts import Task
from .errors import ConfigurationError
from .utils.atomic import atomic_write_json

logger = logging.getLogger(__name__)


class TaskLedger:
    """The ``tasks.json`` plan shared by planning and execution agents.

    The raw JSON document is kept as loaded and only the touched keys are
    changed, so saving an unmodified ledger reproduces the same content,
    including key order and fields this package does not know about.
    Every mutation is written to disk before the method returns.
    """

    def __init__(self, path: Path | str, document: Optional[Dict[str, Any]] = None) -> None:
        self.path = Path(path)
        self._document: Dict[str, Any] = document if document is not None else {"tasks": []}
        self._validate()

    @classmethod
    def load(cls, path: Path | str) -> "TaskLedger":
        path = Path(path)
        with open(path, encoding="utf-8") as f:
            try:
                document = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Task ledger {path} is not valid JSON: {e}") from e
        if not isinstance(document, dict):
            raise ConfigurationError(f"Task ledger {path} must contain a JSON object")
        document.setdefault("tasks", [])
        return cls(path, document)

    def _validate(self) -> None:
        raw_tasks = self._document.get("tasks")
        if not isinstance(raw_tasks, list):
            raise ConfigurationError(f"Task ledger {self.path}: 'tasks' must be a list")
        try:
            for raw in raw_tasks:
                Task.model_validate(raw)
        except ValidationError as e:
            raise ConfigurationError(f"Task ledger {self.path} is invalid: {e}") from e

    def _raw_tasks(self) -> List[Dict[str, Any]]:
        return self._document["tasks"]

    def _find_raw(self, task_id: str) -> Dict[str, Any]:
        for raw in self._raw_tasks():
            if str(raw.get("id")) == str(task_id):
                return raw
        raise KeyError(task_id)

    @property
    def document(self) -> Dict[str, Any]:
        return self._document

    @property
    def tasks(self) -> List[Task]:
        return [Task.model_validate(raw) for raw in self._raw_tasks()]

    def get(self, task_id: str) -> Task:
        return Task.model_validate(self._find_raw(task_id))

    def first_incomplete(self) -> Optional[Task]:
        for task in self.tasks:
            if not task.done:
                return task
        return None

    def all_done(self) -> bool:
        return all(task.done for task in self.tasks)

    def mark_done(self, task_id: str, done: bool = True) -> Task:
        """Set the ``done`` flag of ``task_id`` and persist the ledger."""
        raw = self._find_raw(task_id)
        if raw.get("done") != done:
            raw["done"] = done
            self.save()
            logger.info(f"Task {task_id} marked {'done' if done else 'not done'}")
        return Task.model_validate(raw)

    def save(self) -> None:
        atomic_write_json(self.path, self._document)

    def reload(self) -> None:
        """Pick up changes other processes (agents) wrote to the file."""
        fresh = TaskLedger.load(self.path)
        self._document = fresh._document

    def completed_summary(self) -> str:
        """Human-readable recap of finished work, used when resuming."""
        done = [task for task in self.tasks if task.done]
        if not done:
            return "No tasks have been completed yet."
        lines = ["Completed tasks:"]
        for task in done:
            label = f"{task.id}: {task.name}" if task.name else task.id
            lines.append(f"- {label}")
        return "\n".join(lines)
