"""Loop-back state machine for workflow cursors."""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Optional

from ..constants import DEFAULT_LOOP_MAX_ITERATIONS
from ..contracts import LoopBehavior, WorkflowTemplate
from ..errors import LoopBudgetExhausted

logger = logging.getLogger(__name__)


def trigger_id(step_index: int, behavior_index: int) -> str:
    return f"{step_index}:{behavior_index}"


class LoopController:
    """Decides the next cursor position after each step.

    Every loop behavior is identified by ``"<step index>:<behavior index>"``
    and owns a counter that only grows during a run, so a trigger can rewind
    the cursor at most ``max_iterations`` times. When several behaviors of a
    step match, the first one in declaration order decides.

    A loop-back replaces the active skip set. Until the cursor is back at
    the step that looped, steps whose agent is in that set are not run.
    """

    def __init__(
        self,
        template: WorkflowTemplate,
        default_max_iterations: int = DEFAULT_LOOP_MAX_ITERATIONS,
    ) -> None:
        self.template = template
        self.default_max_iterations = default_max_iterations
        self.counters: Dict[str, int] = {}
        self._skip: FrozenSet[str] = frozenset()
        self._replay_end: Optional[int] = None

    def limit_for(self, behavior: LoopBehavior) -> int:
        return behavior.max_iterations or self.default_max_iterations

    def iterations(self, step_index: int, behavior_index: int = 0) -> int:
        return self.counters.get(trigger_id(step_index, behavior_index), 0)

    def is_skipped(self, index: int) -> bool:
        """Whether the step at ``index`` is bypassed by the active loop-back."""
        if self._replay_end is None or index >= self._replay_end:
            return False
        return self.template.steps[index].agent_id in self._skip

    def next_index(self, index: int, output: str) -> int:
        """Return the cursor position that follows step ``index``."""
        if self._replay_end is not None and index >= self._replay_end:
            self._skip = frozenset()
            self._replay_end = None

        step = self.template.steps[index]
        for behavior_index, behavior in enumerate(step.loop_behaviors()):
            if not behavior.matches(output):
                continue
            key = trigger_id(index, behavior_index)
            try:
                return self._step_back(key, index, behavior)
            except LoopBudgetExhausted as e:
                logger.warning(f"{e}; continuing with the next step")
                return index + 1
        return index + 1

    def _step_back(self, key: str, index: int, behavior: LoopBehavior) -> int:
        limit = self.limit_for(behavior)
        count = self.counters.get(key, 0)
        if count >= limit:
            raise LoopBudgetExhausted(key, limit)
        self.counters[key] = count + 1

        skip = frozenset(behavior.skip)
        target = max(0, index - behavior.steps)
        while target < index and self.template.steps[target].agent_id in skip:
            target += 1

        self._skip = skip
        self._replay_end = index
        logger.info(
            f"Loop {key} triggered ({count + 1}/{limit}); "
            f"rewinding from step {index} to step {target}"
        )
        return target
