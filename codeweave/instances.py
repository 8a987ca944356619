"""Tracking of spawned engine instances."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .contracts import TERMINAL_STATES, Instance, InstanceState
from .errors import InstanceStateError

logger = logging.getLogger(__name__)


class InstanceTracker:
    """Map of instance id to lifecycle state.

    The runner mutates the map while UI or monitoring code may read it from
    another thread, so every access goes through a lock and readers only
    receive copies.
    """

    def __init__(self) -> None:
        self._instances: Dict[str, Instance] = {}
        self._lock = threading.Lock()
        self._last_ts = 0

    def _next_timestamp(self) -> int:
        now = int(time.time() * 1000)
        self._last_ts = max(now, self._last_ts + 1)
        return self._last_ts

    def spawn(self, agent_id: str, command: Optional[str] = None) -> Instance:
        """Register a new running instance for ``agent_id``."""
        with self._lock:
            instance_id = f"{agent_id}-{self._next_timestamp()}"
            instance = Instance(id=instance_id, agent_id=agent_id, command=command)
            self._instances[instance_id] = instance
            logger.debug(f"Instance {instance_id} started")
            return instance.model_copy()

    def finish(
        self,
        instance_id: str,
        state: InstanceState,
        exit_signal: Optional[str] = None,
    ) -> Instance:
        """Move an instance into its terminal ``state``.

        Raises:
            KeyError: If the instance is unknown.
            InstanceStateError: If ``state`` is not terminal or the instance
                already reached a terminal state.
        """
        if state not in TERMINAL_STATES:
            raise InstanceStateError(f"{state} is not a terminal state")
        with self._lock:
            instance = self._instances[instance_id]
            if instance.is_terminal:
                raise InstanceStateError(
                    f"Instance {instance_id} already ended as {instance.state}"
                )
            instance.state = state
            instance.ended_at = datetime.now(timezone.utc)
            instance.exit_signal = exit_signal
            logger.debug(f"Instance {instance_id} ended as {state}")
            return instance.model_copy()

    def get(self, instance_id: str) -> Optional[Instance]:
        with self._lock:
            instance = self._instances.get(instance_id)
            return instance.model_copy() if instance else None

    def snapshot(self) -> List[Instance]:
        """Point-in-time copy of every tracked instance."""
        with self._lock:
            return [instance.model_copy() for instance in self._instances.values()]

    def running(self) -> List[Instance]:
        return [instance for instance in self.snapshot() if instance.state == "running"]
