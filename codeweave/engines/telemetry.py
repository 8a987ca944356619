"""Token and timing telemetry for engine runs."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class TokenUsage(BaseModel):
    input_tokens: int = 0
    cached_input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_input(self) -> int:
        return self.input_tokens + self.cached_input_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            cached_input_tokens=self.cached_input_tokens + other.cached_input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    def describe(self) -> str:
        text = f"Tokens: {self.total_input}in/{self.output_tokens}out"
        if self.cached_input_tokens:
            text += f" ({self.cached_input_tokens} cached)"
        return text


class TelemetryRecord(BaseModel):
    engine_id: str
    model: Optional[str] = None
    prompt_chars: int = 0
    working_dir: Optional[str] = None
    duration_s: float = 0.0
    exit_code: Optional[int] = None
    usage: TokenUsage = Field(default_factory=TokenUsage)
    finished_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TelemetryCapture:
    """Collects usage for a single engine run."""

    def __init__(
        self,
        engine_id: str,
        model: Optional[str],
        prompt: str,
        working_dir: Optional[str] = None,
    ) -> None:
        self.engine_id = engine_id
        self.model = model
        self.prompt_chars = len(prompt)
        self.working_dir = working_dir
        self.usage = TokenUsage()
        self._started = time.monotonic()

    def add_usage(self, usage: TokenUsage) -> None:
        self.usage = self.usage + usage

    def finish(self, exit_code: Optional[int]) -> TelemetryRecord:
        record = TelemetryRecord(
            engine_id=self.engine_id,
            model=self.model,
            prompt_chars=self.prompt_chars,
            working_dir=self.working_dir,
            duration_s=round(time.monotonic() - self._started, 3),
            exit_code=exit_code,
            usage=self.usage,
        )
        logger.info(
            f"{self.engine_id}/{self.model or 'default'} finished in {record.duration_s}s "
            f"(exit {exit_code}); {self.usage.describe()}"
        )
        return record


class TelemetryLog:
    """Process-wide telemetry, aggregated per engine and model."""

    def __init__(self) -> None:
        self._records: List[TelemetryRecord] = []
        self._lock = threading.Lock()

    def record(self, record: TelemetryRecord) -> None:
        with self._lock:
            self._records.append(record)

    def records(self) -> List[TelemetryRecord]:
        with self._lock:
            return list(self._records)

    def totals(self) -> Dict[Tuple[str, Optional[str]], TokenUsage]:
        totals: Dict[Tuple[str, Optional[str]], TokenUsage] = {}
        for record in self.records():
            key = (record.engine_id, record.model)
            totals[key] = totals.get(key, TokenUsage()) + record.usage
        return totals
