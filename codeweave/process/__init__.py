"""Process execution layer."""

from __future__ import annotations

from .events import EventChannel, ProcessEvent, Subscription
from .normalize import normalize_output, strip_ansi
from .runner import CancelToken, OutputCallback, ProcessResult, ProcessRunner

__all__ = [
    "CancelToken",
    "EventChannel",
    "OutputCallback",
    "ProcessEvent",
    "ProcessResult",
    "ProcessRunner",
    "Subscription",
    "normalize_output",
    "strip_ansi",
]
