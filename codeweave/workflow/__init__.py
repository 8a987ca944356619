"""Workflow loading, execution and recovery."""

from .acceptance import AcceptanceEvaluator, CompletionMarkerEvaluator
from .engine import StepInvocation, WorkflowEngine, WorkflowRunResult
from .loader import load_agent_catalog, load_template, parse_template, validate_template
from .loop import LoopController
from .prompt import COMPLETION_MARKER, build_task_request, compose_prompt
from .recovery import RecoveryController
from .templates import TemplateTracker

__all__ = [
    "AcceptanceEvaluator",
    "COMPLETION_MARKER",
    "CompletionMarkerEvaluator",
    "LoopController",
    "RecoveryController",
    "StepInvocation",
    "TemplateTracker",
    "WorkflowEngine",
    "WorkflowRunResult",
    "build_task_request",
    "compose_prompt",
    "load_agent_catalog",
    "load_template",
    "parse_template",
    "validate_template",
]
