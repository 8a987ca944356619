"""codeweave: multi-step coding-agent workflows over external agent CLIs."""

from .config import WeaveConfig, load_config
from .contracts import AgentDefinition, LoopBehavior, Task, WorkflowStep, WorkflowTemplate
from .engines import Engine, EngineRegistry, build_registry
from .instances import InstanceTracker
from .ledger import TaskLedger
from .memory import MemoryStore
from .persistence import get_repository
from .process import ProcessRunner
from .workflow import RecoveryController, WorkflowEngine

__version__ = "0.1.0"
__all__ = [
    "AgentDefinition",
    "Engine",
    "EngineRegistry",
    "InstanceTracker",
    "LoopBehavior",
    "MemoryStore",
    "ProcessRunner",
    "RecoveryController",
    "Task",
    "TaskLedger",
    "WeaveConfig",
    "WorkflowEngine",
    "WorkflowStep",
    "WorkflowTemplate",
    "build_registry",
    "get_repository",
    "load_config",
]
