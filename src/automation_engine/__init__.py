"""
CRM Automation Engine - 自动化工作流执行引擎
"""

__version__ = "1.0.0"

from .config import EngineConfig
from .core.engine import AutomationEngine
from .core.parser import WorkflowParser
from .core.router import EventRouter, RouteResult
from .core.scheduler import ExecutionScheduler
from .models.workflow import Workflow, Step, StepType, TriggerType
from .models.execution import Execution, ExecutionStatus

__all__ = [
    "EngineConfig",
    "AutomationEngine",
    "WorkflowParser",
    "EventRouter",
    "RouteResult",
    "ExecutionScheduler",
    "Workflow",
    "Step",
    "StepType",
    "TriggerType",
    "Execution",
    "ExecutionStatus"
]
