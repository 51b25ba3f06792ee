"""Core automation engine components"""

from .engine import AutomationEngine
from .scheduler import ExecutionScheduler, IntervalSchedule
from .router import EventRouter, RouteResult, EVENT_TRIGGER_MAP
from .interpreter import WorkflowInterpreter
from .executors import ExecutorRegistry, StepExecutor
from .conditions import evaluate, evaluate_condition
from .retry import RetryPolicy
from .parser import WorkflowParser

__all__ = [
    "AutomationEngine",
    "ExecutionScheduler",
    "IntervalSchedule",
    "EventRouter",
    "RouteResult",
    "EVENT_TRIGGER_MAP",
    "WorkflowInterpreter",
    "ExecutorRegistry",
    "StepExecutor",
    "evaluate",
    "evaluate_condition",
    "RetryPolicy",
    "WorkflowParser"
]
