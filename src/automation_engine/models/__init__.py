"""Workflow and execution models"""

from .common import utcnow, generate_id
from .workflow import Workflow, Step, StepType, TriggerType
from .execution import (
    Execution, ExecutionStatus, ExecutionLogEntry, ResumePoint, StepResult
)
from .step_config import ConditionSpec, parse_step_config

__all__ = [
    "utcnow",
    "generate_id",
    "Workflow",
    "Step",
    "StepType",
    "TriggerType",
    "Execution",
    "ExecutionStatus",
    "ExecutionLogEntry",
    "ResumePoint",
    "StepResult",
    "ConditionSpec",
    "parse_step_config"
]
