"""Storage and repository interfaces"""

from .repository import (
    WorkflowRepository,
    ExecutionRepository,
    InMemoryWorkflowRepository,
    InMemoryExecutionRepository
)
from .record_store import (
    RecordStore,
    InMemoryRecordStore,
    ENTITY_TABLES,
    TASKS_TABLE,
    table_for_entity
)

__all__ = [
    "WorkflowRepository",
    "ExecutionRepository",
    "InMemoryWorkflowRepository",
    "InMemoryExecutionRepository",
    "RecordStore",
    "InMemoryRecordStore",
    "ENTITY_TABLES",
    "TASKS_TABLE",
    "table_for_entity"
]
