"""
存储仓库接口定义
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Optional, List, Dict
from datetime import datetime

from ..models.workflow import Workflow, TriggerType
from ..models.execution import Execution, ExecutionStatus


class WorkflowRepository(ABC):
    """工作流存储仓库接口"""

    @abstractmethod
    async def save(self, workflow: Workflow) -> str:
        """保存工作流（含步骤）"""
        pass

    @abstractmethod
    async def get(self, workflow_id: str) -> Optional[Workflow]:
        """获取工作流（含步骤）"""
        pass

    @abstractmethod
    async def list_eligible(self, trigger_type: TriggerType) -> List[Workflow]:
        """列出指定触发类型、已激活且未暂停的工作流"""
        pass

    @abstractmethod
    async def record_outcome(
        self,
        workflow_id: str,
        succeeded: bool,
        executed_at: datetime = None
    ) -> bool:
        """
        原子更新工作流统计

        executionCount 总是加一；成功时 successCount 加一并更新 lastExecutedAt，
        失败时 failureCount 加一。
        """
        pass


class ExecutionRepository(ABC):
    """执行实例存储仓库接口"""

    @abstractmethod
    async def create(self, execution: Execution) -> str:
        """保存新的执行实例"""
        pass

    @abstractmethod
    async def get(self, execution_id: str) -> Optional[Execution]:
        """获取执行实例"""
        pass

    @abstractmethod
    async def list_pending(self, limit: int, now: datetime) -> List[Execution]:
        """按创建顺序列出已到期的 PENDING 执行"""
        pass

    @abstractmethod
    async def claim(
        self,
        execution_id: str,
        expected_status: ExecutionStatus = ExecutionStatus.PENDING
    ) -> Optional[Execution]:
        """
        认领执行实例

        以执行ID和预期状态为条件的原子更新，把状态置为 RUNNING。
        其他实例已经认领时返回 None。
        """
        pass

    @abstractmethod
    async def update(
        self,
        execution: Execution,
        expected_status: ExecutionStatus = None
    ) -> bool:
        """
        持久化执行状态、日志和恢复游标

        Args:
            expected_status: 给定时只有存储中的状态一致才会写入
        """
        pass

    @abstractmethod
    async def list_waiting_due(self, now: datetime, limit: int = 100) -> List[Execution]:
        """列出唤醒时间已到的 WAITING 执行"""
        pass

    @abstractmethod
    async def list_waiting_for_event(
        self,
        event_type: str,
        entity_type: Optional[str],
        entity_id: Optional[str]
    ) -> List[Execution]:
        """列出正在等待指定事件的 WAITING 执行"""
        pass

    @abstractmethod
    async def list_by_workflow(
        self,
        workflow_id: str,
        status: ExecutionStatus = None,
        limit: int = 100
    ) -> List[Execution]:
        """根据工作流ID列出执行实例"""
        pass


# 内存实现（用于测试）
class InMemoryWorkflowRepository(WorkflowRepository):
    """内存工作流仓库实现"""

    def __init__(self):
        self.workflows: Dict[str, Workflow] = {}
        self._lock = asyncio.Lock()

    async def save(self, workflow: Workflow) -> str:
        for step in workflow.steps:
            step.workflow_id = workflow.id
        self.workflows[workflow.id] = workflow
        return workflow.id

    async def get(self, workflow_id: str) -> Optional[Workflow]:
        return self.workflows.get(workflow_id)

    async def list_eligible(self, trigger_type: TriggerType) -> List[Workflow]:
        return [
            workflow for workflow in self.workflows.values()
            if workflow.trigger_type == trigger_type and workflow.is_eligible
        ]

    async def record_outcome(
        self,
        workflow_id: str,
        succeeded: bool,
        executed_at: datetime = None
    ) -> bool:
        async with self._lock:
            workflow = self.workflows.get(workflow_id)
            if not workflow:
                return False

            workflow.execution_count += 1
            if succeeded:
                workflow.success_count += 1
                workflow.last_executed_at = executed_at or workflow.last_executed_at
            else:
                workflow.failure_count += 1
            return True


class InMemoryExecutionRepository(ExecutionRepository):
    """内存执行仓库实现"""

    def __init__(self):
        self.executions: Dict[str, Execution] = {}
        self._lock = asyncio.Lock()

    async def create(self, execution: Execution) -> str:
        self.executions[execution.id] = execution
        return execution.id

    async def get(self, execution_id: str) -> Optional[Execution]:
        return self.executions.get(execution_id)

    async def list_pending(self, limit: int, now: datetime) -> List[Execution]:
        results = []
        for execution in self.executions.values():
            if execution.status == ExecutionStatus.PENDING and execution.is_due(now):
                results.append(execution)
        results.sort(key=lambda e: e.created_at)
        return results[:limit]

    async def claim(
        self,
        execution_id: str,
        expected_status: ExecutionStatus = ExecutionStatus.PENDING
    ) -> Optional[Execution]:
        async with self._lock:
            execution = self.executions.get(execution_id)
            if not execution or execution.status != expected_status:
                return None
            execution.mark_running()
            return execution

    async def update(
        self,
        execution: Execution,
        expected_status: ExecutionStatus = None
    ) -> bool:
        stored = self.executions.get(execution.id)
        if stored is None:
            return False
        if expected_status is not None and stored.status != expected_status:
            return False
        self.executions[execution.id] = execution
        return True

    async def list_waiting_due(self, now: datetime, limit: int = 100) -> List[Execution]:
        results = []
        for execution in self.executions.values():
            point = execution.resume_point
            if (
                execution.status == ExecutionStatus.WAITING
                and point is not None
                and point.wake_at is not None
                and point.wake_at <= now
            ):
                results.append(execution)
        results.sort(key=lambda e: e.resume_point.wake_at)
        return results[:limit]

    async def list_waiting_for_event(
        self,
        event_type: str,
        entity_type: Optional[str],
        entity_id: Optional[str]
    ) -> List[Execution]:
        results = []
        for execution in self.executions.values():
            point = execution.resume_point
            if (
                execution.status == ExecutionStatus.WAITING
                and point is not None
                and point.event_type == event_type
                and execution.trigger_entity_type == entity_type
                and execution.trigger_entity_id == entity_id
            ):
                results.append(execution)
        return results

    async def list_by_workflow(
        self,
        workflow_id: str,
        status: ExecutionStatus = None,
        limit: int = 100
    ) -> List[Execution]:
        results = []
        for execution in self.executions.values():
            if execution.workflow_id != workflow_id:
                continue
            if status and execution.status != status:
                continue
            results.append(execution)
        results.sort(key=lambda e: e.created_at)
        return results[:limit]
