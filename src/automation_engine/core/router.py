"""
事件路由

把外部 CRM 事件映射为触发类型，为每个匹配的工作流创建一个 PENDING 执行，
并唤醒正在等待该事件的挂起执行。路由器本身不执行任何步骤。
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List

from ..models.common import utcnow
from ..models.workflow import TriggerType
from ..models.execution import Execution, ExecutionStatus
from ..storage.repository import WorkflowRepository, ExecutionRepository


logger = logging.getLogger(__name__)


# 事件类型 -> 触发类型；SCHEDULED_TIME 只由定时扫描触发
EVENT_TRIGGER_MAP: Dict[str, TriggerType] = {
    "EMAIL_OPENED": TriggerType.EMAIL_OPENED,
    "EMAIL_CLICKED": TriggerType.EMAIL_CLICKED,
    "LEAD_CREATED": TriggerType.LEAD_CREATED,
    "LEAD_STATUS_CHANGED": TriggerType.LEAD_STATUS_CHANGED,
    "FORM_SUBMITTED": TriggerType.FORM_SUBMITTED,
}


@dataclass
class RouteResult:
    """路由结果，错误以结果对象返回而不是抛出"""
    success: bool
    error: Optional[str] = None
    workflows_triggered: int = 0
    execution_ids: List[str] = field(default_factory=list)
    executions_resumed: int = 0

    @property
    def execution_id(self) -> Optional[str]:
        return self.execution_ids[0] if self.execution_ids else None

    def to_dict(self) -> Dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error}
        return {
            "success": True,
            "workflowsTriggered": self.workflows_triggered,
            "executionIds": list(self.execution_ids),
            "executionsResumed": self.executions_resumed
        }


class EventRouter:
    """事件路由器"""

    def __init__(self, workflow_repo: WorkflowRepository, execution_repo: ExecutionRepository):
        self.workflow_repo = workflow_repo
        self.execution_repo = execution_repo

    async def route_event(self, event_type: str, event_data: Dict[str, Any] = None) -> RouteResult:
        """
        处理一个外部事件

        Args:
            event_type: 事件类型，如 LEAD_CREATED
            event_data: 至少包含 entityType / entityId

        Returns:
            RouteResult；未知事件类型和存储错误都以 success=False 返回
        """
        event_data = event_data or {}
        event_type = normalize_event_type(event_type)
        trigger_type = EVENT_TRIGGER_MAP.get(event_type)

        try:
            resumed = await self.wake_waiting(event_type, event_data)
        except Exception as e:
            # 唤醒失败不影响触发新的执行
            logger.error(f"Error waking executions waiting for {event_type}: {e}", exc_info=True)
            resumed = 0

        if trigger_type is None:
            if resumed:
                return RouteResult(success=True, executions_resumed=resumed)
            logger.warning(f"Unknown event type: {event_type}")
            return RouteResult(success=False, error="Unknown event type")

        try:
            workflows = await self.workflow_repo.list_eligible(trigger_type)
            execution_ids = []
            for workflow in workflows:
                execution = self._new_execution(workflow.id, event_data)
                await self.execution_repo.create(execution)
                execution_ids.append(execution.id)
        except Exception as e:
            logger.error(f"Error processing event {event_type}: {e}", exc_info=True)
            return RouteResult(success=False, error=str(e))

        logger.info(
            f"Event {event_type} for {event_data.get('entityType')}/{event_data.get('entityId')} "
            f"triggered {len(execution_ids)} workflows"
        )
        return RouteResult(
            success=True,
            workflows_triggered=len(execution_ids),
            execution_ids=execution_ids,
            executions_resumed=resumed
        )

    async def trigger_workflow(self, workflow_id: str, trigger_data: Dict[str, Any] = None) -> RouteResult:
        """为单个工作流创建执行；未激活或已暂停的工作流被拒绝"""
        trigger_data = trigger_data or {}
        try:
            workflow = await self.workflow_repo.get(workflow_id)
            if workflow is None:
                return RouteResult(success=False, error="Workflow not found")
            if not workflow.is_eligible:
                return RouteResult(success=False, error="Workflow not active")

            execution = self._new_execution(workflow.id, trigger_data)
            await self.execution_repo.create(execution)
        except Exception as e:
            logger.error(f"Error triggering workflow {workflow_id}: {e}", exc_info=True)
            return RouteResult(success=False, error=str(e))

        logger.info(f"Enqueued execution {execution.id} for workflow {workflow_id}")
        return RouteResult(success=True, workflows_triggered=1, execution_ids=[execution.id])

    async def wake_waiting(self, event_type: str, event_data: Dict[str, Any]) -> int:
        """唤醒等待该事件且触发实体一致的挂起执行，返回唤醒数量"""
        event_type = normalize_event_type(event_type)
        waiting = await self.execution_repo.list_waiting_for_event(
            event_type,
            event_data.get("entityType"),
            _as_id(event_data.get("entityId"))
        )

        woken = 0
        now = utcnow()
        for execution in waiting:
            execution.resume_point.wake_at = now
            execution.resume_point.matched_event = {"eventType": event_type, **event_data}
            # 只更新仍处于 WAITING 的执行，避免覆盖已被恢复扫描认领的执行
            if await self.execution_repo.update(execution, expected_status=ExecutionStatus.WAITING):
                woken += 1
                logger.info(f"Event {event_type} woke execution {execution.id}")
        return woken

    @staticmethod
    def _new_execution(workflow_id: str, data: Dict[str, Any]) -> Execution:
        return Execution(
            workflow_id=workflow_id,
            status=ExecutionStatus.PENDING,
            trigger_entity_type=data.get("entityType"),
            trigger_entity_id=_as_id(data.get("entityId")),
            trigger_data=dict(data),
            started_at=utcnow()
        )


def normalize_event_type(event_type: Any) -> str:
    """事件类型统一为大写，触发映射和等待匹配使用同一形式"""
    return str(event_type or "").strip().upper()


def _as_id(value: Any) -> Optional[str]:
    return str(value) if value is not None else None
