"""
步骤执行器

每种步骤类型一个执行器，统一契约：execute(step, execution) -> StepResult。
可预期的失败以 success=False 的结果返回，意外错误直接抛出，由解释器处理。
"""
import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Dict, Any, Optional, List, Tuple

from ..config import EngineConfig
from ..exceptions import (
    UnknownStepTypeError, RecordNotFoundError, ConcurrentUpdateError
)
from ..models.common import utcnow, isoformat, parse_datetime
from ..models.workflow import Step, StepType
from ..models.execution import Execution, StepResult, ResumePoint
from ..models.step_config import (
    EmailStepConfig, ConditionStepConfig, DelayStepConfig, TaskCreationStepConfig,
    TagAssignmentStepConfig, FieldUpdateStepConfig, WebhookStepConfig,
    BranchConditionStepConfig, WaitForEventStepConfig
)
from ..storage.record_store import RecordStore, TASKS_TABLE, table_for_entity
from ..integrations.delivery import MessageDelivery
from ..integrations.webhook import WebhookClient
from .conditions import evaluate_condition


logger = logging.getLogger(__name__)


# 邮件只能发送给有邮箱的实体
EMAIL_ENTITY_TABLES = {"leads", "contacts"}


class StepExecutor(ABC):
    """步骤执行器基类"""

    step_type: StepType = None

    def __init__(self, records: RecordStore = None, config: EngineConfig = None):
        self.records = records
        self.config = config or EngineConfig()

    @abstractmethod
    async def execute(self, step: Step, execution: Execution) -> StepResult:
        """执行步骤"""
        pass

    async def resume(self, step: Step, execution: Execution, point: ResumePoint) -> StepResult:
        """挂起的步骤被唤醒后生成日志结果"""
        return StepResult.ok(resumedAt=isoformat(utcnow()))

    async def load_entity(self, execution: Execution) -> Tuple[Optional[str], Optional[Dict[str, Any]]]:
        """加载触发实体，返回 (表名, 记录)"""
        table = table_for_entity(execution.trigger_entity_type)
        if not table or not execution.trigger_entity_id or self.records is None:
            return table, None
        record = await self.records.fetch_by_id(table, execution.trigger_entity_id)
        return table, record


class TriggerExecutor(StepExecutor):
    step_type = StepType.TRIGGER

    async def execute(self, step: Step, execution: Execution) -> StepResult:
        return StepResult.ok(triggered=True)


class EmailExecutor(StepExecutor):
    """发送邮件给触发实体"""
    step_type = StepType.EMAIL

    def __init__(self, records: RecordStore, delivery: MessageDelivery, config: EngineConfig = None):
        super().__init__(records, config)
        self.delivery = delivery

    async def execute(self, step: Step, execution: Execution) -> StepResult:
        config: EmailStepConfig = step.typed_config

        record = None
        if table_for_entity(execution.trigger_entity_type) in EMAIL_ENTITY_TABLES:
            _, record = await self.load_entity(execution)

        recipient = (record or {}).get("email")
        if not recipient:
            return StepResult.failed("No recipient found")

        message_id = await self.delivery.send_message(
            to=recipient,
            subject=config.subject or "Automated Email",
            body=config.body or "Automated message",
            from_address=config.from_address or self.config.default_from_address
        )
        logger.info(f"Queued email {message_id} to {recipient} for execution {execution.id}")
        return StepResult.ok(messageId=message_id, recipient=recipient)


class ConditionExecutor(StepExecutor):
    step_type = StepType.CONDITION

    async def execute(self, step: Step, execution: Execution) -> StepResult:
        config: ConditionStepConfig = step.typed_config
        # 未配置条件时视为满足
        if config.condition is None:
            return StepResult.ok(conditionMet=True)

        _, record = await self.load_entity(execution)
        return StepResult.ok(conditionMet=evaluate_condition(config.condition, record or {}))


class DelayExecutor(StepExecutor):
    """延迟：时长为正时挂起到唤醒时间"""
    step_type = StepType.DELAY

    async def execute(self, step: Step, execution: Execution) -> StepResult:
        config: DelayStepConfig = step.typed_config
        now = utcnow()

        if config.wait_until:
            wake_at = parse_datetime(config.wait_until)
            minutes = max((wake_at - now).total_seconds() / 60, 0)
        else:
            minutes = config.total_minutes
            wake_at = now + timedelta(minutes=minutes)

        if wake_at <= now or minutes <= 0:
            return StepResult.ok(delayApplied=0)

        return StepResult(
            success=True,
            data={"delayApplied": minutes, "wakeAt": isoformat(wake_at)},
            wake_at=wake_at
        )

    async def resume(self, step: Step, execution: Execution, point: ResumePoint) -> StepResult:
        return StepResult.ok(
            delayApplied=True,
            wakeAt=isoformat(point.wake_at),
            resumedAt=isoformat(utcnow())
        )


class TaskCreationExecutor(StepExecutor):
    step_type = StepType.TASK_CREATION

    async def execute(self, step: Step, execution: Execution) -> StepResult:
        config: TaskCreationStepConfig = step.typed_config
        task = await self.records.insert(TASKS_TABLE, {
            "title": config.title,
            "description": config.description,
            "assigned_to_id": config.assignee,
            "due_date": parse_datetime(config.due_date),
            "entity_type": execution.trigger_entity_type,
            "entity_id": execution.trigger_entity_id,
            "auto_created": True,
            "priority": config.priority,
        })
        return StepResult.ok(taskId=task["id"])


class VersionedUpdateExecutor(StepExecutor):
    """
    读-改-写执行器基类

    依赖记录的 version 列做乐观并发控制，冲突时重新读取并重试。
    """

    async def apply_update(self, step: Step, execution: Execution, build_values) -> Optional[Dict[str, Any]]:
        """
        Args:
            build_values: 根据当前记录计算待写入的值，返回 None 表示无需写入

        Returns:
            写入的值（无需写入时为空字典）
        """
        table = table_for_entity(execution.trigger_entity_type)
        entity_id = execution.trigger_entity_id
        attempts = self.config.optimistic_update_attempts

        for attempt in range(1, attempts + 1):
            record = await self.records.fetch_by_id(table, entity_id)
            if record is None:
                raise RecordNotFoundError(table, entity_id)

            values = build_values(record)
            if values is None:
                return {}

            if await self.records.update(table, entity_id, values, expected_version=record.get("version")):
                return values

            logger.warning(
                f"Version conflict updating {table}/{entity_id} in step '{step.id}' "
                f"(attempt {attempt}/{attempts})"
            )

        raise ConcurrentUpdateError(table, entity_id, attempts)


def _normalize_tags(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [tag.strip() for tag in value.split(",") if tag.strip()]
    return [str(tag) for tag in value]


class TagAssignmentExecutor(VersionedUpdateExecutor):
    """标签分配，集合语义，重复执行结果不变"""
    step_type = StepType.TAG_ASSIGNMENT

    async def execute(self, step: Step, execution: Execution) -> StepResult:
        config: TagAssignmentStepConfig = step.typed_config
        if not table_for_entity(execution.trigger_entity_type) or not execution.trigger_entity_id:
            return StepResult.failed("No entity to tag")

        resulting: List[str] = []

        def build_values(record):
            current = _normalize_tags(record.get("tags"))
            tags = [tag for tag in current if tag not in config.tags_to_remove]
            for tag in config.tags_to_add:
                if tag not in tags:
                    tags.append(tag)
            resulting[:] = tags
            return None if tags == current else {"tags": tags}

        await self.apply_update(step, execution, build_values)
        return StepResult.ok(
            tags=list(resulting),
            tagsAdded=config.tags_to_add,
            tagsRemoved=config.tags_to_remove
        )


class FieldUpdateExecutor(VersionedUpdateExecutor):
    step_type = StepType.FIELD_UPDATE

    async def execute(self, step: Step, execution: Execution) -> StepResult:
        config: FieldUpdateStepConfig = step.typed_config
        if not table_for_entity(execution.trigger_entity_type) or not execution.trigger_entity_id:
            return StepResult.failed("No entity to update")
        if not config.field_updates:
            return StepResult.ok(updatedFields=[])

        await self.apply_update(step, execution, lambda record: dict(config.field_updates))
        return StepResult.ok(updatedFields=list(config.field_updates))


class WebhookExecutor(StepExecutor):
    step_type = StepType.WEBHOOK

    def __init__(self, client: WebhookClient, config: EngineConfig = None):
        super().__init__(None, config)
        self.client = client

    async def execute(self, step: Step, execution: Execution) -> StepResult:
        config: WebhookStepConfig = step.typed_config
        body = config.body if config.body is not None else execution.summary()

        response = await self.client.call(
            step.id,
            url=config.url,
            method=config.method,
            headers=config.headers,
            body=body,
            timeout=config.timeout
        )
        return StepResult.ok(**response)


class BranchConditionExecutor(StepExecutor):
    """分支条件：结果携带 branchSelected，供解释器筛选子步骤"""
    step_type = StepType.BRANCH_CONDITION

    async def execute(self, step: Step, execution: Execution) -> StepResult:
        config: BranchConditionStepConfig = step.typed_config
        _, record = await self.load_entity(execution)
        met = evaluate_condition(config.condition, record or {})
        return StepResult.ok(conditionMet=met, branchSelected="true" if met else "false")


class WaitForEventExecutor(StepExecutor):
    step_type = StepType.WAIT_FOR_EVENT

    async def execute(self, step: Step, execution: Execution) -> StepResult:
        config: WaitForEventStepConfig = step.typed_config
        timeout_at = utcnow() + timedelta(minutes=config.timeout_minutes)
        return StepResult(
            success=True,
            data={
                "eventType": config.event_type,
                "timeoutAt": isoformat(timeout_at)
            },
            wake_at=timeout_at,
            wait_event_type=config.event_type
        )

    async def resume(self, step: Step, execution: Execution, point: ResumePoint) -> StepResult:
        if point.matched_event is not None:
            return StepResult.ok(
                eventType=point.event_type,
                eventReceived=True,
                event=point.matched_event
            )
        return StepResult.ok(eventType=point.event_type, eventReceived=False, timedOut=True)


class ExecutorRegistry:
    """执行器注册表"""

    def __init__(self):
        self.executors: Dict[StepType, StepExecutor] = {}

    def register(self, executor: StepExecutor, step_type: StepType = None):
        step_type = step_type or executor.step_type
        self.executors[step_type] = executor
        logger.debug(f"Registered executor for step type {step_type.value}")

    def get(self, step: Step) -> StepExecutor:
        executor = self.executors.get(step.type)
        if executor is None:
            step_type = step.type.value if isinstance(step.type, StepType) else step.type
            raise UnknownStepTypeError(step.id, step_type)
        return executor

    async def execute(self, step: Step, execution: Execution) -> StepResult:
        return await self.get(step).execute(step, execution)

    async def resume(self, step: Step, execution: Execution, point: ResumePoint) -> StepResult:
        return await self.get(step).resume(step, execution, point)

    @classmethod
    def default(
        cls,
        records: RecordStore,
        delivery: MessageDelivery,
        webhook_client: WebhookClient = None,
        config: EngineConfig = None
    ) -> "ExecutorRegistry":
        """注册所有内置执行器"""
        config = config or EngineConfig()
        webhook_client = webhook_client or WebhookClient(timeout=config.webhook_timeout)

        registry = cls()
        registry.register(TriggerExecutor(records, config))
        registry.register(EmailExecutor(records, delivery, config))
        registry.register(ConditionExecutor(records, config))
        registry.register(DelayExecutor(records, config))
        registry.register(TaskCreationExecutor(records, config))
        registry.register(TagAssignmentExecutor(records, config))
        registry.register(FieldUpdateExecutor(records, config))
        registry.register(WebhookExecutor(webhook_client, config))
        registry.register(BranchConditionExecutor(records, config))
        registry.register(WaitForEventExecutor(records, config))
        return registry
