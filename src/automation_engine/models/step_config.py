"""
步骤配置模型

每种步骤类型对应一个强类型配置，原始配置字典在执行前解析为对应的数据类。
"""
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List, Type, Union

from .workflow import StepType
from ..exceptions import WorkflowValidationError


DELAY_UNIT_MINUTES = {
    "minutes": 1,
    "hours": 60,
    "days": 60 * 24,
    "weeks": 60 * 24 * 7,
}

DEFAULT_WAIT_TIMEOUT_MINUTES = 24 * 60


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def _as_number(value: Any, key: str) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise WorkflowValidationError(f"'{key}' must be a number, got {value!r}")


@dataclass
class ConditionSpec:
    """单个条件：字段 + 运算符 + 字面量"""
    field: str
    operator: str
    value: Any = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["ConditionSpec"]:
        if not data:
            return None
        if not isinstance(data, dict):
            raise WorkflowValidationError(f"Condition must be a mapping, got {type(data).__name__}")
        if not data.get("field") or not data.get("operator"):
            raise WorkflowValidationError("Condition requires 'field' and 'operator'")
        return cls(
            field=str(data["field"]),
            operator=str(data["operator"]).upper(),
            value=data.get("value")
        )


@dataclass
class TriggerStepConfig:
    """触发步骤配置"""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TriggerStepConfig":
        return cls()


@dataclass
class EmailStepConfig:
    """邮件步骤配置"""
    subject: Optional[str] = None
    body: Optional[str] = None
    template_id: Optional[str] = None
    from_address: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EmailStepConfig":
        return cls(
            subject=data.get("subject"),
            body=data.get("body"),
            template_id=data.get("template_id") or data.get("templateId"),
            from_address=data.get("from")
        )


@dataclass
class ConditionStepConfig:
    """条件步骤配置"""
    condition: Optional[ConditionSpec] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConditionStepConfig":
        return cls(condition=ConditionSpec.from_dict(data.get("condition")))


@dataclass
class DelayStepConfig:
    """延迟步骤配置"""
    delay_minutes: Optional[float] = None
    delay_amount: Optional[float] = None
    delay_unit: str = "minutes"
    wait_until: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DelayStepConfig":
        unit = str(data.get("delayUnit", "minutes")).lower()
        if unit not in DELAY_UNIT_MINUTES:
            raise WorkflowValidationError(f"Unsupported delay unit: {unit}")
        return cls(
            delay_minutes=_as_number(data.get("delayMinutes"), "delayMinutes"),
            delay_amount=_as_number(data.get("delayAmount"), "delayAmount"),
            delay_unit=unit,
            wait_until=data.get("waitUntil")
        )

    @property
    def total_minutes(self) -> float:
        """延迟总分钟数"""
        if self.delay_minutes is not None:
            return self.delay_minutes
        if self.delay_amount is not None:
            return self.delay_amount * DELAY_UNIT_MINUTES[self.delay_unit]
        return 0


@dataclass
class TaskCreationStepConfig:
    """任务创建步骤配置"""
    title: str = "Automated Task"
    description: str = "Task created by automation"
    assignee: Optional[str] = None
    due_date: Optional[str] = None
    priority: str = "MEDIUM"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskCreationStepConfig":
        return cls(
            title=data.get("title") or cls.title,
            description=data.get("description") or cls.description,
            assignee=data.get("assignee"),
            due_date=data.get("dueDate"),
            priority=data.get("priority") or cls.priority
        )


@dataclass
class TagAssignmentStepConfig:
    """标签分配步骤配置"""
    tags_to_add: List[str] = field(default_factory=list)
    tags_to_remove: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TagAssignmentStepConfig":
        return cls(
            tags_to_add=[str(tag) for tag in _as_list(data.get("tagsToAdd"))],
            tags_to_remove=[str(tag) for tag in _as_list(data.get("tagsToRemove"))]
        )


@dataclass
class FieldUpdateStepConfig:
    """字段更新步骤配置"""
    field_updates: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldUpdateStepConfig":
        updates = data.get("fieldUpdates") or {}
        if not isinstance(updates, dict):
            raise WorkflowValidationError("'fieldUpdates' must be a mapping")
        return cls(field_updates=dict(updates))


@dataclass
class WebhookStepConfig:
    """Webhook 步骤配置"""
    url: str = ""
    method: str = "POST"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    timeout: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WebhookStepConfig":
        url = data.get("url")
        if not url:
            raise WorkflowValidationError("Webhook step requires 'url'")
        headers = data.get("headers") or {}
        if not isinstance(headers, dict):
            raise WorkflowValidationError("'headers' must be a mapping")
        return cls(
            url=str(url),
            method=str(data.get("method") or "POST").upper(),
            headers={str(k): str(v) for k, v in headers.items()},
            body=data.get("body"),
            timeout=_as_number(data.get("timeout"), "timeout")
        )


@dataclass
class BranchConditionStepConfig:
    """分支条件步骤配置"""
    condition: ConditionSpec = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BranchConditionStepConfig":
        condition = ConditionSpec.from_dict(data.get("condition"))
        if condition is None:
            raise WorkflowValidationError("Branch condition step requires 'condition'")
        return cls(condition=condition)


@dataclass
class WaitForEventStepConfig:
    """等待事件步骤配置"""
    event_type: str = ""
    timeout_minutes: float = DEFAULT_WAIT_TIMEOUT_MINUTES

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WaitForEventStepConfig":
        event_type = data.get("eventType")
        if not event_type:
            raise WorkflowValidationError("Wait-for-event step requires 'eventType'")
        timeout = _as_number(data.get("timeoutMinutes"), "timeoutMinutes")
        return cls(
            event_type=str(event_type).strip().upper(),
            timeout_minutes=timeout if timeout is not None else DEFAULT_WAIT_TIMEOUT_MINUTES
        )


StepConfig = Union[
    TriggerStepConfig,
    EmailStepConfig,
    ConditionStepConfig,
    DelayStepConfig,
    TaskCreationStepConfig,
    TagAssignmentStepConfig,
    FieldUpdateStepConfig,
    WebhookStepConfig,
    BranchConditionStepConfig,
    WaitForEventStepConfig,
]


STEP_CONFIG_TYPES: Dict[StepType, Type] = {
    StepType.TRIGGER: TriggerStepConfig,
    StepType.EMAIL: EmailStepConfig,
    StepType.CONDITION: ConditionStepConfig,
    StepType.DELAY: DelayStepConfig,
    StepType.TASK_CREATION: TaskCreationStepConfig,
    StepType.TAG_ASSIGNMENT: TagAssignmentStepConfig,
    StepType.FIELD_UPDATE: FieldUpdateStepConfig,
    StepType.WEBHOOK: WebhookStepConfig,
    StepType.BRANCH_CONDITION: BranchConditionStepConfig,
    StepType.WAIT_FOR_EVENT: WaitForEventStepConfig,
}


def parse_step_config(step_type: StepType, data: Optional[Dict[str, Any]]) -> StepConfig:
    """将原始配置字典解析为对应步骤类型的配置对象"""
    config_type = STEP_CONFIG_TYPES.get(step_type)
    if config_type is None:
        raise WorkflowValidationError(f"No config type registered for step type: {step_type}")
    if data is not None and not isinstance(data, dict):
        raise WorkflowValidationError(f"Step config must be a mapping, got {type(data).__name__}")
    return config_type.from_dict(data or {})
