"""
自动化工作流定义模型
"""
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional
from enum import Enum
from datetime import datetime

from .common import generate_id
from ..exceptions import WorkflowValidationError


class TriggerType(Enum):
    """工作流触发类型"""
    EMAIL_OPENED = "EMAIL_OPENED"
    EMAIL_CLICKED = "EMAIL_CLICKED"
    LEAD_CREATED = "LEAD_CREATED"
    LEAD_STATUS_CHANGED = "LEAD_STATUS_CHANGED"
    FORM_SUBMITTED = "FORM_SUBMITTED"
    SCHEDULED_TIME = "SCHEDULED_TIME"


class StepType(Enum):
    """步骤类型"""
    TRIGGER = "TRIGGER"
    EMAIL = "EMAIL"
    CONDITION = "CONDITION"
    DELAY = "DELAY"
    TASK_CREATION = "TASK_CREATION"
    TAG_ASSIGNMENT = "TAG_ASSIGNMENT"
    FIELD_UPDATE = "FIELD_UPDATE"
    WEBHOOK = "WEBHOOK"
    BRANCH_CONDITION = "BRANCH_CONDITION"
    WAIT_FOR_EVENT = "WAIT_FOR_EVENT"


@dataclass
class Step:
    """工作流步骤"""
    id: str
    type: StepType
    name: str = ""
    workflow_id: str = ""
    config: Dict[str, Any] = field(default_factory=dict)
    position: int = 0
    parent_id: Optional[str] = None
    branch: Optional[str] = None  # 父步骤 -> 本步骤 边上的分支标签

    @property
    def stop_on_error(self) -> bool:
        """未显式设置为 False 时出错即停止"""
        return self.config.get("stopOnError") is not False

    @property
    def typed_config(self):
        """解析后的强类型配置"""
        from .step_config import parse_step_config
        return parse_step_config(self.type, self.config)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "config": self.config,
            "position": self.position,
            "parent_id": self.parent_id,
            "branch": self.branch
        }


@dataclass
class Workflow:
    """自动化工作流定义"""
    id: str = field(default_factory=generate_id)
    name: str = ""
    trigger_type: TriggerType = TriggerType.LEAD_CREATED
    trigger_config: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    is_paused: bool = False
    steps: List[Step] = field(default_factory=list)
    execution_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    last_executed_at: Optional[datetime] = None

    @property
    def is_eligible(self) -> bool:
        """是否可被触发"""
        return self.is_active and not self.is_paused

    def get_step(self, step_id: str) -> Optional[Step]:
        """根据ID获取步骤"""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def get_entry_step(self) -> Optional[Step]:
        """获取入口步骤（position 为 0 或没有父步骤）"""
        for step in sorted(self.steps, key=lambda s: s.position):
            if step.position == 0 or not step.parent_id:
                return step
        return None

    def get_children(self, step_id: str) -> List[Step]:
        """获取子步骤，按 position 排序"""
        children = [step for step in self.steps if step.parent_id == step_id]
        return sorted(children, key=lambda s: s.position)

    def validate(self) -> List[str]:
        """验证工作流定义的合法性"""
        errors = []

        step_ids = [step.id for step in self.steps]
        if len(step_ids) != len(set(step_ids)):
            errors.append("Duplicate step IDs found")

        if not self.steps:
            errors.append("Workflow has no steps")

        roots = [step.id for step in self.steps if not step.parent_id]
        if len(roots) > 1:
            errors.append(f"Multiple entry steps found: {roots}")

        for step in self.steps:
            if step.parent_id and step.parent_id not in step_ids:
                errors.append(f"Step '{step.id}' parent '{step.parent_id}' not found")
            if step.parent_id == step.id:
                errors.append(f"Step '{step.id}' is its own parent")

        if self.steps and self._has_cycle():
            errors.append("Workflow steps contain cycles")

        from .step_config import parse_step_config
        for step in self.steps:
            try:
                parse_step_config(step.type, step.config)
            except WorkflowValidationError as e:
                errors.append(f"Step '{step.id}': {e}")

        return errors

    def _has_cycle(self) -> bool:
        """检测父子关系是否存在环"""
        # 拓扑排序：入度即是否有父步骤
        step_ids = {step.id for step in self.steps}
        children = defaultdict(list)
        in_degree = {step_id: 0 for step_id in step_ids}

        for step in self.steps:
            if step.parent_id in step_ids:
                children[step.parent_id].append(step.id)
                in_degree[step.id] += 1

        queue = deque([step_id for step_id, degree in in_degree.items() if degree == 0])
        visited = 0

        while queue:
            step_id = queue.popleft()
            visited += 1

            for child_id in children[step_id]:
                in_degree[child_id] -= 1
                if in_degree[child_id] == 0:
                    queue.append(child_id)

        return visited != len(step_ids)
